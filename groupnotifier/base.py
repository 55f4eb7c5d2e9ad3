"""Common behaviour of notifier modules, and a no-op notifier."""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Mapping

from jinja2 import Template

from .config import Config
from .status import ConsumerGroupStatus


class NotifierModule(ABC):
    """A way of sending consumer group status to an outside system.

    The module only knows how to send a notification. Group filtering by the
    allowlist and denylist, timing and incident tracking are done by the
    coordinator, which reads the patterns and templates held here.
    """

    def __init__(
        self,
        app: Any = None,
        config: Config | None = None,
        *,
        log: logging.Logger | None = None,
        group_allowlist: re.Pattern[str] | None = None,
        group_denylist: re.Pattern[str] | None = None,
        extras: Mapping[str, str] | None = None,
        template_open: Template | None = None,
        template_close: Template | None = None,
    ) -> None:
        self.app = app
        self.config = config if config is not None else Config()
        self.log = log or logging.getLogger(f"{__package__}.{type(self).__name__}")
        self.name = ""
        self.group_allowlist = group_allowlist
        self.group_denylist = group_denylist
        self.extras: dict[str, str] = dict(extras or {})
        self.template_open = template_open
        self.template_close = template_close

    def configure(self, name: str, config_root: str) -> None:
        """Set the module name; subclasses also validate their configuration here."""
        self.name = name

    def start(self) -> None:
        """Start the module. Nothing to do by default."""

    def stop(self) -> None:
        """Stop the module. Nothing to do by default."""

    def accept_consumer_group(self, status: ConsumerGroupStatus) -> bool:
        """Whether the module wants a notification for this status; always true by default."""
        return True

    @abstractmethod
    def notify(
        self,
        status: ConsumerGroupStatus,
        event_id: str,
        start_time: datetime | None,
        state_good: bool,
    ) -> None:
        """Send one notification; state_good selects the close message over the open one."""


class NullNotifier(NotifierModule):
    """A notifier that sends nothing and records which of its methods were called."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.called_configure = False
        self.called_start = False
        self.called_stop = False
        self.called_notify = False
        self.called_accept_consumer_group = False

    def configure(self, name: str, config_root: str) -> None:
        super().configure(name, config_root)
        self.called_configure = True

    def start(self) -> None:
        self.called_start = True

    def stop(self) -> None:
        self.called_stop = True

    def accept_consumer_group(self, status: ConsumerGroupStatus) -> bool:
        self.called_accept_consumer_group = True
        return True

    def notify(
        self,
        status: ConsumerGroupStatus,
        event_id: str,
        start_time: datetime | None,
        state_good: bool,
    ) -> None:
        self.called_notify = True