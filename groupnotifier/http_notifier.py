"""Notifier that calls a remote HTTP endpoint for each consumer group notification."""

from __future__ import annotations

import base64
import http.client
import urllib.error
import urllib.request
from datetime import datetime
from typing import Any

from jinja2 import TemplateError

from .base import NotifierModule
from .status import ConsumerGroupStatus
from .templates import build_ssl_context, execute_template, parse_template_string

_TEMPLATE_ERRORS = (TemplateError, TypeError, ValueError, ArithmeticError)


class HTTPNotifier(NotifierModule):
    """Makes one outbound HTTP request per consumer group notification.

    The request body is rendered from the open or close template. The URL is
    itself a template, rendered with the same values as the body.
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.url_open = ""
        self.url_close = ""
        self.method_open = ""
        self.method_close = ""
        self.send_close = False
        self.timeout: float | None = None
        self._opener: urllib.request.OpenerDirector | None = None

    def configure(self, name: str, config_root: str) -> None:
        """Validate the URLs and set up methods, timeout and TLS.

        Raises ValueError when url-open is missing, or url-close is missing
        while send-close is enabled.
        """
        super().configure(name, config_root)
        config = self.config

        self.url_open = config.get_str(f"{config_root}.url-open")
        if not self.url_open:
            self.log.error("no url-open specified")
            raise ValueError("configuration error: no url-open specified")

        config.set_default(f"{config_root}.method-open", "POST")
        self.method_open = config.get_str(f"{config_root}.method-open")

        self.send_close = config.get_bool(f"{config_root}.send-close")
        if self.send_close:
            self.url_close = config.get_str(f"{config_root}.url-close")
            if not self.url_close:
                self.log.error("no url-close specified")
                raise ValueError("configuration error: no url-close specified")
            config.set_default(f"{config_root}.method-close", "POST")
            self.method_close = config.get_str(f"{config_root}.method-close")

        config.set_default(f"{config_root}.timeout", 5)
        config.set_default(f"{config_root}.keepalive", 300)

        timeout = config.get_int(f"{config_root}.timeout")
        self.timeout = float(timeout) if timeout > 0 else None

        context = build_ssl_context(
            config.get_str(f"{config_root}.extra-ca"),
            config.get_bool(f"{config_root}.noverify"),
        )
        self._opener = urllib.request.build_opener(
            urllib.request.ProxyHandler(),
            urllib.request.HTTPSHandler(context=context),
        )

    def _setting_key(self, option: str) -> str:
        return f"notifier.{self.name}.{option}"

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        username = self.config.get_str(self._setting_key("username"))
        if username:
            password = self.config.get_str(self._setting_key("password"))
            encoded = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
            headers["Authorization"] = f"Basic {encoded}"
        for header, value in self.config.get_str_map(self._setting_key("headers")).items():
            headers[header] = value
        return headers

    def notify(
        self,
        status: ConsumerGroupStatus,
        event_id: str,
        start_time: datetime | None,
        state_good: bool,
    ) -> None:
        """Render and send one request; failures and non-2xx responses are logged."""
        context = (
            f"cluster={status.cluster} group={status.group} id={event_id} status={status.status}"
        )
        if state_good:
            template, method, url = self.template_close, self.method_close, self.url_close
        else:
            template, method, url = self.template_open, self.method_open, self.url_open

        if template is None:
            self.log.error("failed to assemble message: no template (%s)", context)
            return
        try:
            body = execute_template(template, self.extras, status, event_id, start_time)
        except _TEMPLATE_ERRORS as err:
            self.log.error("failed to assemble message: %s (%s)", err, context)
            return

        try:
            url_template = parse_template_string(url)
        except TemplateError as err:
            self.log.error("failed to parse url: %s (%s)", err, context)
            return
        try:
            target = execute_template(url_template, self.extras, status, event_id, start_time)
        except _TEMPLATE_ERRORS as err:
            self.log.error("failed to assemble url: %s (%s)", err, context)
            return

        try:
            request = urllib.request.Request(
                target,
                data=body.encode("utf-8"),
                method=method or "GET",
                headers=self._headers(),
            )
        except ValueError as err:
            self.log.error("failed to create request: %s (%s)", err, context)
            return

        opener = self._opener or urllib.request.build_opener()
        try:
            with opener.open(request, timeout=self.timeout) as response:
                response.read()
                code = response.status
        except urllib.error.HTTPError as err:
            code = err.code
            err.read()
            err.close()
        except (urllib.error.URLError, OSError, http.client.HTTPException, ValueError) as err:
            self.log.error("failed to send: %s (%s)", err, context)
            return

        if 200 <= code <= 299:
            self.log.debug("sent (%s)", context)
        else:
            self.log.error("failed to send: response %d (%s)", code, context)