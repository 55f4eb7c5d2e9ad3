"""Central management of notifier modules: group tracking, evaluation requests and dispatch."""

from __future__ import annotations

import logging
import queue
import random
import re
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping

from jinja2 import Template

from .base import NotifierModule, NullNotifier
from .config import Config
from .email_notifier import EmailNotifier
from .http_notifier import HTTPNotifier
from .status import ConsumerGroupStatus, Status
from .templates import parse_template_files

STORAGE_FETCH_CLUSTERS = "fetch-clusters"
STORAGE_FETCH_CONSUMERS = "fetch-consumers"

_NO_MODULE_INTERVAL = 310536000
_GROUP_REFRESH_SECONDS = 60.0
_STORAGE_SEND_TIMEOUT = 1.0
_POLL_SECONDS = 0.1
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)

_MODULE_CLASSES: dict[str, type[NotifierModule]] = {
    "http": HTTPNotifier,
    "email": EmailNotifier,
    "null": NullNotifier,
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ApplicationContext:
    """Shared state: channels to storage and evaluator, and the Zookeeper connection."""

    logger: logging.Logger | None = None
    storage_channel: queue.Queue = field(default_factory=queue.Queue)
    evaluator_channel: queue.Queue = field(default_factory=queue.Queue)
    zookeeper: Any = None
    zookeeper_root: str = ""
    zookeeper_connected: bool = False
    zookeeper_expired: threading.Condition = field(default_factory=threading.Condition)


@dataclass
class StorageRequest:
    """A request to the storage subsystem; the answer is put on reply."""

    request_type: str
    reply: queue.Queue = field(default_factory=queue.Queue)
    cluster: str = ""


@dataclass
class EvaluatorRequest:
    """A request to evaluate one consumer group; the status is put on reply."""

    reply: queue.Queue
    cluster: str
    group: str
    show_all: bool = False


@dataclass
class ConsumerGroupState:
    """Incident and timing state the coordinator keeps for one consumer group."""

    id: str = ""
    start: datetime | None = None
    last_notify: dict[str, datetime | None] = field(default_factory=dict)
    last_eval: datetime = _EPOCH


def module_for_class(
    app: ApplicationContext | None,
    config: Config,
    module_name: str,
    class_name: str,
    group_allowlist: re.Pattern[str] | None,
    group_denylist: re.Pattern[str] | None,
    extras: Mapping[str, str] | None,
    template_open: Template | None,
    template_close: Template | None,
) -> NotifierModule:
    """Create the notifier module for a class name; an unknown name raises ValueError."""
    try:
        module_class = _MODULE_CLASSES[class_name]
    except KeyError:
        raise ValueError(f"Unknown notifier className provided: {class_name}") from None
    parent = app.logger if app is not None and app.logger is not None else logging.getLogger(__package__)
    return module_class(
        app,
        config,
        log=parent.getChild(f"notifier.{class_name}.{module_name}"),
        group_allowlist=group_allowlist,
        group_denylist=group_denylist,
        extras=extras,
        template_open=template_open,
        template_close=template_close,
    )


NotifyFunc = Callable[[NotifierModule, ConsumerGroupStatus, "datetime | None", str], None]


class Coordinator:
    """Configures notifier modules, tracks known groups, requests evaluations and notifies."""

    def __init__(
        self,
        app: ApplicationContext,
        config: Config | None = None,
        *,
        log: logging.Logger | None = None,
        template_parse_func: Callable[..., Template] | None = None,
        notify_module_func: NotifyFunc | None = None,
    ) -> None:
        self.app = app
        self.config = config if config is not None else Config()
        self.log = log or logging.getLogger(f"{__package__}.coordinator")
        self.template_parse_func = template_parse_func
        self.notify_module_func: NotifyFunc = notify_module_func or self.notify_module
        self.modules: dict[str, NotifierModule] = {}
        self.clusters: dict[str, dict[str, ConsumerGroupState]] = {}
        self.min_interval = _NO_MODULE_INTERVAL
        self.do_evaluations = False
        self.evaluator_response: queue.Queue = queue.Queue()
        self._lock = threading.RLock()
        self._quit = threading.Event()

    def _compile_pattern(self, name: str, kind: str, pattern: str) -> re.Pattern[str] | None:
        if not pattern:
            return None
        try:
            return re.compile(pattern)
        except re.error as err:
            self.log.error("failed to compile group %s for module %s", kind, name)
            raise ValueError(f"bad group {kind} for notifier {name}: {err}") from err

    def configure(self) -> None:
        """Create and configure every module under the "notifier" configuration key.

        Raises ValueError for bad patterns, disallowed keys or unknown classes.
        """
        self.log.info("configuring")
        self.modules = {}
        with self._lock:
            self.clusters = {}
        self._quit = threading.Event()
        self.do_evaluations = False
        self.evaluator_response = queue.Queue()
        parse = self.template_parse_func or parse_template_files

        intervals: list[int] = []
        for name in self.config.get_map("notifier"):
            root = f"notifier.{name}"
            self.config.set_default(f"{root}.interval", 60)
            self.config.set_default(f"{root}.send-interval", self.config.get_int(f"{root}.interval"))
            self.config.set_default(f"{root}.threshold", 2)

            if self.config.is_set(f"{root}.group-whitelist") or self.config.is_set(f"{root}.group-blacklist"):
                self.log.error("old allowlist/denylist keys used by module %s", name)
                raise ValueError("Please change configurations to allowlist and denylist")

            allowlist = self._compile_pattern(name, "allowlist", self.config.get_str(f"{root}.group-allowlist"))
            denylist = self._compile_pattern(name, "denylist", self.config.get_str(f"{root}.group-denylist"))
            extras = self.config.get_str_map(f"{root}.extras")

            template_open = parse(self.config.get_str(f"{root}.template-open"))
            template_close = None
            if self.config.get_bool(f"{root}.send-close"):
                template_close = parse(self.config.get_str(f"{root}.template-close"))

            module = module_for_class(
                self.app,
                self.config,
                name,
                self.config.get_str(f"{root}.class-name"),
                allowlist,
                denylist,
                extras,
                template_open,
                template_close,
            )
            module.configure(name, root)
            self.modules[name] = module
            intervals.append(self.config.get_int(f"{root}.interval"))

        self.min_interval = min(intervals, default=_NO_MODULE_INTERVAL)

    def _spawn(self, target: Callable[..., Any], *args: Any) -> threading.Thread:
        thread = threading.Thread(target=target, args=args, daemon=True)
        thread.start()
        return thread

    def start(self) -> None:
        """Start the response handler, the modules, the group refresh and evaluation management.

        Raises RuntimeError when a module fails to start.
        """
        self.log.info("starting")
        self._spawn(self.response_loop)
        for name, module in self.modules.items():
            try:
                module.start()
            except Exception as err:
                raise RuntimeError(f"Error starting notifier module: {name}: {err}") from err
        self._spawn(self.manage_eval_loop)
        self._spawn(self._ticker_loop)

    def stop(self) -> None:
        """Stop refreshing and evaluating, then stop every module."""
        self.log.info("stopping")
        self.do_evaluations = False
        self._quit.set()
        for module in self.modules.values():
            module.stop()

    def _ticker_loop(self) -> None:
        while not self._quit.wait(_GROUP_REFRESH_SECONDS):
            self.send_cluster_request()

    def manage_eval_loop(self) -> None:
        """Hold the Zookeeper lock and perform evaluations until the session expires; repeat."""
        lock = self.app.zookeeper.new_lock(f"{self.app.zookeeper_root}/notifier")
        while not self._quit.wait(_POLL_SECONDS):
            try:
                lock.lock()
            except Exception as err:  # the lock implementation reports failures its own way
                self.log.warning("failed to get zk lock: %s", err)
                continue

            with self.app.zookeeper_expired as expired:
                self.do_evaluations = True
                self._spawn(self.send_evaluator_requests)
                self.log.info("starting evaluations")
                while not self._quit.is_set() and not expired.wait(_POLL_SECONDS):
                    pass
            self.do_evaluations = False
            self.log.info("stopping evaluations")

            while not self.app.zookeeper_connected and not self._quit.wait(_POLL_SECONDS):
                pass
            try:
                lock.unlock()
            except Exception as err:
                raise RuntimeError("Unable to release zookeeper lock after session expiration") from err

    def _await_reply(self, reply: queue.Queue) -> tuple[bool, Any]:
        while not self._quit.is_set():
            try:
                return True, reply.get(timeout=_POLL_SECONDS)
            except queue.Empty:
                continue
        return False, None

    def _send_storage_request(self, request: StorageRequest) -> None:
        try:
            self.app.storage_channel.put(request, timeout=_STORAGE_SEND_TIMEOUT)
        except queue.Full:
            self.log.error("timed out sending storage request %s", request.request_type)

    def send_cluster_request(self) -> None:
        """Ask storage for the cluster list; the reply is processed in the background."""
        request = StorageRequest(STORAGE_FETCH_CLUSTERS)
        self._spawn(self._receive_cluster_list, request.reply)
        self._send_storage_request(request)

    def _receive_cluster_list(self, reply: queue.Queue) -> None:
        received, response = self._await_reply(reply)
        if received:
            self.process_cluster_list(response)

    def _receive_consumer_list(self, cluster: str, reply: queue.Queue) -> None:
        received, response = self._await_reply(reply)
        if received:
            self.process_consumer_list(cluster, response)

    def send_evaluator_requests(self) -> None:
        """While evaluations are on, request evaluation of every group that is due."""
        while self.do_evaluations:
            now = _now()
            send_before = now - timedelta(seconds=self.min_interval)
            with self._lock:
                for cluster, groups in self.clusters.items():
                    for group, state in groups.items():
                        if state.last_eval < send_before:
                            self.log.debug("evaluating group %s", group)
                            self.app.evaluator_channel.put(
                                EvaluatorRequest(reply=self.evaluator_response, cluster=cluster, group=group)
                            )
                            state.last_eval = now
            time.sleep(0.001)

    def response_loop(self) -> None:
        """Hand every evaluation response other than not-found to the modules."""
        while not self._quit.is_set():
            try:
                response = self.evaluator_response.get(timeout=_POLL_SECONDS)
            except queue.Empty:
                continue
            if response is None:
                continue
            if response.status != Status.NOTFOUND:
                self._spawn(self.check_and_send_response_to_modules, response)

    def check_and_send_response_to_modules(self, response: ConsumerGroupStatus) -> None:
        """Track the incident for the group and notify each module that accepts it."""
        with self._lock:
            group = self.clusters.get(response.cluster, {}).get(response.group)
            if group is None:
                return

            if group.start is None and response.status > Status.OK:
                group.id = str(uuid.uuid4())
                group.start = _now()

            for module in self.modules.values():
                allowlist = module.group_allowlist
                denylist = module.group_denylist
                if allowlist is not None and not allowlist.search(response.group):
                    continue
                if denylist is not None and denylist.search(response.group):
                    continue
                if module.accept_consumer_group(response):
                    self.notify_module_func(module, response, group.start, group.id)

            if response.status == Status.OK:
                group.id = ""
                group.start = None

    def process_cluster_list(self, clusters: Any) -> None:
        """Replace the known clusters with the given list and request each one's groups."""
        names = list(clusters) if isinstance(clusters, (list, tuple)) else []
        requests: dict[str, StorageRequest] = {}
        with self._lock:
            for cluster in names:
                self.clusters.setdefault(cluster, {})
                requests[cluster] = StorageRequest(STORAGE_FETCH_CONSUMERS, cluster=cluster)
            for cluster in [c for c in self.clusters if c not in requests]:
                del self.clusters[cluster]

        for cluster, request in requests.items():
            self._spawn(self._receive_consumer_list, cluster, request.reply)
            self._send_storage_request(request)

    def process_consumer_list(self, cluster: str, groups: Any) -> None:
        """Replace a cluster's known groups, spreading first evaluations of new ones over the interval."""
        names = set(groups) if isinstance(groups, (list, tuple)) else set()
        with self._lock:
            known = self.clusters.get(cluster)
            if known is None:
                return
            for group in names:
                if group not in known:
                    jitter = random.randrange(max(1, self.min_interval * 1000))
                    known[group] = ConsumerGroupState(last_eval=_now() - timedelta(milliseconds=jitter))
            for group in [g for g in known if g not in names]:
                del known[group]

    def notify_module(
        self,
        module: NotifierModule,
        status: ConsumerGroupStatus,
        start_time: datetime | None,
        event_id: str,
    ) -> None:
        """Send a notification to one module if its threshold, send-once and interval allow it."""
        with self._lock:
            group = self.clusters.get(status.cluster, {}).get(status.group)
            if group is None:
                return

            name = module.name
            root = f"notifier.{name}"
            if start_time is not None and status.status == Status.OK and self.config.get_bool(f"{root}.send-close"):
                module.notify(status, event_id, start_time, True)
                group.last_notify[name] = None
                return

            if int(status.status) < self.config.get_int(f"{root}.threshold"):
                return

            last = group.last_notify.get(name)
            if last is not None and self.config.get_bool(f"{root}.send-once"):
                return

            now = _now()
            interval = timedelta(seconds=self.config.get_int(f"{root}.send-interval"))
            if last is None or now - last > interval:
                module.notify(status, event_id, start_time, False)
                group.last_notify[name] = now