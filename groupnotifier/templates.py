"""Message templates and the helper functions available inside them."""

from __future__ import annotations

import json
import logging
import ssl
from dataclasses import is_dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Mapping

from jinja2 import DictLoader, Environment, StrictUndefined, Template

from .status import ConsumerGroupStatus, PartitionStatus, Status

log = logging.getLogger(__name__)


def _json_default(obj: Any) -> Any:
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if isinstance(obj, Enum):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    if is_dataclass(obj):
        return vars(obj)
    raise TypeError(f"cannot encode {type(obj).__name__}")


def json_encoder(obj: Any) -> str:
    """Encode an object as compact JSON; an unencodable object gives an empty string."""
    try:
        return json.dumps(obj, default=_json_default, separators=(",", ":"))
    except (TypeError, ValueError):
        return ""


def topics_by_status(partitions: Iterable[PartitionStatus]) -> dict[str, list[str]]:
    """Map each status short name to the distinct topics of partitions in that status."""
    grouped: dict[str, dict[str, None]] = {}
    for partition in partitions:
        grouped.setdefault(str(partition.status), {})[partition.topic] = None
    return {status: list(topics) for status, topics in grouped.items()}


def count_partitions(partitions: Iterable[PartitionStatus]) -> dict[str, int]:
    """Count partitions by problem kind: warn, stop, stall, rewind and unknown."""
    counts = {"warn": 0, "stop": 0, "stall": 0, "rewind": 0, "unknown": 0}
    buckets = {
        Status.WARNING: "warn",
        Status.STOP: "stop",
        Status.STALL: "stall",
        Status.REWIND: "rewind",
    }
    for partition in partitions:
        if partition.status == Status.OK:
            continue
        counts[buckets.get(partition.status, "unknown")] += 1
    return counts


def add(a: int, b: int) -> int:
    return a + b


def minus(a: int, b: int) -> int:
    return a - b


def multiply(a: int, b: int) -> int:
    return a * b


def divide(a: int, b: int) -> int:
    """Integer division truncating toward zero."""
    if b == 0:
        raise ZeroDivisionError("integer divide by zero")
    quotient = abs(a) // abs(b)
    return quotient if (a < 0) == (b < 0) else -quotient


def max_lag(partition: PartitionStatus | None) -> int:
    """Current lag of the partition, or 0 when there is none."""
    return 0 if partition is None else partition.current_lag


_MONTHS = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)
_DAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

_LAYOUT_TOKENS = (
    "January", "Jan", "Monday", "Mon", "MST", "2006",
    "Z07:00:00", "Z070000", "Z07:00", "Z0700", "Z07",
    "-07:00:00", "-070000", "-07:00", "-0700", "-07",
    "__2", "_2", "002", "01", "02", "03", "04", "05", "06", "15",
    "PM", "pm", "1", "2", "3", "4", "5",
)


def _format_offset(seconds: int, token: str) -> str:
    if token.startswith("Z") and seconds == 0:
        return "Z"
    sign = "-" if seconds < 0 else "+"
    hours, rest = divmod(abs(seconds), 3600)
    minutes, secs = divmod(rest, 60)
    shape = token[1:]
    if shape == "07:00:00":
        return f"{sign}{hours:02d}:{minutes:02d}:{secs:02d}"
    if shape == "070000":
        return f"{sign}{hours:02d}{minutes:02d}{secs:02d}"
    if shape == "07:00":
        return f"{sign}{hours:02d}:{minutes:02d}"
    if shape == "0700":
        return f"{sign}{hours:02d}{minutes:02d}"
    return f"{sign}{hours:02d}"


def _format_token(token: str, when: datetime) -> str:
    offset = int(when.utcoffset().total_seconds()) if when.utcoffset() is not None else 0
    hour12 = when.hour % 12 or 12
    yday = when.timetuple().tm_yday
    simple = {
        "January": _MONTHS[when.month - 1],
        "Jan": _MONTHS[when.month - 1][:3],
        "Monday": _DAYS[when.weekday()],
        "Mon": _DAYS[when.weekday()][:3],
        "2006": f"{when.year:04d}",
        "06": f"{when.year % 100:02d}",
        "01": f"{when.month:02d}",
        "1": str(when.month),
        "02": f"{when.day:02d}",
        "_2": f"{when.day:2d}",
        "2": str(when.day),
        "002": f"{yday:03d}",
        "__2": f"{yday:3d}",
        "15": f"{when.hour:02d}",
        "03": f"{hour12:02d}",
        "3": str(hour12),
        "04": f"{when.minute:02d}",
        "4": str(when.minute),
        "05": f"{when.second:02d}",
        "5": str(when.second),
        "PM": "PM" if when.hour >= 12 else "AM",
        "pm": "pm" if when.hour >= 12 else "am",
    }
    if token in simple:
        return simple[token]
    if token == "MST":
        name = when.tzname()
        if name and name[0] not in "+-":
            return name
        return _format_offset(offset, "-0700")
    return _format_offset(offset, token)


def _format_fraction(digit: str, width: int, when: datetime) -> str:
    nanos = f"{when.microsecond * 1000:09d}"[:width]
    if digit == "9":
        nanos = nanos.rstrip("0")
    return nanos


def _format_layout(layout: str, when: datetime) -> str:
    out: list[str] = []
    i = 0
    while i < len(layout):
        char = layout[i]
        if char == "_" and layout[i + 1:i + 5] == "2006":
            out.append("_")
            i += 1
            continue
        if char in ".," and i + 1 < len(layout) and layout[i + 1] in "09":
            digit = layout[i + 1]
            j = i + 1
            while j < len(layout) and layout[j] == digit:
                j += 1
            if not (j < len(layout) and layout[j].isdigit()):
                fraction = _format_fraction(digit, j - i - 1, when)
                if fraction:
                    out.append(char + fraction)
                i = j
                continue
        token = next((t for t in _LAYOUT_TOKENS if layout.startswith(t, i)), None)
        if token is None:
            out.append(char)
            i += 1
        else:
            out.append(_format_token(token, when))
            i += len(token)
    return "".join(out)


def format_timestamp(timestamp: int, format_string: str) -> str:
    """Format a millisecond Unix timestamp in local time using a reference-time layout.

    The layout is written with the reference time Mon Jan 2 15:04:05 MST 2006.
    """
    seconds, millis = divmod(int(timestamp), 1000)
    when = datetime.fromtimestamp(seconds, tz=timezone.utc).astimezone()
    when = when.replace(microsecond=millis * 1000)
    return _format_layout(format_string, when)


_HELPERS = {
    "jsonencoder": json_encoder,
    "topicsbystatus": topics_by_status,
    "partitioncounts": count_partitions,
    "add": add,
    "minus": minus,
    "multiply": multiply,
    "divide": divide,
    "maxlag": max_lag,
    "formattimestamp": format_timestamp,
}


def template_environment() -> Environment:
    """A template environment with the notification helper functions available."""
    env = Environment(undefined=StrictUndefined, keep_trailing_newline=True, autoescape=False)
    env.globals.update(_HELPERS)
    env.filters.update(_HELPERS)
    return env


def parse_template_string(source: str) -> Template:
    """Compile a template from text."""
    return template_environment().from_string(source)


def parse_template_files(*args: str | Path) -> Template:
    """Compile template files and return the first; the others can be included by file name."""
    if not args:
        raise ValueError("no files named for template parsing")
    sources = {Path(name).name: Path(name).read_text(encoding="utf-8") for name in args}
    env = template_environment()
    env.loader = DictLoader(sources)
    return env.get_template(Path(args[0]).name)


def execute_template(
    template: Template,
    extras: Mapping[str, str] | None,
    status: ConsumerGroupStatus,
    event_id: str,
    start_time: datetime | None,
) -> str:
    """Render a template for a consumer group status and incident."""
    return template.render(
        Cluster=status.cluster,
        Group=status.group,
        ID=event_id,
        Start=start_time,
        Extras=dict(extras or {}),
        Result=status,
    )


class _ServerNameSSLContext(ssl.SSLContext):
    """An SSL context that connects using a fixed server name when one is set."""

    server_name: str | None = None

    def wrap_socket(self, sock, *args, server_hostname=None, **kwargs):
        return super().wrap_socket(sock, *args, server_hostname=self.server_name or server_hostname, **kwargs)

    def wrap_bio(self, incoming, outgoing, *args, server_hostname=None, **kwargs):
        return super().wrap_bio(
            incoming, outgoing, *args, server_hostname=self.server_name or server_hostname, **kwargs
        )


def build_ssl_context(
    extra_ca_file: str | None, no_verify: bool, server_name: str | None = None
) -> ssl.SSLContext:
    """Build a client SSL context trusting the system CAs plus an optional extra CA file.

    The extra CA file is ignored when verification is disabled. A missing file raises.
    """
    context = _ServerNameSSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.server_name = server_name or None
    try:
        context.load_default_certs()
    except ssl.SSLError:
        log.warning("unable to load system certs, using empty cert pool instead")

    if extra_ca_file and not no_verify:
        path = Path(extra_ca_file)
        if not path.is_file():
            raise FileNotFoundError(f"failed to append {extra_ca_file!r} to root CAs: no such file")
        try:
            context.load_verify_locations(cafile=str(path))
        except ssl.SSLError:
            log.warning("no certs appended, using system certs only")

    if no_verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context