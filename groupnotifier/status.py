"""Consumer group status records handed to notifiers."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any


class Status(IntEnum):
    """Evaluation status of a consumer group or partition, ordered by severity."""

    NOTFOUND = 0
    OK = 1
    WARNING = 2
    ERROR = 3
    STOP = 4
    STALL = 5
    REWIND = 6

    def __str__(self) -> str:
        return _SHORT_NAMES[self]

    def __format__(self, spec: str) -> str:
        return format(str(self), spec)


_SHORT_NAMES = {
    Status.NOTFOUND: "NOTFOUND",
    Status.OK: "OK",
    Status.WARNING: "WARN",
    Status.ERROR: "ERR",
    Status.STOP: "STOP",
    Status.STALL: "STALL",
    Status.REWIND: "REWIND",
}


@dataclass
class ConsumerOffset:
    """A committed offset for a partition, with its timestamp and lag."""

    offset: int = 0
    timestamp: int = 0
    observed_at: int = 0
    lag: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "offset": self.offset,
            "timestamp": self.timestamp,
            "observedAt": self.observed_at,
            "lag": self.lag,
        }


@dataclass
class PartitionStatus:
    """Evaluation result for a single partition consumed by a group."""

    topic: str = ""
    partition: int = 0
    owner: str = ""
    client_id: str = ""
    status: Status = Status.NOTFOUND
    start: ConsumerOffset | None = None
    end: ConsumerOffset | None = None
    current_lag: int = 0
    complete: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "topic": self.topic,
            "partition": self.partition,
            "owner": self.owner,
            "client_id": self.client_id,
            "status": str(self.status),
            "start": self.start.to_dict() if self.start else None,
            "end": self.end.to_dict() if self.end else None,
            "current_lag": self.current_lag,
            "complete": self.complete,
        }


@dataclass
class ConsumerGroupStatus:
    """Evaluation result for a consumer group."""

    cluster: str = ""
    group: str = ""
    status: Status = Status.NOTFOUND
    complete: float = 0.0
    partitions: list[PartitionStatus] = field(default_factory=list)
    total_partitions: int = 0
    max_lag: PartitionStatus | None = None
    total_lag: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "cluster": self.cluster,
            "group": self.group,
            "status": str(self.status),
            "complete": self.complete,
            "partitions": [p.to_dict() for p in self.partitions],
            "partition_count": self.total_partitions,
            "maxlag": self.max_lag.to_dict() if self.max_lag else None,
            "totallag": self.total_lag,
        }