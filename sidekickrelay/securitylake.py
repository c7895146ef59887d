"""OCSF security findings and the in-memory batch queue feeding the Security Lake output."""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

from .payload import FalcoPayload, Priority

SCHEMA_VERSION = "0.1.0"

SEV_UNKNOWN = 0
SEV_INFORMATIONAL = 1
SEV_LOW = 2
SEV_MEDIUM = 3
SEV_HIGH = 4
SEV_CRITICAL = 5
SEV_FATAL = 6

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass
class OCSFProduct:
    """The product that produced a finding."""

    vendor_name: str
    name: str

    def to_dict(self) -> dict[str, Any]:
        return {"vendor_name": self.vendor_name, "name": self.name}


@dataclass
class OCSFMetadata:
    """Schema version, product and labels of a finding."""

    version: str
    product: OCSFProduct
    labels: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "product": self.product.to_dict(),
            "labels": list(self.labels),
        }


@dataclass
class OCSFObservable:
    """A named value observed in an event."""

    name: str
    value: str
    type: str = "Other"
    type_id: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "type": self.type, "type_id": self.type_id, "value": self.value}


@dataclass
class OCSFFindingDetails:
    """Title, description and identity of a finding."""

    created_time: int
    desc: str
    title: str
    types: list[str]
    uid: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "created_time": self.created_time,
            "desc": self.desc,
            "title": self.title,
            "types": list(self.types),
            "uid": self.uid,
        }


@dataclass
class OCSFSecurityFinding:
    """An OCSF Security Finding (class 2001)."""

    finding: OCSFFindingDetails
    message: str
    metadata: OCSFMetadata
    observables: list[OCSFObservable]
    raw_data: str
    severity: str
    severity_id: int
    status: str
    timestamp: int
    activity_id: int = 1
    activity_name: str = "Generate"
    category_name: str = "Findings"
    category_uid: int = 2
    class_name: str = "Security Finding"
    class_uid: int = 2001
    state: str = "New"
    state_id: int = 1
    type_name: str = "Security Finding: Generate"
    type_uid: int = 200101

    def to_dict(self) -> dict[str, Any]:
        return {
            "activity_id": self.activity_id,
            "activity_name": self.activity_name,
            "category_name": self.category_name,
            "category_uid": self.category_uid,
            "class_name": self.class_name,
            "class_uid": self.class_uid,
            "finding": self.finding.to_dict(),
            "message": self.message,
            "metadata": self.metadata.to_dict(),
            "observables": [observable.to_dict() for observable in self.observables],
            "raw_data": self.raw_data,
            "severity": self.severity,
            "severity_id": self.severity_id,
            "state": self.state,
            "state_id": self.state_id,
            "status": self.status,
            "time": self.timestamp,
            "type_name": self.type_name,
            "type_uid": self.type_uid,
        }


def get_security_lake_severity(priority: Priority) -> tuple[int, str]:
    """Map a Falco priority to an OCSF severity id and name."""
    if priority in (Priority.DEBUG, Priority.INFORMATIONAL):
        return SEV_INFORMATIONAL, "Informational"
    if priority is Priority.NOTICE:
        return SEV_LOW, "Low"
    if priority is Priority.WARNING:
        return SEV_MEDIUM, "Medium"
    if priority is Priority.ERROR:
        return SEV_HIGH, "High"
    if priority is Priority.CRITICAL:
        return SEV_CRITICAL, "Critical"
    if priority in (Priority.ALERT, Priority.EMERGENCY):
        return SEV_FATAL, "Fatal"
    return SEV_UNKNOWN, "Uknown"


def _format_float(value: float) -> str:
    if value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    return repr(value)


def _observable_text(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, (float, Decimal)):
        return _format_float(float(value))
    return None


def get_observables(hostname: str, output_fields: dict[str, Any] | None) -> list[OCSFObservable]:
    """List the hostname and every scalar output field as observables."""
    observables = []
    if hostname:
        observables.append(OCSFObservable(name="hostname", value=hostname))
    for name, value in (output_fields or {}).items():
        text = _observable_text(value)
        if text is not None:
            observables.append(OCSFObservable(name=name, value=text))
    return observables


def _unix_millis(moment: datetime) -> int:
    return (moment - _EPOCH) // timedelta(milliseconds=1)


def new_ocsf_security_finding(payload: FalcoPayload) -> OCSFSecurityFinding:
    """Describe a Falco event as an OCSF security finding."""
    millis = _unix_millis(payload.time)
    severity_id, severity = get_security_lake_severity(payload.priority)
    return OCSFSecurityFinding(
        finding=OCSFFindingDetails(
            created_time=millis,
            desc=payload.output,
            title=payload.rule,
            types=[payload.source],
            uid=payload.uuid,
        ),
        message=payload.rule,
        metadata=OCSFMetadata(
            version=SCHEMA_VERSION,
            product=OCSFProduct(vendor_name="Falcosecurity", name="Falco"),
            labels=list(payload.tags),
        ),
        observables=get_observables(payload.hostname, payload.output_fields),
        raw_data=payload.to_json(),
        severity=severity,
        severity_id=severity_id,
        status=str(payload.priority),
        timestamp=millis,
    )


class OffsetOutOfRange(LookupError):
    """Raised when a read starts before the oldest record still retained."""


class BatchQueue:
    """A bounded, thread-safe log of records addressed by increasing offsets."""

    def __init__(self, capacity: int = 1000, start_offset: int = 0) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        if start_offset < 0:
            raise ValueError("start offset must not be negative")
        self._records: deque[tuple[int, bytes]] = deque(maxlen=capacity)
        self._next = start_offset
        self._lock = threading.Lock()

    def write(self, data: bytes | str) -> int:
        """Append a record and return its offset; the oldest is dropped when full."""
        if isinstance(data, str):
            data = data.encode("utf-8")
        with self._lock:
            offset = self._next
            self._records.append((offset, bytes(data)))
            self._next += 1
            return offset

    def earliest(self) -> int:
        """Return the offset of the oldest retained record, or the next offset when empty."""
        with self._lock:
            return self._records[0][0] if self._records else self._next

    def read_batch(self, offset: int, size: int) -> list[tuple[int, bytes]]:
        """Return up to ``size`` records from ``offset``; fewer when the log ends first."""
        if size <= 0:
            raise ValueError("batch size must be positive")
        with self._lock:
            earliest = self._records[0][0] if self._records else self._next
            if offset < earliest:
                raise OffsetOutOfRange(
                    f"offset {offset} is before the earliest retained offset {earliest}"
                )
            start = offset - earliest
            return [self._records[position] for position in range(start, min(start + size, len(self._records)))]