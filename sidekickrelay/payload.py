"""Falco event payloads, priorities and templated output fields."""

from __future__ import annotations

import enum
import json
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)


class Priority(enum.IntEnum):
    """Falco priority levels, ordered from least to most severe."""

    DEFAULT = 0
    DEBUG = 1
    INFORMATIONAL = 2
    NOTICE = 3
    WARNING = 4
    ERROR = 5
    CRITICAL = 6
    ALERT = 7
    EMERGENCY = 8

    def __str__(self) -> str:
        return "" if self is Priority.DEFAULT else self.name.capitalize()


def parse_priority(value: Any) -> Priority:
    """Return the priority named by ``value``; unknown names give DEFAULT."""
    if isinstance(value, Priority):
        return value
    if not isinstance(value, str):
        return Priority.DEFAULT
    return Priority.__members__.get(value.upper(), Priority.DEFAULT)


class TemplateError(ValueError):
    """Raised when a field template cannot be parsed or executed."""


_TIME_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2})[Tt](\d{2}:\d{2}:\d{2})(?:\.(\d+))?([Zz]|[+-]\d{2}:\d{2})$"
)


def _parse_time(text: str) -> datetime:
    match = _TIME_RE.match(text)
    if match is None:
        raise ValueError(f"invalid RFC 3339 time {text!r}")
    date, clock, frac, zone = match.groups()
    micro = int((frac or "")[:6].ljust(6, "0"))
    if zone.upper() == "Z":
        tz = timezone.utc
    else:
        sign = -1 if zone[0] == "-" else 1
        tz = timezone(sign * timedelta(hours=int(zone[1:3]), minutes=int(zone[4:6])))
    try:
        parsed = datetime.fromisoformat(f"{date}T{clock}")
    except ValueError as exc:
        raise ValueError(f"invalid RFC 3339 time {text!r}") from exc
    return parsed.replace(microsecond=micro, tzinfo=tz)


def _format_time(moment: datetime) -> str:
    text = (
        f"{moment.year:04d}-{moment.month:02d}-{moment.day:02d}"
        f"T{moment.hour:02d}:{moment.minute:02d}:{moment.second:02d}"
    )
    if moment.microsecond:
        text += "." + f"{moment.microsecond:06d}".rstrip("0")
    offset = moment.utcoffset()
    if not offset:
        return text + "Z"
    minutes = int(offset.total_seconds()) // 60
    sign = "-" if minutes < 0 else "+"
    minutes = abs(minutes)
    return f"{text}{sign}{minutes // 60:02d}:{minutes % 60:02d}"


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() and "." not in str(value) else float(value)
    raise TypeError(f"{type(value).__name__} is not JSON serialisable")


@dataclass
class FalcoPayload:
    """An event as posted by Falco."""

    output: str = ""
    priority: Priority = Priority.DEFAULT
    rule: str = ""
    time: datetime = ZERO_TIME
    output_fields: dict[str, Any] = field(default_factory=dict)
    source: str = ""
    tags: list[str] = field(default_factory=list)
    hostname: str = ""
    uuid: str = ""

    def check(self) -> bool:
        """Tell whether the event carries a priority, a rule and an output."""
        return self.priority is not Priority.DEFAULT and bool(self.rule) and bool(self.output)

    def to_dict(self) -> dict[str, Any]:
        return {
            "uuid": self.uuid,
            "output": self.output,
            "priority": str(self.priority),
            "rule": self.rule,
            "time": _format_time(self.time),
            "output_fields": dict(self.output_fields),
            "source": self.source,
            "tags": list(self.tags),
            "hostname": self.hostname,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"), default=_json_default)


def _string(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a string")
    return value


def decode_payload(body: str | bytes) -> FalcoPayload:
    """Decode a JSON event body; integers stay ``int``, other numbers ``Decimal``."""
    if isinstance(body, (bytes, bytearray)):
        try:
            body = bytes(body).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ValueError("payload is not valid UTF-8") from exc
    try:
        raw = json.loads(body, parse_float=Decimal)
    except json.JSONDecodeError as exc:
        raise ValueError(f"invalid JSON payload: {exc}") from exc
    if raw is None:
        return FalcoPayload()
    if not isinstance(raw, dict):
        raise ValueError("payload must be a JSON object")

    data = {str(key).lower(): value for key, value in raw.items()}

    priority = data.get("priority")
    if priority is not None and not isinstance(priority, str):
        raise ValueError("field 'priority' must be a string")

    when = data.get("time")
    if when is not None and not isinstance(when, str):
        raise ValueError("field 'time' must be a string")

    fields = data.get("output_fields")
    if fields is not None and not isinstance(fields, dict):
        raise ValueError("field 'output_fields' must be an object")

    tags = data.get("tags")
    if tags is not None and (
        not isinstance(tags, list) or not all(isinstance(tag, str) for tag in tags)
    ):
        raise ValueError("field 'tags' must be a list of strings")

    return FalcoPayload(
        output=_string(data, "output"),
        priority=parse_priority(priority),
        rule=_string(data, "rule"),
        time=_parse_time(when) if when is not None else ZERO_TIME,
        output_fields=dict(fields or {}),
        source=_string(data, "source"),
        tags=list(tags or []),
        hostname=_string(data, "hostname"),
        uuid=_string(data, "uuid"),
    )


_ACTION_RE = re.compile(r"\{\{(-\s)?(.*?)(\s-)?\}\}", re.S)
_FIELD_RE = re.compile(r"(?:\.[A-Za-z_][A-Za-z0-9_]*)+")
_INDEX_RE = re.compile(r'index\s+\.((?:\s+"(?:[^"\\]|\\.)*")+)')
_QUOTED_RE = re.compile(r'"(?:[^"\\]|\\.)*"')
_NO_VALUE = "<no value>"


def _parse_action(expr: str) -> tuple[str, Any]:
    if expr.startswith("/*") and expr.endswith("*/"):
        return ("text", "")
    if expr == ".":
        return ("dot", None)
    if _FIELD_RE.fullmatch(expr):
        return ("field", tuple(expr[1:].split(".")))
    index = _INDEX_RE.fullmatch(expr)
    if index:
        return ("index", tuple(json.loads(key) for key in _QUOTED_RE.findall(index.group(1))))
    if _QUOTED_RE.fullmatch(expr):
        return ("text", json.loads(expr))
    if not expr:
        raise TemplateError("missing value for command")
    raise TemplateError(f"unsupported action {{{{{expr}}}}}")


def _parse_template(template: str) -> list[tuple[str, Any]]:
    nodes: list[tuple[str, Any]] = []
    position = 0
    trim_next = False
    for match in _ACTION_RE.finditer(template):
        text = template[position:match.start()]
        if trim_next:
            text = text.lstrip()
        if match.group(1):
            text = text.rstrip()
        nodes.append(("text", text))
        nodes.append(_parse_action(match.group(2).strip()))
        trim_next = bool(match.group(3))
        position = match.end()
    tail = template[position:]
    if "{{" in tail:
        raise TemplateError("unclosed action")
    nodes.append(("text", tail.lstrip() if trim_next else tail))
    return nodes


def _format_value(value: Any) -> str:
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Mapping):
        items = " ".join(f"{key}:{_format_value(value[key])}" for key in sorted(value))
        return f"map[{items}]"
    if isinstance(value, (list, tuple)):
        return "[" + " ".join(_format_value(item) for item in value) + "]"
    return str(value)


def _lookup(fields: Mapping[str, Any], path: tuple[str, ...], how: str) -> Any:
    current: Any = fields
    for name in path:
        if current is None:
            raise TemplateError(f"nil value while evaluating {name!r}")
        if not isinstance(current, Mapping):
            raise TemplateError(f"can't {how} {name!r} in {type(current).__name__}")
        current = current.get(name)
    return current


def render_template(template: str, fields: Mapping[str, Any] | None) -> str:
    """Render a field template against the event's output fields."""
    nodes = _parse_template(template)
    data: Mapping[str, Any] = fields if fields is not None else {}
    parts = []
    for kind, value in nodes:
        if kind == "text":
            parts.append(value)
            continue
        if kind == "dot":
            result: Any = data
        elif kind == "field":
            result = _lookup(data, value, "evaluate field")
        else:
            result = _lookup(data, value, "index")
        parts.append(_NO_VALUE if result is None else _format_value(result))
    return "".join(parts)