"""Alertmanager alert payloads built from Falco events."""

from __future__ import annotations

import re
from datetime import timedelta
from decimal import Decimal
from typing import Any

from .config import Configuration
from .payload import ZERO_TIME, FalcoPayload, Priority, _format_time, parse_priority

_DEFAULT_SEVERITY = {
    Priority.DEBUG: "information",
    Priority.INFORMATIONAL: "information",
    Priority.NOTICE: "information",
    Priority.WARNING: "warning",
    Priority.ERROR: "warning",
    Priority.CRITICAL: "critical",
    Priority.ALERT: "critical",
    Priority.EMERGENCY: "critical",
}

# Alertmanager does not accept these characters in label names.
_LABEL_NAME = str.maketrans({".": "_", "[": "_", "]": ""})
_INT_RE = re.compile(r"^[+-]?\d+$")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


def _parse_drop_count(value: Any) -> int | None:
    if not isinstance(value, str) or not _INT_RE.match(value):
        return None
    count = int(value)
    if not _INT64_MIN <= count <= _INT64_MAX:
        return None
    return count


def _number_text(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, Decimal)):
        return str(value)
    return None


def new_alertmanager_payload(payload: FalcoPayload, config: Configuration) -> list[dict[str, Any]]:
    """Build the list of alerts Alertmanager expects for one event."""
    labels: dict[str, str] = {}
    annotations: dict[str, str] = {}
    priority = payload.priority
    drop_default = parse_priority(config.get("Alertmanager.DropEventDefaultPriority"))

    for name, value in payload.output_fields.items():
        if name.startswith("n_evts"):
            continue
        if name.startswith("n_drop"):
            dropped = _parse_drop_count(value)
            if dropped is None:
                continue
            if dropped == 0:
                priority = max(priority, Priority.WARNING)
                label = "0"
            else:
                for threshold in config.drop_event_thresholds:
                    if dropped > threshold.value:
                        label = f">{threshold.value}"
                        priority = max(priority, threshold.priority)
                        break
                else:
                    label = value
                    priority = max(priority, drop_default)
            labels[name] = label
            continue
        if isinstance(value, str):
            labels[name.translate(_LABEL_NAME)] = value
            continue
        text = _number_text(value)
        if text is not None:
            labels[name.translate(_LABEL_NAME)] = text

    labels["source"] = "falco"
    labels["rule"] = payload.rule
    labels["eventsource"] = payload.source
    if payload.hostname:
        labels["hostname"] = payload.hostname
    if payload.tags:
        labels["tags"] = ",".join(payload.tags)
    labels["priority"] = str(priority)

    custom_severity = config.get("Alertmanager.CustomSeverityMap")
    if priority in custom_severity:
        labels["severity"] = custom_severity[priority]
    else:
        labels["severity"] = _DEFAULT_SEVERITY.get(priority, "")

    annotations["info"] = payload.output
    annotations["description"] = payload.output
    annotations["summary"] = payload.rule

    expires_after = config.get("Alertmanager.ExpiresAfter")
    ends_at = payload.time + timedelta(seconds=expires_after) if expires_after else ZERO_TIME

    labels.update(config.get("Alertmanager.ExtraLabels"))
    annotations.update(config.get("Alertmanager.ExtraAnnotations"))

    return [{"labels": labels, "annotations": annotations, "endsAt": _format_time(ends_at)}]