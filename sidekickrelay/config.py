"""Loading and validating the relay's settings from defaults, a file and the environment."""

from __future__ import annotations

import copy
import ipaddress
import logging
import os
import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .defaults import default_settings, merge_settings
from .payload import Priority, TemplateError, parse_priority, render_template

log = logging.getLogger(__name__)

_PRIORITY_RE = re.compile(
    r"(emergency|alert|critical|error|warning|notice|informational|debug)", re.IGNORECASE
)
_PROM_NAME_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")
_INT_RE = re.compile(r"^[+-]?\d+$")
_TRUE = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE = {"0", "f", "F", "FALSE", "false", "False"}

_PRIORITY_CHECKED = (
    "Slack",
    "Rocketchat",
    "Mattermost",
    "Teams",
    "Datadog",
    "Alertmanager",
    "Elasticsearch",
    "Influxdb",
    "Loki",
    "NATS",
    "STAN",
    "AWS.Lambda",
    "AWS.SQS",
    "AWS.SNS",
    "AWS.S3",
    "AWS.SecurityLake",
    "AWS.CloudWatchLogs",
    "AWS.Kinesis",
    "Opsgenie",
    "Webhook",
    "CloudEvents",
    "Azure.EventHub",
    "GCP.PubSub",
    "GCP.Storage",
    "GCP.CloudFunctions",
    "GCP.CloudRun",
    "Googlechat",
    "Cliq",
    "Kafka",
    "KafkaRest",
    "Pagerduty",
    "Kubeless",
    "Openfaas",
    "Tekton",
    "Fission",
    "Rabbitmq",
    "Wavefront",
    "Yandex.S3",
    "Yandex.DataStreams",
    "Syslog",
    "MQTT",
    "PolicyReport",
    "Spyderbat",
    "Zincsearch",
    "NodeRed",
    "Gotify",
    "TimescaleDB",
    "Redis",
    "Telegram",
    "N8n",
    "OpenObserve",
)

_MESSAGE_FORMAT_OUTPUTS = ("Slack", "Rocketchat", "Mattermost", "Googlechat", "Cliq")


class ConfigError(Exception):
    """Raised when the settings cannot be used to start the relay."""


@dataclass(frozen=True)
class ThresholdConfig:
    """A drop-event threshold: above ``value`` drops, raise to ``priority``."""

    priority: Priority
    value: int


def _find_key(mapping: Mapping[str, Any], name: str) -> str | None:
    if name in mapping:
        return name
    lowered = name.lower()
    return next(
        (key for key in mapping if isinstance(key, str) and key.lower() == lowered), None
    )


def _section(settings: dict[str, Any], path: str) -> dict[str, Any]:
    current = settings
    for name in path.split("."):
        key = _find_key(current, name)
        if key is None or not isinstance(current[key], dict):
            current[name] = {}
            key = name
        current = current[key]
    return current


@dataclass
class Configuration:
    """The resolved settings, with the lists derived from them."""

    settings: dict[str, Any] = field(default_factory=default_settings)
    drop_event_thresholds: list[ThresholdConfig] = field(default_factory=list)
    loki_extra_labels: list[str] = field(default_factory=list)
    prometheus_extra_labels: list[str] = field(default_factory=list)
    message_formats: dict[str, str] = field(default_factory=dict)

    def get(self, path: str) -> Any:
        """Return the setting at a dotted path; names match case-insensitively."""
        current: Any = self.settings
        for name in path.split("."):
            if not isinstance(current, Mapping):
                raise KeyError(path)
            key = _find_key(current, name)
            if key is None:
                raise KeyError(path)
            current = current[key]
        return current

    def minimum_priority(self, path: str) -> Priority:
        """Return the minimum priority configured for the output at ``path``."""
        return parse_priority(self.get(f"{path}.MinimumPriority"))

    @property
    def listen_address(self) -> str:
        return self.get("ListenAddress")

    @property
    def listen_port(self) -> int:
        return self.get("ListenPort")

    @property
    def debug(self) -> bool:
        return self.get("Debug")

    @property
    def bracket_replacer(self) -> str:
        return self.get("BracketReplacer")

    @property
    def customfields(self) -> dict[str, str]:
        return self.get("Customfields")

    @property
    def templatedfields(self) -> dict[str, str]:
        return self.get("Templatedfields")


def check_priority(prio: str) -> str:
    """Keep ``prio`` when it names a Falco priority, otherwise return ''."""
    return prio if _PRIORITY_RE.search(prio) else ""


def parse_key_values(value: str) -> dict[str, str]:
    """Parse ``key:value`` pairs separated by commas, skipping malformed ones."""
    pairs = {}
    for item in value.split(","):
        parts = item.split(":")
        if len(parts) == 2:
            pairs[parts[0]] = parts[1]
    return pairs


def parse_drop_thresholds(value: str) -> list[ThresholdConfig]:
    """Parse ``count:priority`` thresholds, highest count first."""
    thresholds = []
    for item in value.replace(" ", "").split(","):
        parts = item.split(":", 1)
        if len(parts) != 2:
            log.error(
                "AlertManager - Fail to parse threshold - No priority given for threshold %s",
                item,
            )
            continue
        count = parts[0].strip()
        if not _INT_RE.match(count):
            log.error("AlertManager - Fail to parse threshold - Atoi fail %s", item)
            continue
        priority = parse_priority(parts[1].strip())
        if priority is Priority.DEFAULT:
            log.error(
                "AlertManager - Priority '%s' is not a valid falco priority level", str(priority)
            )
            continue
        thresholds.append(ThresholdConfig(priority=priority, value=int(count)))
    return sorted(thresholds, key=lambda threshold: threshold.value, reverse=True)


class _AnyFields(Mapping):
    """Fields that answer every lookup, so a template can be checked without data."""

    def __getitem__(self, key: Any) -> _AnyFields:
        return self

    def __iter__(self) -> Iterator[Any]:
        return iter(())

    def __len__(self) -> int:
        return 0


def _check_template(template: str) -> None:
    render_template(template, _AnyFields())


def _parse_bool(text: str) -> bool:
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"invalid boolean {text!r}")


def _coerce(value: Any, like: Any) -> Any:
    if isinstance(like, bool):
        if isinstance(value, bool):
            return value
        if isinstance(value, int):
            return value != 0
        if isinstance(value, str):
            return _parse_bool(value.strip())
        raise ValueError(f"cannot use {value!r} as a boolean")
    if isinstance(like, int):
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, str):
            text = value.strip()
            if _INT_RE.match(text):
                return int(text)
            try:
                return int(text, 0)
            except ValueError:
                raise ValueError(f"invalid integer {value!r}") from None
        raise ValueError(f"cannot use {value!r} as an integer")
    if isinstance(like, list):
        if isinstance(value, str):
            return value.split(",") if value else []
        if isinstance(value, (list, tuple)):
            return [str(item) for item in value]
        raise ValueError(f"cannot use {value!r} as a list")
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        raise ValueError(f"cannot use {value!r} as a string")
    return str(value)


def _string_map(value: Any) -> dict[Any, str]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"cannot use {value!r} as a map")
    return {key: "" if item is None else str(item) for key, item in value.items()}


def _resolve(
    settings: dict[str, Any],
    defaults: Mapping[str, Any],
    environ: Mapping[str, str],
    prefix: tuple[str, ...],
) -> None:
    for key, like in defaults.items():
        name = prefix + (key,)
        dotted = ".".join(name)
        if isinstance(like, dict) and like:
            current = settings.get(key)
            if not isinstance(current, dict):
                log.error("Error unmarshalling config : %s is not a section", dotted)
                current = copy.deepcopy(like)
                settings[key] = current
            _resolve(current, like, environ, name)
            continue
        if isinstance(like, dict):
            try:
                settings[key] = _string_map(settings.get(key))
            except ValueError as exc:
                log.error("Error unmarshalling config : %s : %s", dotted, exc)
                settings[key] = {}
            continue
        raw = settings.get(key, like)
        env_value = environ.get("_".join(name).upper())
        if env_value:
            raw = env_value
        try:
            settings[key] = _coerce(raw, like)
        except ValueError as exc:
            log.error("Error unmarshalling config : %s : %s", dotted, exc)
            settings[key] = copy.deepcopy(like)


def _read_file(config_file: str | os.PathLike[str]) -> Mapping[str, Any]:
    path = Path(config_file)
    if not path.is_file():
        raise ConfigError(f"path '{config_file}' does not exist")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, yaml.YAMLError) as exc:
        log.error("Error when reading config file : %s", exc)
        return {}
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        log.error("Error when reading config file : top level is not a mapping")
        return {}
    return data


def _apply_customfields(settings: dict[str, Any], value: str, environ: Mapping[str, str]) -> None:
    fields = settings["Customfields"]
    for item in value.split(","):
        parts = item.split(":")
        if len(parts) != 2:
            continue
        name, content = parts
        if content.startswith("%"):
            resolved = environ.get(content[1:], "")
            if resolved:
                fields[name] = resolved
            else:
                log.error("Can't find env var %s for custom fields", content[1:])
        else:
            fields[name] = content


def _apply_templatedfields(settings: dict[str, Any], value: str) -> None:
    fields = settings["Templatedfields"]
    for item in value.split(","):
        parts = item.split(":")
        if len(parts) != 2:
            continue
        name, template = parts
        try:
            _check_template(template)
        except TemplateError as exc:
            log.error("Error parsing templated fields %s : %s", name, exc)
        else:
            fields[name] = template


def _apply_named_values(target: dict[str, str], value: str, kind: str) -> None:
    for item in value.split(","):
        name, sep, content = item.partition(":")
        if not _PROM_NAME_RE.match(name):
            log.error("AlertManager - Extra %s name '%s' is not valid", kind, name)
        elif sep:
            target[name] = content.strip()
        else:
            target[name] = ""


def _apply_severity_map(target: dict[Priority, str], value: str) -> None:
    for item in value.split(","):
        name, sep, severity = item.partition(":")
        priority = parse_priority(name)
        if priority is Priority.DEFAULT:
            log.error("AlertManager - Priority '%s' is not a valid falco priority level", name)
        elif sep:
            target[priority] = severity.strip()
        else:
            log.error(
                "AlertManager - No severity given to '%s' (tuple extracted: '%s')", name, item
            )


def _severity_map_from_file(raw: Mapping[Any, str]) -> dict[Priority, str]:
    result = {}
    for name, severity in raw.items():
        priority = parse_priority(name)
        if priority is Priority.DEFAULT:
            log.error("AlertManager - Priority '%s' is not a valid falco priority level", name)
            continue
        result[priority] = severity
    return result


def _split_labels(value: str) -> list[str]:
    return value.replace(" ", "").split(",") if value else []


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    environ: Mapping[str, str] | None = None,
) -> Configuration:
    """Build the configuration from defaults, an optional YAML file and the environment."""
    env = os.environ if environ is None else environ
    defaults = default_settings()
    settings = default_settings()
    if config_file:
        settings = merge_settings(settings, _read_file(config_file))
    _resolve(settings, defaults, env, ())

    alertmanager = settings["Alertmanager"]
    alertmanager["CustomSeverityMap"] = _severity_map_from_file(alertmanager["CustomSeverityMap"])

    if "CUSTOMFIELDS" in env:
        _apply_customfields(settings, env["CUSTOMFIELDS"], env)
    if "TEMPLATEDFIELDS" in env:
        _apply_templatedfields(settings, env["TEMPLATEDFIELDS"])
    if "WEBHOOK_CUSTOMHEADERS" in env:
        settings["Webhook"]["CustomHeaders"].update(parse_key_values(env["WEBHOOK_CUSTOMHEADERS"]))
    if "CLOUDEVENTS_EXTENSIONS" in env:
        settings["CloudEvents"]["Extensions"].update(parse_key_values(env["CLOUDEVENTS_EXTENSIONS"]))
    if "ALERTMANAGER_EXTRALABELS" in env:
        _apply_named_values(alertmanager["ExtraLabels"], env["ALERTMANAGER_EXTRALABELS"], "label")
    if "ALERTMANAGER_EXTRAANNOTATIONS" in env:
        _apply_named_values(
            alertmanager["ExtraAnnotations"], env["ALERTMANAGER_EXTRAANNOTATIONS"], "annotation"
        )
    if "ALERTMANAGER_CUSTOMSEVERITYMAP" in env:
        _apply_severity_map(alertmanager["CustomSeverityMap"], env["ALERTMANAGER_CUSTOMSEVERITYMAP"])
    if "ALERTMANAGER_DROPEVENTTHRESHOLDS" in env:
        alertmanager["DropEventThresholds"] = env["ALERTMANAGER_DROPEVENTTHRESHOLDS"]
    if "GCP_PUBSUB_CUSTOMATTRIBUTES" in env:
        settings["GCP"]["PubSub"]["CustomAttributes"].update(
            parse_key_values(env["GCP_PUBSUB_CUSTOMATTRIBUTES"])
        )

    lake = settings["AWS"]["SecurityLake"]
    lake["Interval"] = min(max(lake["Interval"], 5), 60)

    port = settings["ListenPort"]
    if port == 0 or port > 65536:
        raise ConfigError("Bad port number")

    address = settings["ListenAddress"]
    if address:
        try:
            ipaddress.ip_address(address)
        except ValueError:
            raise ConfigError("Failed to parse ListenAddress") from None

    thresholds = (
        parse_drop_thresholds(alertmanager["DropEventThresholds"])
        if alertmanager["DropEventThresholds"]
        else []
    )

    for path in _PRIORITY_CHECKED:
        section = _section(settings, path)
        section["MinimumPriority"] = check_priority(str(section.get("MinimumPriority", "")))
    alertmanager["DropEventDefaultPriority"] = check_priority(alertmanager["DropEventDefaultPriority"])

    message_formats = {}
    for output in _MESSAGE_FORMAT_OUTPUTS:
        template = settings[output]["MessageFormat"]
        if not template:
            continue
        try:
            _check_template(template)
        except TemplateError as exc:
            raise ConfigError(f"Error compiling {output} message template : {exc}") from exc
        message_formats[output] = template

    return Configuration(
        settings=settings,
        drop_event_thresholds=thresholds,
        loki_extra_labels=_split_labels(settings["Loki"]["ExtraLabels"]),
        prometheus_extra_labels=_split_labels(settings["Prometheus"]["ExtraLabels"]),
        message_formats=message_formats,
    )