"""Request handling: decoding Falco events and choosing the outputs they go to."""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from http import HTTPStatus

from .config import Configuration
from .payload import (
    FalcoPayload,
    Priority,
    TemplateError,
    _parse_template,
    decode_payload,
    render_template,
)

log = logging.getLogger(__name__)

TEST_RULE = "Test rule"
DEFAULT_SOURCE = "syscalls"

_INVALID_BODY = "Please send a valid request body"
_NOT_POST = "Please send with post http method"


@dataclass(frozen=True)
class HandlerResult:
    """What a request produced: the HTTP answer and, when accepted, the event and its outputs."""

    status: int
    body: str = ""
    payload: FalcoPayload | None = None
    outputs: tuple[str, ...] = ()

    @property
    def accepted(self) -> bool:
        return self.status == HTTPStatus.OK


@dataclass(frozen=True)
class _Route:
    name: str
    required: tuple[str, ...]
    priority_section: str | None
    test_rule_bypass: bool = True


_ROUTES = (
    _Route("slack", ("Slack.WebhookURL",), "Slack"),
    _Route("cliq", ("Cliq.WebhookURL",), "Cliq"),
    _Route("rocketchat", ("Rocketchat.WebhookURL",), "Rocketchat"),
    _Route("mattermost", ("Mattermost.WebhookURL",), "Mattermost"),
    _Route("teams", ("Teams.WebhookURL",), "Teams"),
    _Route("datadog", ("Datadog.APIKey",), "Datadog"),
    _Route("discord", ("Discord.WebhookURL",), "Discord"),
    _Route("alertmanager", ("Alertmanager.HostPort",), "Alertmanager"),
    _Route("elasticsearch", ("Elasticsearch.HostPort",), "Elasticsearch"),
    _Route("influxdb", ("Influxdb.HostPort",), "Influxdb"),
    _Route("loki", ("Loki.HostPort",), "Loki"),
    _Route("nats", ("NATS.HostPort",), "NATS"),
    _Route("stan", ("STAN.HostPort", "STAN.ClusterID", "STAN.ClientID"), "STAN"),
    _Route("awslambda", ("AWS.Lambda.FunctionName",), "AWS.Lambda"),
    _Route("awssqs", ("AWS.SQS.URL",), "AWS.SQS"),
    _Route("awssns", ("AWS.SNS.TopicArn",), "AWS.SNS"),
    _Route("awscloudwatchlogs", ("AWS.CloudWatchLogs.LogGroup",), "AWS.CloudWatchLogs"),
    _Route("awss3", ("AWS.S3.Bucket",), "AWS.S3"),
    _Route(
        "awssecuritylake",
        (
            "AWS.SecurityLake.Bucket",
            "AWS.SecurityLake.Region",
            "AWS.SecurityLake.AccountID",
            "AWS.SecurityLake.Prefix",
        ),
        "AWS.SecurityLake",
    ),
    _Route("awskinesis", ("AWS.Kinesis.StreamName",), "AWS.Kinesis"),
    _Route("smtp", ("SMTP.HostPort",), "SMTP"),
    _Route("opsgenie", ("Opsgenie.APIKey",), "Opsgenie"),
    _Route("webhook", ("Webhook.Address",), "Webhook"),
    _Route("nodered", ("NodeRed.Address",), "NodeRed"),
    _Route("cloudevents", ("CloudEvents.Address",), "CloudEvents"),
    _Route("azureeventhub", ("Azure.EventHub.Name",), "Azure.EventHub"),
    _Route("gcppubsub", ("GCP.PubSub.ProjectID", "GCP.PubSub.Topic"), "GCP.PubSub"),
    _Route("gcpcloudfunctions", ("GCP.CloudFunctions.Name",), "GCP.CloudFunctions"),
    _Route("gcpcloudrun", ("GCP.CloudRun.Endpoint",), "GCP.CloudRun"),
    _Route("gcpstorage", ("GCP.Storage.Bucket",), "GCP.Storage"),
    _Route("googlechat", ("Googlechat.WebhookURL",), "Googlechat"),
    _Route("kafka", ("Kafka.HostPort",), "Kafka"),
    _Route("kafkarest", ("KafkaRest.Address",), "KafkaRest"),
    _Route("pagerduty", ("Pagerduty.RoutingKey",), "Pagerduty"),
    _Route("kubeless", ("Kubeless.Namespace", "Kubeless.Function"), "Kubeless"),
    _Route("openfaas", ("Openfaas.FunctionName",), "Openfaas"),
    _Route("tekton", ("Tekton.EventListener",), "Tekton"),
    # RabbitMQ is filtered on the OpenFaaS minimum priority.
    _Route("rabbitmq", ("Rabbitmq.URL", "Rabbitmq.Queue"), "Openfaas"),
    _Route("wavefront", ("Wavefront.EndpointHost", "Wavefront.EndpointType"), "Wavefront"),
    _Route("grafana", ("Grafana.HostPort",), "Grafana"),
    _Route("grafanaoncall", ("GrafanaOnCall.WebhookURL",), "GrafanaOnCall"),
    _Route("webui", ("Webui.URL",), None),
    _Route("fission", ("Fission.Function",), "Fission"),
    _Route("policyreport", ("PolicyReport.Enabled",), "PolicyReport", test_rule_bypass=False),
    _Route("yandexs3", ("Yandex.S3.Bucket",), "Yandex.S3"),
    _Route("yandexdatastreams", ("Yandex.DataStreams.StreamName",), "Yandex.DataStreams"),
    _Route("syslog", ("Syslog.Host",), "Syslog"),
    _Route("mqtt", ("MQTT.Broker",), "MQTT"),
    _Route("zincsearch", ("Zincsearch.HostPort",), "Zincsearch"),
    _Route("gotify", ("Gotify.HostPort",), "Gotify"),
    _Route("spyderbat", ("Spyderbat.OrgUID",), "Spyderbat"),
    _Route("timescaledb", ("TimescaleDB.Host",), "TimescaleDB"),
    _Route("redis", ("Redis.Address",), "Redis"),
    _Route("telegram", ("Telegram.ChatID", "Telegram.Token"), "Telegram"),
    _Route("n8n", ("N8n.Address",), "N8n"),
    _Route("openobserve", ("OpenObserve.HostPort",), "OpenObserve"),
)


def _apply_templated_fields(payload: FalcoPayload, config: Configuration) -> None:
    for name, template in list(config.templatedfields.items()):
        try:
            _parse_template(template)
        except TemplateError as exc:
            log.error("Parsing error for templated field '%s': %s", name, exc)
            continue
        try:
            payload.output_fields[name] = render_template(template, payload.output_fields)
        except TemplateError as exc:
            log.error("Parsing error for templated field '%s': %s", name, exc)
            payload.output_fields[name] = ""


def _replace_brackets(payload: FalcoPayload, replacer: str) -> None:
    for name in [key for key in payload.output_fields if "[" in key]:
        value = payload.output_fields.pop(name)
        payload.output_fields[name.replace("]", "").replace("[", replacer)] = value


def new_falco_payload(body: str | bytes, config: Configuration) -> FalcoPayload:
    """Decode an event and enrich it with custom, templated and renamed fields."""
    payload = decode_payload(body)

    if config.customfields:
        payload.output_fields.update(config.customfields)

    if not payload.source:
        payload.source = DEFAULT_SOURCE

    payload.uuid = str(uuid.uuid4())

    if config.templatedfields:
        _apply_templated_fields(payload, config)

    if config.bracket_replacer:
        _replace_brackets(payload, config.bracket_replacer)

    if config.debug:
        log.debug("Falco's payload : %s", payload.to_json())

    return payload


def _route_enabled(route: _Route, payload: FalcoPayload, config: Configuration) -> bool:
    if not all(config.get(path) for path in route.required):
        return False
    if route.priority_section is None:
        return True
    if payload.priority >= config.minimum_priority(route.priority_section):
        return True
    return route.test_rule_bypass and payload.rule == TEST_RULE


def enabled_outputs(payload: FalcoPayload, config: Configuration) -> list[str]:
    """Name the configured outputs the event should be forwarded to, in dispatch order."""
    return [route.name for route in _ROUTES if _route_enabled(route, payload, config)]


def test_event_body(now: datetime | None = None) -> bytes:
    """Return the body of the test event sent to every enabled output."""
    moment = now if now is not None else datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    stamp = moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    event = {
        "output": "This is a test from falcosidekick",
        "priority": str(Priority.DEBUG),
        "hostname": "falcosidekick",
        "rule": TEST_RULE,
        "time": stamp,
        "output_fields": {"proc.name": "falcosidekick", "user.name": "falcosidekick"},
        "tags": ["test", "example"],
    }
    return json.dumps(event).encode("utf-8")


def _reject(message: str) -> HandlerResult:
    return HandlerResult(status=HTTPStatus.BAD_REQUEST, body=message + "\n")


def handle_request(method: str, body: str | bytes | None, config: Configuration) -> HandlerResult:
    """Validate a posted event and return the response and the outputs it goes to."""
    if body is None:
        return _reject(_INVALID_BODY)
    if method != "POST":
        return _reject(_NOT_POST)
    try:
        payload = new_falco_payload(body, config)
    except ValueError as exc:
        log.debug("Rejected request: %s", exc)
        return _reject(_INVALID_BODY)
    if not payload.check():
        return _reject(_INVALID_BODY)
    outputs = tuple(enabled_outputs(payload, config))
    return HandlerResult(status=HTTPStatus.OK, payload=payload, outputs=outputs)