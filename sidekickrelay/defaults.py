"""Built-in default settings and case-insensitive settings merging."""

from __future__ import annotations

import copy
from collections.abc import Mapping
from typing import Any

_DEFAULT_PASSWORD = "password"


def _target(**fields: Any) -> dict[str, Any]:
    """An output section filtered by a minimum priority."""
    return {**fields, "MinimumPriority": ""}


def _secured(mtls: str | None = "MutualTls", **fields: Any) -> dict[str, Any]:
    """An output section with certificate checking and, optionally, mutual TLS."""
    section = _target(**fields)
    if mtls:
        section[mtls] = False
    section["CheckCert"] = True
    return section


def _login(user_key: str | None = None, user: str = "", secret: str = "") -> dict[str, Any]:
    """Credential fields of a section."""
    fields: dict[str, Any] = {user_key: user} if user_key else {}
    fields["Password"] = secret
    return fields


def _chat(**extra: Any) -> dict[str, Any]:
    return _secured(
        "MutualTLS",
        WebhookURL="",
        Footer="",
        Username="Falcosidekick",
        Icon="",
        OutputFormat="all",
        MessageFormat="",
        **extra,
    )


def _nats() -> dict[str, Any]:
    return {"HostPort": "", "ClusterID": "", "ClientID": "", "MutualTls": False, "CheckCert": True}


_DEFAULTS: dict[str, Any] = {
    "ListenAddress": "",
    "ListenPort": 2801,
    "Debug": False,
    "BracketReplacer": "",
    "MutualTlsFilesPath": "/etc/certs",
    "MutualTLSClient": {"CertFile": "", "KeyFile": "", "CaCertFile": ""},
    "TLSServer": {
        "Deploy": False,
        "CertFile": "/etc/certs/server/server.crt",
        "KeyFile": "/etc/certs/server/server.key",
        "MutualTLS": False,
        "CaCertFile": "/etc/certs/server/ca.crt",
    },
    "Customfields": {},
    "Templatedfields": {},
    "Slack": _chat(Channel=""),
    "Rocketchat": _chat(),
    "Mattermost": _chat(),
    "Teams": _secured("MutualTLS", WebhookURL="", ActivityImage="", OutputFormat="all"),
    "Datadog": _secured("MutualTLS", APIKey="", Host="https://api.datadoghq.com"),
    "Discord": _secured("MutualTLS", WebhookURL="", Icon=""),
    "Alertmanager": _secured(
        HostPort="",
        Endpoint="/api/v1/alerts",
        ExpiresAfter=0,
        DropEventDefaultPriority="critical",
        DropEventThresholds="10000:critical, 1000:critical, 100:critical, 10:warning, 1:warning",
        ExtraLabels={},
        ExtraAnnotations={},
        CustomSeverityMap={},
    ),
    "Elasticsearch": _secured(
        HostPort="",
        Index="falco",
        Type="_doc",
        Suffix="daily",
        CustomHeaders={},
        **_login("Username"),
    ),
    "Influxdb": _secured(
        HostPort="",
        Database="falco",
        Organization="",
        Bucket="falco",
        Precision="ns",
        Token="",
        **_login("User"),
    ),
    "Loki": _secured(
        "MutualTLS",
        HostPort="",
        User="",
        APIKey="",
        Tenant="",
        Endpoint="/loki/api/v1/push",
        ExtraLabels="",
        CustomHeaders={},
    ),
    "AWS": {
        "AccessKeyID": "",
        "SecretAccessKey": "",
        "Region": "",
        "RoleARN": "",
        "ExternalID": "",
        "CheckIdentity": True,
        "Lambda": _target(FunctionName="", InvocationType="RequestResponse", Logtype="Tail"),
        "SQS": _target(URL=""),
        "SNS": _target(TopicArn="", RawJSON=False),
        "CloudWatchLogs": _target(LogGroup="", LogStream=""),
        "S3": _target(Bucket="", Prefix="falco"),
        "SecurityLake": _target(
            Bucket="", Region="", Prefix="", Interval=5, BatchSize=1000, AccountID=""
        ),
        "Kinesis": _target(StreamName=""),
    },
    "SMTP": _target(
        HostPort="",
        Tls=True,
        From="",
        To="",
        OutputFormat="html",
        AuthMechanism="plain",
        Token="",
        Identity="",
        Trace="",
        **_login("User"),
    ),
    "STAN": _nats(),
    "NATS": _nats(),
    "Opsgenie": _secured("MutualTLS", Region="us", APIKey=""),
    "Statsd": {"Forwarder": "", "Namespace": "falcosidekick."},
    "Prometheus": {"ExtraLabels": ""},
    "Dogstatsd": {"Forwarder": "", "Namespace": "falcosidekick.", "Tags": []},
    "Webhook": _secured(Address="", Method="POST", CustomHeaders={}),
    "NodeRed": _secured(None, Address="", **_login("User")),
    "CloudEvents": _secured(Address="", Extensions={}),
    "Azure": {"EventHub": _target(Namespace="", Name="")},
    "GCP": {
        "Credentials": "",
        "PubSub": _target(ProjectID="", Topic="", CustomAttributes={}),
        "Storage": _target(Prefix="", Bucket=""),
        "CloudFunctions": _target(Name=""),
        "CloudRun": _target(Endpoint="", JWT=""),
    },
    "Googlechat": _secured(WebhookURL="", OutputFormat="all", MessageFormat=""),
    "Cliq": _secured(
        WebhookURL="", Icon="", OutputFormat="all", UseEmoji=False, MessageFormat=""
    ),
    "Kafka": _target(
        HostPort="",
        Topic="",
        SASL="",
        Balancer="round_robin",
        ClientID="",
        Compression="NONE",
        Async=False,
        RequiredACKs="NONE",
        TopicCreation=False,
        **_login("Username"),
    ),
    "KafkaRest": _secured(Address="", Version=2),
    "Pagerduty": _secured(RoutingKey="", Region="us"),
    "Kubeless": _secured(Namespace="", Function="", Port=8080, Kubeconfig=""),
    "Openfaas": _secured(
        GatewayNamespace="openfaas",
        GatewayService="gateway",
        FunctionName="",
        FunctionNamespace="openfaas-fn",
        GatewayPort=8080,
        Kubeconfig="",
    ),
    "Fission": _secured(
        RouterNamespace="fission",
        RouterService="router",
        RouterPort=80,
        FunctionNamespace="fission-function",
        Function="",
        Kubeconfig="",
    ),
    "Webui": {"URL": "", "MutualTls": False, "CheckCert": True},
    "PolicyReport": _target(Enabled=False, Kubeconfig="", MaxEvents=1000, PruneByPriority=False),
    "Rabbitmq": _target(URL="", Queue=""),
    "Wavefront": _target(
        EndpointType="",
        EndpointHost="",
        EndpointToken="",
        MetricName="falco.alert",
        EndpointMetricPort=2878,
        FlushIntervalSecods=1,
        BatchSize=10000,
    ),
    "Grafana": _secured(
        HostPort="",
        DashboardID=0,
        PanelID=0,
        APIKey="",
        AllFieldsAsTags=False,
        CustomHeaders={},
    ),
    "GrafanaOnCall": _secured(WebhookURL=""),
    "Yandex": {
        "AccessKeyID": "",
        "SecretAccessKey": "",
        "Region": "ru-central1",
        "S3": _target(Endpoint="https://storage.yandexcloud.net", Bucket="", Prefix="falco"),
        "DataStreams": _target(Endpoint="https://yds.serverless.yandexcloud.net", StreamName=""),
    },
    "Syslog": _target(Host="", Port="", Protocol="", Format="json"),
    "MQTT": _secured(
        None, Broker="", Topic="falco/events", QOS=0, Retained=False, **_login("User")
    ),
    "Zincsearch": _secured(None, HostPort="", Index="falco", **_login("Username")),
    "Gotify": _secured(None, HostPort="", Token="", Format="markdown"),
    "Tekton": _secured(None, EventListener=""),
    "Spyderbat": _target(
        OrgUID="",
        APIKey="",
        APIUrl="https://api.spyderbat.com",
        Source="falcosidekick",
        SourceDescription="",
    ),
    "TimescaleDB": _target(
        Host="",
        Port="5432",
        Database="falcosidekick",
        HypertableName="falcosidekick_events",
        **_login("User", "postgres", _DEFAULT_PASSWORD),
    ),
    "Redis": _secured(Address="", Database=0, StorageType="list", Key="falco", **_login()),
    "N8n": _secured(
        None, Address="", HeaderAuthName="", HeaderAuthValue="", **_login("User")
    ),
    "Telegram": _secured(None, Token="", ChatID=""),
    "OpenObserve": _secured(
        HostPort="",
        OrganizationName="default",
        StreamName="falco",
        CustomHeaders={},
        **_login("Username"),
    ),
}


def default_settings() -> dict[str, Any]:
    """Return a fresh nested dictionary of every built-in default."""
    return copy.deepcopy(_DEFAULTS)


def _matching_key(settings: Mapping[Any, Any], key: Any) -> Any:
    if key in settings:
        return key
    if isinstance(key, str):
        lowered = key.lower()
        for existing in settings:
            if isinstance(existing, str) and existing.lower() == lowered:
                return existing
    return key


def merge_settings(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Deep-merge ``override`` into a copy of ``base``; keys match case-insensitively."""
    merged = {key: copy.deepcopy(value) for key, value in base.items()}
    for key, value in override.items():
        target = _matching_key(merged, key)
        current = merged.get(target)
        if isinstance(value, Mapping) and isinstance(current, Mapping):
            merged[target] = merge_settings(current, value)
        elif isinstance(value, Mapping):
            merged[target] = merge_settings({}, value)
        else:
            merged[target] = copy.deepcopy(value)
    return merged