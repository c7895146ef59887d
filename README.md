# sidekickrelay

`sidekickrelay` is a small HTTP daemon and library for Falco events. It
accepts Falco's JSON events and checks them. It enriches them with custom,
templated and renamed fields. It then works out which of the configured
outputs each event should go to.

An output receives an event when its required settings are filled in and
the event's priority is at least the output's minimum priority. Events from
the rule `Test rule` pass the priority check for every output except the
policy report output.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Running the daemon

```
sidekickrelay --config-file config.yaml
```

| Option                    | Effect                                  |
|---------------------------|-----------------------------------------|
| `-c`, `--config-file`     | YAML settings file; it must exist       |
| `-v`, `--version`         | print `sidekickrelay 0.1.0` and exit    |

The daemon listens on `ListenAddress:ListenPort`, which defaults to port
2801 on all addresses. It serves these paths:

| Path       | Method | Behaviour                                                 |
|------------|--------|-----------------------------------------------------------|
| `/ping`    | any    | answers `pong`                                            |
| `/healthz` | any    | answers `{"status": "ok"}` as JSON                        |
| `/test`    | POST   | handles a built-in Debug event from the rule `Test rule`  |
| any other  | POST   | handles the posted Falco event                            |

An accepted event gets status 200 with an empty body. A request sent with
any method other than POST is rejected with status 400. So is a body that is
not valid JSON, or an event without a priority, a rule and an output. For
every output an accepted event goes to, the daemon logs a
`Forwarding event <uuid> to <output>` line.

The command exits with status 1 in these cases:

- the listen port is 0 or above 65536;
- the listen address is not an IP address;
- a chat message template does not compile;
- the port cannot be bound.

## Configuration

Settings come from three sources. Later sources override earlier ones:

1. built-in defaults (see `sidekickrelay.defaults.default_settings()`);
2. the YAML config file, whose keys match the defaults case-insensitively;
3. environment variables.

A variable's name is the setting's dotted path in upper case, with dots
replaced by underscores. For example, `SLACK_WEBHOOKURL` sets
`Slack.WebhookURL` and `LISTENPORT` sets `ListenPort`. Empty variables are
ignored. Values are converted to the type of the default. Values that cannot
be converted are logged, and the default is kept.

These variables take comma-separated `key:value` lists:

- `CUSTOMFIELDS`: fields added to every event. A value that starts with `%`
  is read from the environment variable it names.
- `TEMPLATEDFIELDS`: fields rendered from each event's output fields. They
  use templates such as `{{.field}}` or `{{index . "proc.name"}}`.
- `WEBHOOK_CUSTOMHEADERS`, `CLOUDEVENTS_EXTENSIONS`,
  `GCP_PUBSUB_CUSTOMATTRIBUTES`.
- `ALERTMANAGER_EXTRALABELS`, `ALERTMANAGER_EXTRAANNOTATIONS`: the names
  must be valid Prometheus label names.
- `ALERTMANAGER_CUSTOMSEVERITYMAP`: maps a Falco priority to a severity.

`ALERTMANAGER_DROPEVENTTHRESHOLDS` has the form
`10000:critical, 1000:critical, 100:critical, 10:warning, 1:warning`. It
sets how syscall-drop counters are bucketed and which priority each bucket
raises the event to. A minimum priority that names no Falco priority is
treated as empty, so it lets every event through.

## Library use

```python
from sidekickrelay.config import load_config
from sidekickrelay.handlers import handle_request

config = load_config(None, {"SLACK_WEBHOOKURL": "http://localhost/hook"})
body = b'{"output": "x", "priority": "Warning", "rule": "r", "time": "2023-01-01T00:00:00Z"}'
result = handle_request("POST", body, config)
assert result.accepted and result.outputs == ("slack",)
```

- `sidekickrelay.payload`:
  - `decode_payload` parses an event into a `FalcoPayload`.
  - `Priority` is an ordered enum of Falco levels.
  - `parse_priority` and `render_template` are also here.
- `sidekickrelay.config`:
  - `load_config(config_file, environ)` returns a `Configuration`.
  - `Configuration.get("Section.Key")` reads a setting.
  - `Configuration.minimum_priority("Section")` returns an output's minimum
    priority.
  - `check_priority`, `parse_key_values` and `parse_drop_thresholds` are
    also here.
  - `ConfigError` is raised when the settings cannot be used.
- `sidekickrelay.handlers`:
  - `new_falco_payload` decodes and enriches an event.
  - `enabled_outputs` names the outputs it goes to.
  - `handle_request` returns a `HandlerResult` that holds the status, body,
    event and outputs.
  - `test_event_body` builds the test event.
- `sidekickrelay.alertmanager.new_alertmanager_payload(payload, config)`
  builds the alert list that Alertmanager's API expects. It buckets
  `n_drop*` counters and maps the priority to a severity.
- `sidekickrelay.securitylake`:
  - `new_ocsf_security_finding(payload)` builds an OCSF Security Finding.
    Its `to_dict()` returns the finding as a dict.
  - `BatchQueue` is a bounded, thread-safe in-memory log. It offers
    `write`, `read_batch(offset, size)` and `earliest`. Reading before the
    oldest retained record raises `OffsetOutOfRange`.
- `sidekickrelay.server`:
  - `make_server(config, host, port)` creates the HTTP server.
  - `main` is the command.

## What it does not do

The package decides where an event should go but delivers it nowhere. It
has no clients for Slack, Alertmanager, AWS, Kafka or any other output. It
only logs the outputs an event is meant for. The Alertmanager payloads and
OCSF findings are built as dictionaries and are not sent. Nothing writes
Parquet files or uploads to S3. The daemon serves plain HTTP only, without
TLS. It keeps no statistics and exposes no metrics.