from datetime import datetime, timezone
from decimal import Decimal

import pytest

from sidekickrelay.payload import (
    FalcoPayload,
    Priority,
    TemplateError,
    decode_payload,
    parse_priority,
    render_template,
)

TEST_EVENT = (
    '{"output":"This is a test from falcosidekick","priority":"Debug",'
    '"hostname": "falcosidekick", "rule":"Test rule", '
    '"time":"2023-03-03T03:03:03.000000003Z",'
    '"output_fields": {"proc.name":"falcosidekick","user.name":"falcosidekick"}, '
    '"tags":["test","example"]}'
)


@pytest.mark.parametrize("name", ["Critical", "critical", "CRITICAL"])
def test_parse_priority_is_case_insensitive(name):
    assert parse_priority(name) is Priority.CRITICAL


@pytest.mark.parametrize("name", ["bogus", "", None, 3])
def test_parse_priority_unknown_is_default(name):
    assert parse_priority(name) is Priority.DEFAULT


def test_priority_order():
    names = [
        "debug",
        "informational",
        "notice",
        "warning",
        "error",
        "critical",
        "alert",
        "emergency",
    ]
    parsed = [parse_priority(name) for name in names]
    assert parsed == sorted(parsed)
    assert len(set(parsed)) == len(names)
    assert all(parse_priority("bogus") < priority for priority in parsed)
    assert max(parsed) is Priority.EMERGENCY
    assert min(parsed) is Priority.DEBUG


def test_priority_labels():
    assert str(Priority.DEBUG) == "Debug"
    assert str(Priority.CRITICAL) == "Critical"
    assert str(Priority.DEFAULT) == ""
    for priority in Priority:
        if priority is not Priority.DEFAULT:
            assert parse_priority(str(priority)) is priority


def test_decode_test_event():
    payload = decode_payload(TEST_EVENT)
    assert payload.output == "This is a test from falcosidekick"
    assert payload.priority is Priority.DEBUG
    assert payload.rule == "Test rule"
    assert payload.hostname == "falcosidekick"
    assert payload.tags == ["test", "example"]
    assert payload.output_fields == {"proc.name": "falcosidekick", "user.name": "falcosidekick"}
    assert payload.source == ""
    assert payload.time == datetime(2023, 3, 3, 3, 3, 3, tzinfo=timezone.utc)
    assert payload.check() is True


def test_decode_bytes_matches_text():
    assert decode_payload(TEST_EVENT.encode()) == decode_payload(TEST_EVENT)


def test_decode_keeps_number_kinds():
    payload = decode_payload('{"output_fields": {"proc.tty": 1234, "ratio": 0.5}}')
    assert payload.output_fields["proc.tty"] == 1234
    assert isinstance(payload.output_fields["ratio"], Decimal)
    assert str(payload.output_fields["ratio"]) == "0.5"


def test_decode_field_names_are_case_insensitive():
    payload = decode_payload('{"Rule": "r", "OUTPUT": "o", "Priority": "warning"}')
    assert (payload.rule, payload.output, payload.priority) == ("r", "o", Priority.WARNING)


def test_missing_time_is_zero_time():
    payload = decode_payload('{"rule": "r"}')
    assert payload.to_dict()["time"] == "0001-01-01T00:00:00Z"


@pytest.mark.parametrize(
    "body",
    [
        "not json",
        "[1, 2]",
        '{"output": 3}',
        '{"output_fields": [1]}',
        '{"tags": "a"}',
        '{"time": "yesterday"}',
        b"\xff\xfe",
    ],
)
def test_decode_rejects_bad_bodies(body):
    with pytest.raises(ValueError):
        decode_payload(body)


def test_check_requires_rule_output_and_priority():
    good = decode_payload(TEST_EVENT)
    assert good.check()
    assert not FalcoPayload(output="o", priority=Priority.DEBUG).check()
    assert not FalcoPayload(rule="r", priority=Priority.DEBUG).check()
    assert not FalcoPayload(rule="r", output="o").check()


def test_json_round_trip():
    payload = decode_payload(TEST_EVENT)
    payload.output_fields["ratio"] = Decimal("0.5")
    payload.output_fields["count"] = 7
    payload.uuid = "some-id"
    assert decode_payload(payload.to_json()) == payload


def test_to_dict_time_and_priority():
    payload = decode_payload('{"time": "2023-03-03T03:03:03Z", "priority": "Error"}')
    data = payload.to_dict()
    assert data["time"] == "2023-03-03T03:03:03Z"
    assert data["priority"] == "Error"


def test_render_field():
    assert render_template("ns={{ .name }}", {"name": "default"}) == "ns=default"


def test_render_nested_field():
    assert render_template("{{.a.b}}", {"a": {"b": "deep"}}) == "deep"


def test_render_index_with_dotted_key():
    fields = {"k8s.ns.name": "kube-system"}
    assert render_template('{{ index . "k8s.ns.name" }}', fields) == "kube-system"


def test_render_missing_key():
    assert render_template("{{ .absent }}", {}) == "<no value>"


def test_render_trim_markers():
    assert render_template("a  {{- .x -}}  b", {"x": "X"}) == "aXb"


def test_render_plain_text_unchanged():
    assert render_template("no actions here", None) == "no actions here"


@pytest.mark.parametrize("template", ["{{ .a", "{{ range . }}", "{{}}"])
def test_render_parse_errors(template):
    with pytest.raises(TemplateError):
        render_template(template, {})


def test_render_field_on_scalar_fails():
    with pytest.raises(TemplateError):
        render_template("{{ .a.b }}", {"a": "scalar"})