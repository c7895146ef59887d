import json

import pytest

from sidekickrelay.alertmanager import new_alertmanager_payload
from sidekickrelay.config import Configuration, ThresholdConfig
from sidekickrelay.payload import Priority, decode_payload

FALCO_TEST_INPUT = (
    '{"output":"This is a test from falcosidekick","priority":"Debug","rule":"Test rule",'
    '"time":"2001-01-01T01:10:00Z","output_fields":{"proc.name":"falcosidekick","proc.tty":1234},'
    '"source":"syscalls","hostname":"test-host","tags":["test","example"]}'
)

DROP_INPUT = '{"hostname":"host","output":"Falco internal: syscall event drop. 815508 system calls dropped in last second.","output_fields":{"ebpf_enabled":"1","n_drops":"815508","n_drops_buffer_clone_fork_enter":"0","n_drops_buffer_clone_fork_exit":"0","n_drops_buffer_connect_enter":"0","n_drops_buffer_connect_exit":"0","n_drops_buffer_dir_file_enter":"803","n_drops_buffer_dir_file_exit":"804","n_drops_buffer_execve_enter":"0","n_drops_buffer_execve_exit":"0","n_drops_buffer_open_enter":"798","n_drops_buffer_open_exit":"798","n_drops_buffer_other_interest_enter":"0","n_drops_buffer_other_interest_exit":"0","n_drops_buffer_total":"815508","n_drops_bug":"0","n_drops_page_faults":"0","n_drops_scratch_map":"0","n_evts":"2270350"},"priority":"Debug","rule":"Falco internal: syscall event drop","time":"2023-03-03T03:03:03.000000003Z"}'

DROP_EXPECTED = '[{"labels":{"ebpf_enabled":"1","eventsource":"","hostname":"host","n_drops":">10000","n_drops_buffer_clone_fork_enter":"0","n_drops_buffer_clone_fork_exit":"0","n_drops_buffer_connect_enter":"0","n_drops_buffer_connect_exit":"0","n_drops_buffer_dir_file_enter":">100","n_drops_buffer_dir_file_exit":">100","n_drops_buffer_execve_enter":"0","n_drops_buffer_execve_exit":"0","n_drops_buffer_open_enter":">100","n_drops_buffer_open_exit":">100","n_drops_buffer_other_interest_enter":"0","n_drops_buffer_other_interest_exit":"0","n_drops_buffer_total":">10000","n_drops_bug":"0","n_drops_page_faults":"0","n_drops_scratch_map":"0","priority":"Critical","rule":"Falco internal: syscall event drop","severity":"critical","source":"falco"},"annotations":{"description":"Falco internal: syscall event drop. 815508 system calls dropped in last second.","info":"Falco internal: syscall event drop. 815508 system calls dropped in last second.","summary":"Falco internal: syscall event drop"},"endsAt":"0001-01-01T00:00:00Z"}]'


def default_thresholds():
    return [
        ThresholdConfig(Priority.CRITICAL, 10000),
        ThresholdConfig(Priority.CRITICAL, 1000),
        ThresholdConfig(Priority.CRITICAL, 100),
        ThresholdConfig(Priority.WARNING, 10),
        ThresholdConfig(Priority.WARNING, 1),
    ]


@pytest.fixture
def config():
    return Configuration(drop_event_thresholds=default_thresholds())


def test_new_alertmanager_payload(config):
    expected = json.loads(
        '[{"labels":{"proc_name":"falcosidekick","priority":"Debug","severity": "information",'
        '"proc_tty":"1234","eventsource":"syscalls","hostname":"test-host","rule":"Test rule",'
        '"source":"falco","tags":"test,example"},"annotations":{"info":"This is a test from '
        'falcosidekick","description":"This is a test from falcosidekick","summary":"Test rule"}}]'
    )
    result = new_alertmanager_payload(decode_payload(FALCO_TEST_INPUT), config)
    assert len(result) == 1
    assert result[0]["labels"] == expected[0]["labels"]
    assert result[0]["annotations"] == expected[0]["annotations"]
    assert result[0]["endsAt"] == "0001-01-01T00:00:00Z"


def test_new_alertmanager_payload_drop_event(config):
    result = new_alertmanager_payload(decode_payload(DROP_INPUT), config)
    assert result == json.loads(DROP_EXPECTED)


def test_input_payload_priority_is_not_changed(config):
    payload = decode_payload(DROP_INPUT)
    new_alertmanager_payload(payload, config)
    assert payload.priority is Priority.DEBUG


def test_zero_drops_raise_to_warning(config):
    payload = decode_payload(
        '{"output":"o","priority":"Debug","rule":"r","output_fields":{"n_drops":"0"}}'
    )
    labels = new_alertmanager_payload(payload, config)[0]["labels"]
    assert labels["n_drops"] == "0"
    assert labels["priority"] == "Warning"
    assert labels["severity"] == "warning"


def test_higher_priority_is_kept(config):
    payload = decode_payload(
        '{"output":"o","priority":"Emergency","rule":"r","output_fields":{"n_drops":"5"}}'
    )
    labels = new_alertmanager_payload(payload, config)[0]["labels"]
    assert labels["n_drops"] == ">1"
    assert labels["priority"] == "Emergency"
    assert labels["severity"] == "critical"


def test_drop_below_every_threshold_uses_default_priority():
    config = Configuration(drop_event_thresholds=[ThresholdConfig(Priority.WARNING, 10)])
    payload = decode_payload(
        '{"output":"o","priority":"Debug","rule":"r","output_fields":{"n_drops":"5"}}'
    )
    labels = new_alertmanager_payload(payload, config)[0]["labels"]
    assert labels["n_drops"] == "5"
    assert labels["priority"] == "Critical"


def test_unparsable_drop_count_and_event_counts_are_skipped(config):
    payload = decode_payload(
        '{"output":"o","priority":"Notice","rule":"r",'
        '"output_fields":{"n_drops":"many","n_evts":"12","n_drops_x":null}}'
    )
    labels = new_alertmanager_payload(payload, config)[0]["labels"]
    assert "n_drops" not in labels
    assert "n_evts" not in labels
    assert "n_drops_x" not in labels
    assert labels["priority"] == "Notice"


def test_label_names_are_sanitised_and_other_types_skipped(config):
    payload = decode_payload(
        '{"output":"o","priority":"Error","rule":"r",'
        '"output_fields":{"fd[0].name":"x","ratio":1.5,"flag":true,"nested":{"a":"b"}}}'
    )
    labels = new_alertmanager_payload(payload, config)[0]["labels"]
    assert labels["fd_0_name"] == "x"
    assert labels["ratio"] == "1.5"
    assert "flag" not in labels
    assert "nested" not in labels
    assert "tags" not in labels
    assert "hostname" not in labels


def test_custom_severity_map(config):
    config.settings["Alertmanager"]["CustomSeverityMap"] = {Priority.DEBUG: "low"}
    labels = new_alertmanager_payload(decode_payload(FALCO_TEST_INPUT), config)[0]["labels"]
    assert labels["severity"] == "low"


def test_extra_labels_and_annotations_override(config):
    config.settings["Alertmanager"]["ExtraLabels"] = {"team": "sec", "rule": "overridden"}
    config.settings["Alertmanager"]["ExtraAnnotations"] = {"runbook": "none"}
    alert = new_alertmanager_payload(decode_payload(FALCO_TEST_INPUT), config)[0]
    assert alert["labels"]["team"] == "sec"
    assert alert["labels"]["rule"] == "overridden"
    assert alert["annotations"]["runbook"] == "none"
    assert alert["annotations"]["summary"] == "Test rule"


def test_expires_after_sets_ends_at(config):
    config.settings["Alertmanager"]["ExpiresAfter"] = 60
    payload = decode_payload(
        '{"output":"o","priority":"Debug","rule":"r","time":"2023-03-03T03:03:03Z"}'
    )
    alert = new_alertmanager_payload(payload, config)[0]
    assert alert["endsAt"] == "2023-03-03T03:04:03Z"