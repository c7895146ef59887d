import json
import threading
import urllib.error
import urllib.request

import pytest

from sidekickrelay.config import load_config
from sidekickrelay.server import main, make_server

VALID_EVENT = json.dumps(
    {
        "output": "This is a test from falcosidekick",
        "priority": "Debug",
        "rule": "Test rule",
        "time": "2001-01-01T01:10:00Z",
        "output_fields": {"proc.name": "falcosidekick"},
    }
).encode()


@pytest.fixture
def base_url():
    server = make_server(load_config(environ={}), "127.0.0.1", 0)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{server.server_address[1]}"
    finally:
        server.shutdown()
        server.server_close()
        thread.join(timeout=5)


def _request(url, method="GET", body=None):
    request = urllib.request.Request(url, data=body, method=method)
    try:
        with urllib.request.urlopen(request, timeout=5) as response:
            return response.status, response.read().decode(), response.headers.get("Content-Type")
    except urllib.error.HTTPError as exc:
        return exc.code, exc.read().decode(), exc.headers.get("Content-Type")


def test_ping(base_url):
    status, body, _ = _request(base_url + "/ping")
    assert (status, body) == (200, "pong\n")


def test_health(base_url):
    status, body, content_type = _request(base_url + "/healthz")
    assert status == 200
    assert json.loads(body) == {"status": "ok"}
    assert content_type == "application/json"


def test_post_valid_event(base_url):
    status, body, _ = _request(base_url + "/", "POST", VALID_EVENT)
    assert (status, body) == (200, "")


def test_get_root_rejected(base_url):
    status, body, _ = _request(base_url + "/")
    assert (status, body) == (400, "Please send with post http method\n")


def test_post_invalid_event(base_url):
    status, body, _ = _request(base_url + "/", "POST", b"not json")
    assert (status, body) == (400, "Please send a valid request body\n")


def test_test_endpoint_needs_post(base_url):
    assert _request(base_url + "/test", "POST", b"")[0] == 200
    assert _request(base_url + "/test")[0] == 400


def test_make_server_binds_requested_port():
    server = make_server(load_config(environ={}), "127.0.0.1", 0)
    try:
        assert server.server_address[0] == "127.0.0.1"
        assert server.server_address[1] > 0
    finally:
        server.server_close()


def test_main_version(capsys):
    assert main(["--version"]) == 0
    assert capsys.readouterr().out.startswith("sidekickrelay ")


def test_main_missing_config_file(tmp_path):
    with pytest.raises(SystemExit) as excinfo:
        main(["-c", str(tmp_path / "missing.yaml")])
    assert excinfo.value.code == 2


def test_main_bad_port(tmp_path, monkeypatch):
    monkeypatch.delenv("LISTENPORT", raising=False)
    config_file = tmp_path / "config.yaml"
    config_file.write_text("ListenPort: 70000\n", encoding="utf-8")
    assert main(["-c", str(config_file)]) == 1