"""HTTP server receiving Falco events, and the command that starts it."""

from __future__ import annotations

import argparse
import logging
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from urllib.parse import urlsplit

from .config import ConfigError, Configuration, load_config
from .handlers import HandlerResult, handle_request, test_event_body

log = logging.getLogger(__name__)

VERSION = "0.1.0"

_TEXT = "text/plain; charset=utf-8"
_JSON = "application/json"


class _RelayServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address: tuple[str, int], config: Configuration) -> None:
        self.config = config
        super().__init__(address, _RelayHandler)


class _RelayHandler(BaseHTTPRequestHandler):
    server: _RelayServer

    def log_message(self, format: str, *args: object) -> None:
        log.debug("%s - %s", self.address_string(), format % args)

    def _read_body(self) -> bytes:
        length = int(self.headers.get("Content-Length") or 0)
        return self.rfile.read(length) if length > 0 else b""

    def _send(self, status: int, body: str, content_type: str = _TEXT) -> None:
        data = body.encode("utf-8")
        self.send_response(status)
        if data:
            self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    def _answer(self, result: HandlerResult) -> None:
        if result.accepted:
            for output in result.outputs:
                log.info("Forwarding event %s to %s", result.payload.uuid, output)
        self._send(result.status, result.body)

    def _dispatch(self) -> None:
        path = urlsplit(self.path).path
        body = self._read_body()
        if path == "/ping":
            self._send(HTTPStatus.OK, "pong\n")
        elif path == "/healthz":
            self._send(HTTPStatus.OK, '{"status": "ok"}', _JSON)
        elif path == "/test":
            self._answer(handle_request(self.command, test_event_body(), self.server.config))
        else:
            self._answer(handle_request(self.command, body, self.server.config))

    do_GET = _dispatch
    do_POST = _dispatch
    do_PUT = _dispatch
    do_DELETE = _dispatch
    do_PATCH = _dispatch


def make_server(
    config: Configuration, host: str | None = None, port: int | None = None
) -> ThreadingHTTPServer:
    """Create a server bound to ``host``/``port``, defaulting to the configured address."""
    address = config.listen_address if host is None else host
    number = config.listen_port if port is None else port
    return _RelayServer((address, number), config)


def _existing_file(value: str) -> str:
    if not Path(value).is_file():
        raise argparse.ArgumentTypeError(f"path '{value}' does not exist")
    return value


def main(argv: list[str] | None = None) -> int:
    """Parse the command line, load the settings and serve until interrupted."""
    parser = argparse.ArgumentParser(prog="sidekickrelay")
    parser.add_argument("-c", "--config-file", type=_existing_file, help="config file")
    parser.add_argument("-v", "--version", action="store_true", help="print the version")
    args = parser.parse_args(argv)

    if args.version:
        print(f"sidekickrelay {VERSION}")
        return 0

    logging.basicConfig(level=logging.INFO, format="%(levelname)s : %(message)s")
    try:
        config = load_config(args.config_file)
    except ConfigError as exc:
        log.error("%s", exc)
        return 1

    if config.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        server = make_server(config)
    except OSError as exc:
        log.error("Cannot listen on %s:%s : %s", config.listen_address, config.listen_port, exc)
        return 1

    log.info("Falco Sidekick is up and listening on %s:%d", config.listen_address, config.listen_port)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()
    return 0