"""JSON-lines transports for the terminal host: stdio and localhost TCP."""

from __future__ import annotations

import logging as py_logging
import socketserver
import sys
import threading
from typing import BinaryIO

from pydantic import BaseModel

from termhub.errors import ExitCode, TermHubError
from termhub.host import TerminalHost
from termhub.protocol import ErrorEvent, HelloRequest, encode_message, parse_request

logger = py_logging.getLogger(__name__)

STDIO_HOST_ID = "stdio"


class LineWriter:
    """Serializes messages from reader threads and the request loop onto one stream."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream
        self._lock = threading.Lock()

    def __call__(self, message: BaseModel) -> None:
        data = (encode_message(message) + "\n").encode("utf-8")
        with self._lock:
            self._stream.write(data)
            self._stream.flush()


class Connection:
    """One transport connection bound to a host connection ID."""

    def __init__(self, host: TerminalHost, writer: LineWriter, host_id: str) -> None:
        self.host = host
        self.writer = writer
        self.host_id = host_id
        host.connect(host_id, writer)

    def bind(self, host_id: str) -> None:
        if host_id == self.host_id:
            return
        logger.info("Connection %s identified as host %s", self.host_id, host_id)
        self.host.disconnect(self.host_id, self.writer)
        self.host_id = host_id
        self.host.connect(host_id, self.writer)

    def feed(self, line: bytes) -> None:
        if not line.strip():
            return
        try:
            request = parse_request(line)
        except TermHubError as exc:
            logger.warning("Rejected request from %s: %s", self.host_id, exc.message)
            self._reply_error(exc)
            return
        if isinstance(request, HelloRequest):
            self.bind(request.host_id)
            return
        try:
            self.host.handle(self.host_id, request)
        except TermHubError as exc:
            self._reply_error(exc)
        except Exception:
            logger.exception("Request %s failed for host %s", request.type, self.host_id)
            self._reply_error(TermHubError(f"Internal error handling '{request.type}'."))

    def close(self) -> None:
        self.host.disconnect(self.host_id, self.writer)

    def _reply_error(self, error: TermHubError) -> None:
        try:
            self.writer(ErrorEvent.from_error(error))
        except OSError:
            logger.debug("Could not report error to %s; transport closed", self.host_id)


def serve_stdio(host: TerminalHost, stdin: BinaryIO | None = None, stdout: BinaryIO | None = None) -> int:
    reader = stdin or sys.stdin.buffer
    connection = Connection(host, LineWriter(stdout or sys.stdout.buffer), STDIO_HOST_ID)
    logger.info("Serving terminal host on stdio")
    try:
        for line in reader:
            connection.feed(line)
    finally:
        logger.info("stdin closed; shutting down")
        host.shutdown()
    return int(ExitCode.SUCCESS)


class _ConnectionHandler(socketserver.StreamRequestHandler):
    server: TerminalTCPServer

    def handle(self) -> None:
        peer = f"tcp-{self.client_address[0]}:{self.client_address[1]}"
        connection = Connection(self.server.host, LineWriter(self.wfile), peer)
        try:
            while True:
                line = self.rfile.readline()
                if not line:
                    break
                connection.feed(line)
        except OSError as exc:
            logger.info("Connection %s dropped: %s", connection.host_id, exc)
        finally:
            connection.close()


class TerminalTCPServer(socketserver.ThreadingTCPServer):
    allow_reuse_address = True
    daemon_threads = True

    def __init__(self, server_address: tuple[str, int], host: TerminalHost) -> None:
        super().__init__(server_address, _ConnectionHandler)
        self.host = host


def parse_listen_address(value: str) -> tuple[str, int]:
    host, sep, port = value.rpartition(":")
    if not sep or not host:
        raise TermHubError(
            f"Invalid listen address: {value}",
            code=ExitCode.INVALID_ARGS,
            hint="Use HOST:PORT, for example 127.0.0.1:7070.",
        )
    try:
        port_number = int(port)
    except ValueError as exc:
        raise TermHubError(
            f"Invalid listen port: {port}",
            code=ExitCode.INVALID_ARGS,
            hint="Use a numeric port between 0 and 65535.",
        ) from exc
    if not 0 <= port_number <= 65535:
        raise TermHubError(
            f"Invalid listen port: {port}",
            code=ExitCode.INVALID_ARGS,
            hint="Use a numeric port between 0 and 65535.",
        )
    return host.strip("[]"), port_number


def serve_tcp(host: TerminalHost, address: tuple[str, int]) -> int:
    try:
        server = TerminalTCPServer(address, host)
    except OSError as exc:
        raise TermHubError(
            f"Cannot listen on {address[0]}:{address[1]}.",
            code=ExitCode.RUNTIME_ERROR,
            hint=str(exc) or "Choose another port.",
        ) from exc
    logger.info("Serving terminal host on %s:%s", *server.server_address[:2])
    try:
        server.serve_forever()
    finally:
        server.server_close()
        host.shutdown()
    return int(ExitCode.SUCCESS)
