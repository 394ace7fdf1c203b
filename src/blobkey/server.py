"""Threaded ICAP server hosting the REQMOD header adapter."""

import logging
import socket
import socketserver

from blobkey.adapter import HeaderAdapter
from blobkey.errors import ICAPError
from blobkey.icap import ICAPResponse, read_request
from blobkey.patterns import PatternSet

LOG = logging.getLogger("blobkey.server")

ICAP_PORT = 1344
IDLE_TIMEOUT = 300


class ICAPRequestHandler(socketserver.StreamRequestHandler):
    """Serve ICAP requests on one persistent connection."""

    server: "ICAPServer"
    timeout = IDLE_TIMEOUT

    def handle(self) -> None:
        while True:
            try:
                request = read_request(self.rfile)
            except ICAPError as e:
                LOG.warning("Malformed ICAP request from %s: %s", self.client_address[0], e)
                self._send(ICAPResponse(e.status, [("Connection", "close")]))
                return
            except (socket.timeout, ConnectionError):
                return
            if request is None:
                return
            response = self.server.adapter.handle(request)
            close = (request.get("connection", "") or "").lower() == "close"
            if close:
                response.headers.append(("Connection", "close"))
            if not self._send(response) or close:
                return

    def _send(self, response: ICAPResponse) -> bool:
        try:
            self.wfile.write(response.encode())
            self.wfile.flush()
        except (socket.timeout, ConnectionError) as e:
            LOG.debug("Client %s went away: %s", self.client_address[0], e)
            return False
        return True


class ICAPServer(socketserver.ThreadingTCPServer):
    daemon_threads = True
    allow_reuse_address = True

    def __init__(self, server_address, adapter: HeaderAdapter) -> None:
        self.adapter = adapter
        super().__init__(server_address, ICAPRequestHandler)


def serve(patterns: PatternSet, host: str = "0.0.0.0", port: int = ICAP_PORT) -> None:
    adapter = HeaderAdapter(patterns)
    with ICAPServer((host, port), adapter) as server:
        LOG.info("Starting ICAP server on %s:%s istag=%s", host, port, adapter.istag)
        try:
            server.serve_forever()
        except KeyboardInterrupt:
            LOG.info("ICAP server shutting down")
