"""REQMOD service hiding ``Authorization`` from Squid's cache-admission decision.

Squid refuses to share a cached response for a request that carried
credentials. Registry clients send ``Authorization`` on the CDN redirect too,
although the signed URL alone grants access. For URLs matching the pattern
set, this service hands back a copy of the request without that header, so
Squid evaluates cacheability as if the request were anonymous. Access to a
shared entry is gated separately by the store-id helper, which verifies each
signed URL before mapping it onto the shared key.

The service only ever sees request headers: OPTIONS advertises ``Preview: 0``
and requests with a body are never modified.
"""

import logging
from urllib.parse import urlsplit, urlunsplit

from blobkey.icap import ICAPRequest, ICAPResponse
from blobkey.patterns import PatternSet

LOG = logging.getLogger("blobkey.adapter")

REQMOD_SERVICE = "/reqmod"
SERVICE_NAME = "blobkey ICAP REQMOD"
OPTIONS_TTL = 3600
STRIPPED_HEADER = "Authorization"


def redact_url(url: str) -> str:
    """Mask the password in user-info and drop the query string and fragment."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url.split("?", 1)[0]
    netloc = parts.netloc
    if parts.password is not None:
        userinfo, _, hostport = netloc.rpartition("@")
        user = userinfo.split(":", 1)[0]
        netloc = f"{user}:xxxxx@{hostport}"
    return urlunsplit((parts.scheme, netloc, parts.path, "", ""))


class HeaderAdapter:
    """Answer OPTIONS and REQMOD requests for the ``/reqmod`` service."""

    def __init__(self, patterns: PatternSet, service_name: str = SERVICE_NAME) -> None:
        self.patterns = patterns
        self.service_name = service_name
        # a new tag tells Squid to drop responses adapted under other patterns
        self.istag = f'"BLOBKEY-{patterns.fingerprint()}"'

    def _headers(self) -> list[tuple[str, str]]:
        return [("ISTag", self.istag), ("Service", self.service_name)]

    def handle(self, request: ICAPRequest) -> ICAPResponse:
        if request.service != REQMOD_SERVICE:
            return self._respond(request, ICAPResponse(404, self._headers()))
        if request.method == "OPTIONS":
            return self._respond(request, self.options(request))
        if request.method == "REQMOD":
            try:
                response = self.reqmod(request)
            except Exception:
                LOG.exception("REQMOD adaptation failed, leaving the request unmodified")
                response = self.unmodified(request)
            return self._respond(request, response)
        return self._respond(request, ICAPResponse(405, self._headers()))

    def options(self, request: ICAPRequest) -> ICAPResponse:
        headers = self._headers()
        headers.extend([
            ("Methods", "REQMOD"),
            # 204 responses are fine if the client allows them too
            ("Allow", "204"),
            # no preview bytes, this service never looks at bodies
            ("Preview", "0"),
            ("Options-TTL", str(OPTIONS_TTL)),
        ])
        return ICAPResponse(200, headers)

    def reqmod(self, request: ICAPRequest) -> ICAPResponse:
        http_request = request.http_request
        if http_request is None:
            return ICAPResponse(200, self._headers())
        if request.body is None and self.patterns.matches(http_request.url):
            return ICAPResponse(200, self._headers(), http_request.without(STRIPPED_HEADER))
        return self.unmodified(request)

    def unmodified(self, request: ICAPRequest) -> ICAPResponse:
        """Tell the client to go on with the request exactly as it was."""
        if request.allows_204 or request.preview is not None:
            return ICAPResponse(204, self._headers())
        return ICAPResponse(200, self._headers(), request.http_request, request.body)

    def _respond(self, request: ICAPRequest, response: ICAPResponse) -> ICAPResponse:
        url = ""
        if request.http_request is not None:
            url = redact_url(request.http_request.url)
        LOG.info("%s %s %s", request.method, response.status, url)
        return response
