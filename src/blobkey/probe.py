"""Authorization probe: can this exact signed URL be fetched right now?"""

import logging
from http.cookiejar import DefaultCookiePolicy
from typing import Optional, Protocol

import requests

from blobkey.errors import ProbeError

LOG = logging.getLogger("blobkey.probe")

PROBE_TIMEOUT = 10


class ProbeClient(Protocol):
    def status(self, url: str) -> int:
        """Return the HTTP status of a GET to ``url``; raise ProbeError if none."""
        ...


def probe_session() -> requests.Session:
    """Session for anonymous probes.

    No credentials from the environment (``.netrc``, proxy settings) and no
    cookies: the status has to come from the signed URL alone.
    """
    session = requests.Session()
    session.trust_env = False
    return session


class RequestsProbeClient:
    """Probe client backed by a shared requests.Session.

    The body is never read: the response is streamed and closed as soon as
    the status line and headers have arrived. Redirects are not followed, a
    redirect is not a proof that the original URL serves the object.

    The session never stores cookies, so one probe's response cannot
    authorize a later probe for a different URL.
    """

    def __init__(self, timeout: float = PROBE_TIMEOUT, session: Optional[requests.Session] = None) -> None:
        self.timeout = timeout
        self.session = session or probe_session()
        self.session.cookies.clear()
        # reject every Set-Cookie, for all domains
        self.session.cookies.set_policy(DefaultCookiePolicy(allowed_domains=[]))

    def status(self, url: str) -> int:
        try:
            resp = self.session.get(url, stream=True, timeout=self.timeout, allow_redirects=False)
        except requests.RequestException as e:
            # requests embeds the signed URL in its messages, keep only the type
            raise ProbeError(type(e).__name__) from e
        try:
            LOG.debug("Probe status=%s", resp.status_code)
            return resp.status_code
        finally:
            resp.close()

    def close(self) -> None:
        self.session.close()
