"""Squid store-id helper.

Reads ``[channel-ID <SP>] request-URL [<SP> extras] <NL>`` lines and answers
``[channel-ID <SP>] OK [store-id=<key>] <NL>``. A store-id is only handed out
for URLs matching the pattern set whose exact signed form was just fetched
successfully; anything else keeps Squid's default key (the full URL), so an
unauthorized client can never be served from another client's cache entry.

Lines are handled concurrently, so replies may leave in a different order
than requests arrived. Squid correlates them by channel-ID when it uses
helper concurrency.
"""

import io
import logging
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from http import HTTPStatus
from typing import Callable, Optional, TextIO

from cachetools import TTLCache

from blobkey.errors import ProbeError, ProtocolError
from blobkey.patterns import PatternSet
from blobkey.probe import ProbeClient, RequestsProbeClient, PROBE_TIMEOUT

LOG = logging.getLogger("blobkey.store_id")

NEGATIVE_CACHE_SIZE = 4096


def is_channel_id(token: str) -> bool:
    return token.isascii() and token.isdigit()


def strip_query(url: str) -> str:
    return url.split("?", 1)[0]


class StoreIdNormalizer:
    """Decide the store-id for one request URL."""

    def __init__(
        self,
        patterns: PatternSet,
        client: ProbeClient,
        *,
        negative_ttl: float = 0,
        negative_maxsize: int = NEGATIVE_CACHE_SIZE,
    ) -> None:
        self.patterns = patterns
        self.client = client
        self._lock = threading.Lock()
        # exact URL -> True, for probes that failed recently
        self._denied: Optional[TTLCache] = None
        if negative_ttl > 0:
            self._denied = TTLCache(maxsize=negative_maxsize, ttl=negative_ttl)

    def normalize(self, url: str) -> str:
        if not self.patterns.matches(url):
            return url
        # never log the query string, it carries the signature
        log_url = strip_query(url)
        if self._recently_denied(url):
            LOG.debug("Probe skipped, recently denied url=%s", log_url)
            return url
        try:
            status = self.client.status(url)
        except ProbeError as e:
            LOG.warning("Probe failed url=%s error=%s", log_url, e)
            self._deny(url)
            return url
        if status != HTTPStatus.OK:
            LOG.warning("Probe denied url=%s status=%s", log_url, status)
            self._deny(url)
            return url
        LOG.debug("Probe ok url=%s", log_url)
        return log_url

    __call__ = normalize

    def _recently_denied(self, url: str) -> bool:
        if self._denied is None:
            return False
        with self._lock:
            return url in self._denied

    def _deny(self, url: str) -> None:
        if self._denied is None:
            return
        with self._lock:
            self._denied[url] = True


def parse_line(line: str, normalize: Callable[[str], str]) -> str:
    """Answer a single helper request line."""
    parts = line.split()
    if not parts:
        raise ProtocolError("empty request line")

    response = ""
    # a lone numeric field is a URL, not a channel-ID without one
    if len(parts) >= 2 and is_channel_id(parts[0]):
        response = parts[0] + " "
        parts = parts[1:]

    request_url = parts[0]
    store_id = normalize(request_url)
    if store_id != request_url:
        return f"{response}OK store-id={store_id}"
    return f"{response}OK"


def _channel_prefix(line: str) -> str:
    parts = line.split()
    if len(parts) >= 2 and is_channel_id(parts[0]):
        return parts[0] + " "
    return ""


class _LineWriter:
    """Write whole reply lines from many threads."""

    def __init__(self, out: TextIO) -> None:
        self.out = out
        self._lock = threading.Lock()

    def write(self, line: str) -> None:
        with self._lock:
            self.out.write(line + "\n")
            self.out.flush()


def _answer(line: str, normalize: Callable[[str], str], writer: _LineWriter) -> None:
    try:
        response = parse_line(line, normalize)
    except Exception as e:
        LOG.error("Request failed, answering with the default key error=%s", e)
        response = _channel_prefix(line) + "OK"
    LOG.info("Response: %s", response)
    writer.write(response)


def process_input(
    in_stream: TextIO,
    out_stream: TextIO,
    normalize: Callable[[str], str],
    max_workers: Optional[int] = None,
) -> None:
    """Answer every line of ``in_stream`` concurrently.

    Returns once the input is exhausted and every reply has been written.
    Errors reading the input are raised after in-flight lines complete.
    """
    writer = _LineWriter(out_stream)
    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="store-id") as executor:
        for line in iter(in_stream.readline, ""):
            line = line.strip()
            if not line:
                continue
            executor.submit(_answer, line, normalize, writer)


def _tolerant(stream: TextIO) -> TextIO:
    # request extras (e.g. %un) may hold bytes that are not valid text;
    # pass them through unchanged instead of failing the whole helper
    if isinstance(stream, io.TextIOWrapper):
        stream.reconfigure(errors="surrogateescape")
    return stream


def run(
    patterns: PatternSet,
    *,
    probe_timeout: float = PROBE_TIMEOUT,
    negative_ttl: float = 0,
    max_workers: Optional[int] = None,
    in_stream: Optional[TextIO] = None,
    out_stream: Optional[TextIO] = None,
) -> None:
    client = RequestsProbeClient(timeout=probe_timeout)
    normalizer = StoreIdNormalizer(patterns, client, negative_ttl=negative_ttl)
    in_stream = _tolerant(in_stream or sys.stdin)
    out_stream = _tolerant(out_stream or sys.stdout)
    LOG.info("Starting store-id helper patterns=%d", len(patterns))
    try:
        process_input(in_stream, out_stream, normalizer, max_workers=max_workers)
    finally:
        client.close()
    LOG.info("Store-id helper shutting down")
