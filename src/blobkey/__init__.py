"""
blobkey - cache keys for signed, content-addressable CDN blob URLs.

Helpers that let a Squid caching proxy share container image layers fetched
from registry CDN redirects: a store-id program that strips the signed query
string after verifying the URL, and an ICAP REQMOD service that hides
Authorization from the cacheability decision for the same URL patterns.
"""

__version__ = "0.1.0"

from blobkey.adapter import HeaderAdapter
from blobkey.errors import BlobkeyError, ICAPError, PatternError, ProbeError, ProtocolError
from blobkey.patterns import Context, PatternSet, RegexRule, load_pattern_set
from blobkey.probe import ProbeClient, RequestsProbeClient
from blobkey.store_id import StoreIdNormalizer, parse_line, process_input

__all__ = [
    "__version__",
    "BlobkeyError",
    "Context",
    "HeaderAdapter",
    "ICAPError",
    "PatternError",
    "PatternSet",
    "ProbeClient",
    "ProbeError",
    "ProtocolError",
    "RegexRule",
    "RequestsProbeClient",
    "StoreIdNormalizer",
    "load_pattern_set",
    "parse_line",
    "process_input",
]
