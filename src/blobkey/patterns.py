"""Pattern registry shared by the store-id helper and the ICAP service.

A PatternSet is an ordered, immutable collection of URL rules. A URL is
eligible when any rule matches; rule order only affects evaluation cost.

Build one set at process start with load_pattern_set() and hand it to every
component that needs it. Both helpers go through the same loader so their
eligibility decisions cannot drift apart for the same configuration.
"""

import hashlib
import logging
import os
import re
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Protocol

from blobkey.default_patterns import default_pattern_sources
from blobkey.errors import PatternError

LOG = logging.getLogger("blobkey.patterns")

PATTERNS_ENV = "BLOBKEY_PATTERNS"


@dataclass(frozen=True)
class Context:
    """Request context passed to rules."""

    url: str


class Rule(Protocol):
    """Protocol for eligibility rules."""

    source: str

    def match(self, ctx: Context) -> bool:
        ...


class RegexRule:
    """Match the full URL with a compiled regex (case-sensitive)."""

    __slots__ = ("source", "_compiled")

    def __init__(self, pattern: str | re.Pattern[str]) -> None:
        if isinstance(pattern, str):
            self.source = pattern
            self._compiled = re.compile(pattern)
        else:
            self.source = pattern.pattern
            self._compiled = pattern

    def match(self, ctx: Context) -> bool:
        return self._compiled.search(ctx.url) is not None

    def __repr__(self) -> str:
        return f"RegexRule({self.source!r})"


class PatternSet:
    """Immutable, ordered set of eligibility rules."""

    __slots__ = ("_rules",)

    def __init__(self, rules: Iterable[Rule]) -> None:
        self._rules = tuple(rules)

    def __len__(self) -> int:
        return len(self._rules)

    def __repr__(self) -> str:
        return f"PatternSet({len(self._rules)} rules, fingerprint={self.fingerprint()})"

    @property
    def sources(self) -> tuple[str, ...]:
        return tuple(rule.source for rule in self._rules)

    def matches(self, url: str) -> bool:
        if not url:
            return False
        ctx = Context(url=url)
        return any(rule.match(ctx) for rule in self._rules)

    def fingerprint(self) -> str:
        """Short digest of the rule sources, stable across restarts."""
        digest = hashlib.sha224("\n".join(self.sources).encode("utf-8")).hexdigest()
        return digest[:16]

    @classmethod
    def from_sources(cls, sources: Iterable[str]) -> "PatternSet":
        rules = []
        for source in sources:
            try:
                rules.append(RegexRule(source))
            except re.error as e:
                raise PatternError(f"invalid pattern {source!r}: {e}") from e
        return cls(rules)

    @classmethod
    def from_lines(cls, lines: Iterable[str]) -> "PatternSet":
        """Parse one regex per line, skipping blanks and ``#`` comments."""
        rules = []
        for lineno, line in enumerate(lines, start=1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            try:
                rules.append(RegexRule(line))
            except re.error as e:
                raise PatternError(f"invalid pattern on line {lineno}: {line!r}: {e}") from e
        return cls(rules)

    @classmethod
    def from_file(cls, path: str) -> "PatternSet":
        try:
            with open(path, encoding="utf-8") as f:
                return cls.from_lines(f)
        except OSError as e:
            raise PatternError(f"unable to read pattern file {path}: {e}") from e

    @classmethod
    def default(cls) -> "PatternSet":
        return cls.from_sources(default_pattern_sources())


def load_pattern_set(path: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> PatternSet:
    """Load the pattern set from a file, the environment, or the built-in defaults.

    An explicit path wins over ``BLOBKEY_PATTERNS``; an empty result is an
    error, since a helper with no patterns can never do anything useful.
    """
    if env is None:
        env = os.environ
    if path:
        patterns = PatternSet.from_file(path)
        origin = f"file {path}"
    elif env.get(PATTERNS_ENV, "").strip():
        patterns = PatternSet.from_lines(env[PATTERNS_ENV].splitlines())
        origin = f"env {PATTERNS_ENV}"
    else:
        patterns = PatternSet.default()
        origin = "defaults"
    if not len(patterns):
        raise PatternError(f"no patterns configured ({origin})")
    LOG.info("Loaded %d patterns from %s fingerprint=%s", len(patterns), origin, patterns.fingerprint())
    return patterns
