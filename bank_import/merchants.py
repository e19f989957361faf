"""Merchant standardization.

Banks print the same merchant many ways ("SBUX 0423", "STARBUCKS COFFEE #12",
"SQ *STARBUCKS"). A :class:`MerchantDirectory` maps those spellings to one
standard name plus a category, optionally scoped to a country. Lookup runs on
the cleaned merchant string produced by the descriptor's merchant rules:

1. exact: the lookup key equals a known variant (confidence 1.0);
2. partial: a known variant longer than three characters appears in the key
   on word boundaries; the longest such variant wins (confidence 0.9);
3. fuzzy: the best Jaro-Winkler similarity (rapidfuzz) at or above the
   threshold, over keys and variants of at least four characters.

Country-scoped entries only match when the caller's country agrees; an
unknown country (``None`` or ``"ZZ"``) sees every entry.

The packaged directory lives in ``data/merchants.json``. Directories are
immutable; :meth:`MerchantDirectory.with_custom` returns an extended copy so a
shared instance can serve concurrent imports.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from functools import cache
from importlib import resources
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from rapidfuzz import process
from rapidfuzz.distance import JaroWinkler

from .logging_setup import get_logger

_LOG = get_logger("bank_import.merchants")

UNKNOWN_COUNTRY = "ZZ"
_MIN_PARTIAL = 4
_MIN_FUZZY = 4

type MatchMethod = Literal["exact", "partial", "fuzzy"]

_LOOKUP_CLEANUP: tuple[re.Pattern[str], ...] = (
    re.compile(r"^(?:PAYPAL\s*\*\s*|SQ\s*\*\s*|TST\s*\*\s*|STRIPE\s*)"),  # processors
    re.compile(r"\s+[A-Z]{2,3}\s*\d+$"),  # location/terminal codes
    re.compile(r"\s+\d{3,6}$"),
    re.compile(r"\s+\d{2}/\d{2}/\d{2,4}$"),
    re.compile(r"\s+\d{2}:\d{2}(?::\d{2})?$"),
    re.compile(r"\s+(?:REF|TXN)\s*#?\s*\w+$"),
    re.compile(r"^(?:POS|EFTPOS)\s+"),
    re.compile(r"\s+(?:POS|EFTPOS)$"),
    re.compile(r"^WWW\."),
    re.compile(r"\.COM?$"),
)

_DISPLAY_CLEANUP: tuple[re.Pattern[str], ...] = (
    re.compile(r"^(?:POS|EFTPOS)\s+", re.IGNORECASE),
    re.compile(r"\s+(?:POS|EFTPOS)$", re.IGNORECASE),
    re.compile(r"^WWW\.", re.IGNORECASE),
    re.compile(r"\.COM?$", re.IGNORECASE),
)

_WS_RE = re.compile(r"\s+")
_WORD_START_RE = re.compile(r"\b\w")


def lookup_key(raw: str) -> str:
    """Upper-case ``raw`` and strip processor prefixes, codes, dates and web noise."""

    key = raw.strip().upper()
    for pattern in _LOOKUP_CLEANUP:
        key = pattern.sub("", key)
    return _WS_RE.sub(" ", key).strip()


def display_name(raw: str) -> str:
    """Title-cased merchant text for transactions the directory does not know."""

    cleaned = raw.strip()
    for pattern in _DISPLAY_CLEANUP:
        cleaned = pattern.sub("", cleaned)
    cleaned = _WS_RE.sub(" ", cleaned).strip()
    return _WORD_START_RE.sub(lambda m: m.group().upper(), cleaned.lower())


def _scope(country: str | None) -> str | None:
    if not country:
        return None
    code = country.upper()
    return None if code == UNKNOWN_COUNTRY else code


def _variant_pattern(variant: str) -> re.Pattern[str]:
    # Word boundaries only where the variant's edge is alphanumeric ("AMZ*" is open-ended).
    head = r"(?<![A-Z0-9])" if variant[0].isalnum() else ""
    tail = r"(?![A-Z0-9])" if variant[-1].isalnum() else ""
    return re.compile(head + re.escape(variant) + tail)


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class MerchantEntry:
    standard_name: str
    category: str
    subcategory: str
    country: str | None = None
    custom: bool = False

    def visible_from(self, country: str | None) -> bool:
        return country is None or self.country is None or self.country == country


@dataclass(frozen=True, slots=True)
class MerchantMatch:
    entry: MerchantEntry
    method: MatchMethod
    confidence: float
    variant: str

    @property
    def standard_name(self) -> str:
        return self.entry.standard_name

    @property
    def category(self) -> str:
        return self.entry.category


# ---------------------------------------------------------------------------
# Directory
# ---------------------------------------------------------------------------


class MerchantDirectory:
    """Immutable variant -> :class:`MerchantEntry` index."""

    def __init__(self, variants: Iterable[tuple[str, MerchantEntry]] = ()) -> None:
        index: dict[str, MerchantEntry] = {}
        for variant, entry in variants:
            key = variant.strip().upper()
            if key:
                index.setdefault(key, entry)
        self._index = index
        self._partial = tuple(
            (key, _variant_pattern(key)) for key in index if len(key) >= _MIN_PARTIAL
        )
        self._fuzzy_by_country: dict[str | None, list[str]] = {}

    @classmethod
    def from_groups(
        cls, groups: Iterable[tuple[MerchantEntry, Sequence[str]]]
    ) -> MerchantDirectory:
        """Each group contributes its variants and its own standard name."""

        pairs: list[tuple[str, MerchantEntry]] = []
        for entry, variants in groups:
            pairs.extend((v, entry) for v in variants)
            pairs.append((entry.standard_name, entry))
        return cls(pairs)

    def __len__(self) -> int:
        return len(self._index)

    def __contains__(self, raw: object) -> bool:
        return isinstance(raw, str) and lookup_key(raw) in self._index

    def entries(self) -> list[MerchantEntry]:
        """Distinct entries in registration order."""

        return list(dict.fromkeys(self._index.values()))

    def with_custom(
        self,
        raw_name: str,
        standard_name: str,
        category: str = "other",
        subcategory: str = "custom",
        *,
        country: str | None = None,
    ) -> MerchantDirectory:
        """Return a copy where ``raw_name`` maps to a caller-defined merchant.

        Custom spellings take precedence over packaged ones.
        """

        key = lookup_key(raw_name)
        if not key:
            raise ValueError("custom merchant name is empty after cleanup")
        entry = MerchantEntry(
            standard_name=standard_name,
            category=category,
            subcategory=subcategory,
            country=_scope(country),
            custom=True,
        )
        pairs = [(key, entry), (standard_name, entry)]
        pairs.extend(self._index.items())
        _LOG.debug("merchants:custom key=%s name=%s", key, standard_name)
        return MerchantDirectory(pairs)

    def match(
        self, raw: str, country: str | None = None, *, threshold: float = 0.8
    ) -> MerchantMatch | None:
        """Best directory entry for ``raw`` or ``None``."""

        key = lookup_key(raw)
        if not key:
            return None
        scope = _scope(country)

        entry = self._index.get(key)
        if entry is not None and entry.visible_from(scope):
            return MerchantMatch(entry, "exact", 1.0, key)

        best: str | None = None
        for variant, pattern in self._partial:
            entry = self._index[variant]
            if not entry.visible_from(scope) or not pattern.search(key):
                continue
            if best is None or len(variant) > len(best):
                best = variant
        if best is not None:
            return MerchantMatch(self._index[best], "partial", 0.9, best)

        if len(key) < _MIN_FUZZY:
            return None
        hit = process.extractOne(
            key,
            self._fuzzy_choices(scope),
            scorer=JaroWinkler.similarity,
            score_cutoff=threshold,
        )
        if hit is None:
            return None
        variant, score, _ = hit
        return MerchantMatch(self._index[variant], "fuzzy", round(float(score), 4), variant)

    def suggestions(
        self, raw: str, country: str | None = None, *, limit: int = 5, cutoff: float = 0.3
    ) -> list[MerchantMatch]:
        """Up to ``limit`` distinct merchants resembling ``raw``, best first."""

        key = lookup_key(raw)
        if not key:
            return []
        hits = process.extract(
            key,
            self._fuzzy_choices(_scope(country)),
            scorer=JaroWinkler.similarity,
            score_cutoff=cutoff,
            limit=None,
        )
        seen: set[str] = set()
        out: list[MerchantMatch] = []
        for variant, score, _ in hits:
            entry = self._index[variant]
            if entry.standard_name in seen:
                continue
            seen.add(entry.standard_name)
            out.append(MerchantMatch(entry, "fuzzy", round(float(score), 4), variant))
            if len(out) >= limit:
                break
        return out

    def _fuzzy_choices(self, scope: str | None) -> list[str]:
        choices = self._fuzzy_by_country.get(scope)
        if choices is None:
            choices = [
                key
                for key, entry in self._index.items()
                if len(key) >= _MIN_FUZZY and entry.visible_from(scope)
            ]
            self._fuzzy_by_country[scope] = choices
        return choices


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


class _GroupSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    category: str = Field(min_length=1)
    subcategory: str = Field(min_length=1)
    country: str | None = Field(default=None, min_length=2, max_length=2)
    variants: list[str] = Field(default_factory=list)

    def to_group(self) -> tuple[MerchantEntry, list[str]]:
        entry = MerchantEntry(
            standard_name=self.name,
            category=self.category,
            subcategory=self.subcategory,
            country=self.country.upper() if self.country else None,
        )
        return entry, self.variants


def load_directory(raw: str | None = None) -> MerchantDirectory:
    """Build a directory from JSON text (the packaged one by default).

    Raises ``ValueError`` when an entry is malformed.
    """

    if raw is None:
        raw = (
            resources.files("bank_import")
            .joinpath("data/merchants.json")
            .read_text(encoding="utf-8")
        )
    groups = json.loads(raw)
    if not isinstance(groups, list):
        raise ValueError("merchant directory must be a JSON array of merchant groups")
    directory = MerchantDirectory.from_groups(
        _GroupSpec.model_validate(g).to_group() for g in groups
    )
    _LOG.debug("merchants:loaded variants=%d", len(directory))
    return directory


@cache
def default_directory() -> MerchantDirectory:
    return load_directory()


__all__ = [
    "UNKNOWN_COUNTRY",
    "MerchantEntry",
    "MerchantMatch",
    "MerchantDirectory",
    "lookup_key",
    "display_name",
    "load_directory",
    "default_directory",
]
