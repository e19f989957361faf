"""Exact and fuzzy duplicate detection.

Exact key
    SHA-256 over deterministic JSON of the ISO date, the amount in minor
    units and the normalized description (case-folded, punctuation and noise
    words removed, reference-code digit runs of length >= 4 removed).
    Transactions sharing it are the same event: the first occurrence (store,
    then earliest in the batch) is kept, later ones are dropped.

Fuzzy key
    ``YYYY-MM|<amount rounded to 10 major units>|<first N merchant tokens>``.
    Collisions are only candidates; each is scored on amount, date,
    description-token overlap and merchant equality, and flagged as a
    probable duplicate when the weighted score clears the threshold. Flagged
    transactions are still accepted.

A :class:`DuplicateDetector` holds the batch seen so far, so use one instance
per import call.
"""

from __future__ import annotations

import hashlib
import json
import re
import unicodedata
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from .config import ImportSettings
from .logging_setup import get_logger
from .models import (
    CanonicalTransaction,
    DuplicateStatus,
    ExactDuplicate,
    Fingerprint,
    ProbableDuplicate,
    StoredTransaction,
    currency_exponent,
)
from .store import EmptyFingerprintSource, FingerprintSource

_LOG = get_logger("bank_import.duplicates")

_WS_RE = re.compile(r"\s+")
_PUNCT_RE = re.compile(r"[^\w\s]")
_NOISE_RE = re.compile(r"\b(?:purchase|payment|debit|credit)\b")
_REFERENCE_RE = re.compile(r"\b\d{4,}\b")
_LEGAL_SUFFIX_RE = re.compile(r"\b(?:ltd|llc|inc|corp|pty|plc|gmbh)\b")
_SHOP_WORDS_RE = re.compile(r"\b(?:store|shop|market|supermarket)\b")
_NUMBER_RE = re.compile(r"\b\d+\b")


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def _fold(text: str) -> str:
    return unicodedata.normalize("NFKC", text or "").casefold()


def normalize_description(text: str) -> str:
    """Description form used by the exact key."""

    s = _WS_RE.sub(" ", _fold(text))
    s = _PUNCT_RE.sub("", s)
    s = _NOISE_RE.sub("", s)
    s = _REFERENCE_RE.sub("", s)
    return _WS_RE.sub(" ", s).strip()


def normalize_merchant(text: str) -> str:
    """Merchant form used by the fuzzy key and the merchant signal."""

    s = _fold(text)
    s = _LEGAL_SUFFIX_RE.sub("", s)
    s = _SHOP_WORDS_RE.sub("", s)
    s = _NUMBER_RE.sub("", s)
    s = _PUNCT_RE.sub("", s)
    return _WS_RE.sub(" ", s).strip()


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


def exact_key(tx: CanonicalTransaction | StoredTransaction) -> str:
    payload = {
        "date": tx.date.isoformat(),
        "amount": tx.amount_minor,
        "description": normalize_description(tx.description),
    }
    data = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def fuzzy_amount_bucket(amount_minor: int, currency: str) -> int:
    """Amount rounded half-up to the nearest 10 major units, in minor units."""

    step = 10 * 10 ** currency_exponent(currency)
    buckets = (Decimal(amount_minor) / step).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return int(buckets) * step


def fuzzy_key(tx: CanonicalTransaction | StoredTransaction, merchant_tokens: int = 3) -> str:
    tokens = normalize_merchant(tx.merchant).split()[:merchant_tokens]
    bucket = fuzzy_amount_bucket(tx.amount_minor, tx.currency)
    return f"{tx.date:%Y-%m}|{bucket}|{' '.join(tokens)}"


def compute_fingerprint(
    tx: CanonicalTransaction | StoredTransaction, merchant_tokens: int = 3
) -> Fingerprint:
    return Fingerprint(exact_key=exact_key(tx), fuzzy_key=fuzzy_key(tx, merchant_tokens))


# ---------------------------------------------------------------------------
# Similarity
# ---------------------------------------------------------------------------


def _jaccard(a: str, b: str) -> float:
    ta, tb = set(a.split()), set(b.split())
    if not ta and not tb:
        return 1.0
    if not ta or not tb:
        return 0.0
    return len(ta & tb) / len(ta | tb)


def similarity(
    a: CanonicalTransaction | StoredTransaction,
    b: CanonicalTransaction | StoredTransaction,
    settings: ImportSettings,
) -> float:
    """Weighted similarity in ``[0, 1]`` of two fuzzy-key candidates."""

    w = settings.weights
    largest = max(abs(a.amount_minor), abs(b.amount_minor))
    amount_ok = abs(a.amount_minor - b.amount_minor) <= settings.amount_tolerance_pct * largest
    date_ok = abs((a.date - b.date).days) <= settings.date_tolerance_days
    desc = _jaccard(normalize_description(a.description), normalize_description(b.description))
    merchant_ok = normalize_merchant(a.merchant) == normalize_merchant(b.merchant)
    return (
        w.amount * float(amount_ok)
        + w.date * float(date_ok)
        + w.description * desc
        + w.merchant * float(merchant_ok)
    )


# ---------------------------------------------------------------------------
# Detector
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Classification:
    status: DuplicateStatus
    fingerprint: Fingerprint
    exact: ExactDuplicate | None = None
    probable: ProbableDuplicate | None = None


@dataclass(frozen=True, slots=True)
class DedupOutcome:
    accepted: tuple[CanonicalTransaction, ...]
    fingerprints: tuple[Fingerprint, ...]
    exact_duplicates: tuple[ExactDuplicate, ...]
    probable_duplicates: tuple[ProbableDuplicate, ...]


class DuplicateDetector:
    def __init__(
        self,
        source: FingerprintSource | None = None,
        settings: ImportSettings | None = None,
    ) -> None:
        self._source = source if source is not None else EmptyFingerprintSource()
        self._settings = settings or ImportSettings()
        self._batch_exact: set[str] = set()
        self._batch_fuzzy: dict[str, list[CanonicalTransaction]] = {}

    def fingerprint(self, tx: CanonicalTransaction) -> Fingerprint:
        return compute_fingerprint(tx, self._settings.fuzzy_merchant_tokens)

    def classify(self, tx: CanonicalTransaction) -> Classification:
        """Classify ``tx`` against the store snapshot and the batch seen so far.

        New and probable-duplicate transactions join the batch; exact
        duplicates do not.
        """

        fp = self.fingerprint(tx)

        if self._source.has_exact_fingerprint(fp.exact_key):
            return Classification(
                status=DuplicateStatus.EXACT_DUPLICATE,
                fingerprint=fp,
                exact=ExactDuplicate(transaction=tx, exact_key=fp.exact_key, origin="store"),
            )
        if fp.exact_key in self._batch_exact:
            return Classification(
                status=DuplicateStatus.EXACT_DUPLICATE,
                fingerprint=fp,
                exact=ExactDuplicate(transaction=tx, exact_key=fp.exact_key, origin="batch"),
            )

        probable = self._best_fuzzy_match(tx, fp)

        self._batch_exact.add(fp.exact_key)
        self._batch_fuzzy.setdefault(fp.fuzzy_key, []).append(tx)

        if probable is not None:
            return Classification(
                status=DuplicateStatus.PROBABLE_DUPLICATE, fingerprint=fp, probable=probable
            )
        return Classification(status=DuplicateStatus.NEW, fingerprint=fp)

    def _best_fuzzy_match(
        self, tx: CanonicalTransaction, fp: Fingerprint
    ) -> ProbableDuplicate | None:
        threshold = self._settings.fuzzy_threshold
        best: ProbableDuplicate | None = None
        for stored in self._source.existing_fuzzy_candidates(fp.fuzzy_key):
            score = similarity(tx, stored, self._settings)
            if score >= threshold and (best is None or score > best.score):
                best = ProbableDuplicate(transaction=tx, matched=stored, origin="store", score=score)
        for earlier in self._batch_fuzzy.get(fp.fuzzy_key, ()):
            score = similarity(tx, earlier, self._settings)
            if score >= threshold and (best is None or score > best.score):
                best = ProbableDuplicate(transaction=tx, matched=earlier, origin="batch", score=score)
        return best

    def classify_batch(self, transactions: Iterable[CanonicalTransaction]) -> DedupOutcome:
        accepted: list[CanonicalTransaction] = []
        fingerprints: list[Fingerprint] = []
        exact: list[ExactDuplicate] = []
        probable: list[ProbableDuplicate] = []
        for tx in transactions:
            c = self.classify(tx)
            if c.exact is not None:
                exact.append(c.exact)
                continue
            accepted.append(tx)
            fingerprints.append(c.fingerprint)
            if c.probable is not None:
                probable.append(c.probable)
        _LOG.debug(
            "dedup:batch accepted=%d exact=%d probable=%d",
            len(accepted),
            len(exact),
            len(probable),
        )
        return DedupOutcome(
            accepted=tuple(accepted),
            fingerprints=tuple(fingerprints),
            exact_duplicates=tuple(exact),
            probable_duplicates=tuple(probable),
        )


__all__ = [
    "normalize_description",
    "normalize_merchant",
    "exact_key",
    "fuzzy_key",
    "fuzzy_amount_bucket",
    "compute_fingerprint",
    "similarity",
    "Classification",
    "DedupOutcome",
    "DuplicateDetector",
]
