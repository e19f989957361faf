"""Data model of the import pipeline.

Per-row and per-call records are frozen, slotted dataclasses; nothing here
outlives one import call except :class:`CanonicalTransaction` values and the
:class:`ImportSummary`, which are handed to the store collaborator.

:class:`ImportReport` is the typed, validated JSON view of an
:class:`ImportResult` used by the CLI and by review tooling.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict

# ---------------------------------------------------------------------------
# Currency minor units
# ---------------------------------------------------------------------------

# ISO 4217 currencies whose minor unit is not 1/100.
_CURRENCY_EXPONENTS: dict[str, int] = {
    "BHD": 3,
    "CLP": 0,
    "ISK": 0,
    "JOD": 3,
    "JPY": 0,
    "KRW": 0,
    "KWD": 3,
    "OMR": 3,
    "TND": 3,
    "VND": 0,
}


def currency_exponent(currency: str) -> int:
    """Number of decimal places of ``currency``'s minor unit (default 2)."""

    return _CURRENCY_EXPONENTS.get(currency.upper(), 2)


# ---------------------------------------------------------------------------
# Rows
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RawRow:
    """Ordered cells of one parsed record and the line it started on (1-based)."""

    cells: tuple[str, ...]
    line_number: int


type RowErrorKind = Literal["parse", "validation"]


@dataclass(frozen=True, slots=True)
class RowError:
    line_number: int
    reason: str
    kind: RowErrorKind = "parse"


# ---------------------------------------------------------------------------
# Canonical transactions and fingerprints
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CanonicalTransaction:
    """A normalized transaction independent of the source bank's layout.

    ``amount_minor`` is the signed amount in minor units of ``currency``
    (negative = outflow, positive = inflow).
    """

    date: date
    amount_minor: int
    currency: str
    description: str
    merchant: str
    format_key: str
    line_number: int
    subtype: str | None = None
    standard_merchant: str | None = None
    category: str | None = None

    @property
    def amount(self) -> Decimal:
        return Decimal(self.amount_minor).scaleb(-currency_exponent(self.currency))


@dataclass(frozen=True, slots=True)
class Fingerprint:
    exact_key: str
    fuzzy_key: str


@dataclass(frozen=True, slots=True)
class StoredTransaction:
    """A previously imported transaction as exposed by a fingerprint source."""

    date: date
    amount_minor: int
    description: str
    merchant: str
    exact_key: str
    currency: str = "USD"


class DuplicateStatus(StrEnum):
    NEW = "new"
    EXACT_DUPLICATE = "exact-duplicate"
    PROBABLE_DUPLICATE = "probable-duplicate"


@dataclass(frozen=True, slots=True)
class ProbableDuplicate:
    """An accepted transaction that looks like an existing one; left for review."""

    transaction: CanonicalTransaction
    matched: CanonicalTransaction | StoredTransaction
    origin: Literal["store", "batch"]
    score: float


@dataclass(frozen=True, slots=True)
class ExactDuplicate:
    transaction: CanonicalTransaction
    exact_key: str
    origin: Literal["store", "batch"]


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ImportSummary:
    rows_read: int
    rows_parsed: int
    rows_rejected: int
    rejected: tuple[RowError, ...]
    accepted: int
    exact_duplicates: tuple[ExactDuplicate, ...]
    probable_duplicates: tuple[ProbableDuplicate, ...]
    format_key: str
    confidence: float
    format_recognized: bool = True
    encoding: str = "utf-8"
    delimiter: str = ","
    warnings: tuple[str, ...] = field(default_factory=tuple)

    @property
    def exact_duplicate_count(self) -> int:
        return len(self.exact_duplicates)


@dataclass(frozen=True, slots=True)
class ImportResult:
    """Outcome of one completed import call.

    ``fingerprints[i]`` belongs to ``accepted[i]``; the store collaborator
    persists both atomically.
    """

    accepted: tuple[CanonicalTransaction, ...]
    fingerprints: tuple[Fingerprint, ...]
    summary: ImportSummary
    detected_format: str
    confidence: float


# ---------------------------------------------------------------------------
# JSON report
# ---------------------------------------------------------------------------


class TransactionOut(BaseModel):
    model_config = ConfigDict(strict=True, extra="forbid")

    line_number: int
    date: str
    amount: str
    amount_minor: int
    currency: str
    description: str
    merchant: str
    subtype: str | None = None
    standard_merchant: str | None = None
    category: str | None = None
    exact_key: str


class RowErrorOut(BaseModel):
    model_config = ConfigDict(strict=True, extra="forbid")

    line_number: int
    kind: str
    reason: str


class ExactDuplicateOut(BaseModel):
    model_config = ConfigDict(strict=True, extra="forbid")

    line_number: int
    origin: str
    exact_key: str
    date: str
    amount_minor: int
    description: str


class ProbableDuplicateOut(BaseModel):
    model_config = ConfigDict(strict=True, extra="forbid")

    line_number: int
    origin: str
    score: float
    matched_date: str
    matched_amount_minor: int
    matched_description: str


class ImportReport(BaseModel):
    """Serialized view of an :class:`ImportResult`."""

    model_config = ConfigDict(strict=True, extra="forbid")

    detected_format: str
    format_recognized: bool
    confidence: float
    encoding: str
    delimiter: str
    rows_read: int
    rows_parsed: int
    rows_rejected: int
    accepted_count: int
    exact_duplicates: list[ExactDuplicateOut]
    warnings: list[str]
    rejected: list[RowErrorOut]
    probable_duplicates: list[ProbableDuplicateOut]
    transactions: list[TransactionOut]

    @classmethod
    def from_result(cls, result: ImportResult) -> ImportReport:
        s = result.summary
        return cls(
            detected_format=result.detected_format,
            format_recognized=s.format_recognized,
            confidence=round(result.confidence, 4),
            encoding=s.encoding,
            delimiter=s.delimiter,
            rows_read=s.rows_read,
            rows_parsed=s.rows_parsed,
            rows_rejected=s.rows_rejected,
            accepted_count=s.accepted,
            exact_duplicates=[
                ExactDuplicateOut(
                    line_number=d.transaction.line_number,
                    origin=d.origin,
                    exact_key=d.exact_key,
                    date=d.transaction.date.isoformat(),
                    amount_minor=d.transaction.amount_minor,
                    description=d.transaction.description,
                )
                for d in s.exact_duplicates
            ],
            warnings=list(s.warnings),
            rejected=[
                RowErrorOut(line_number=e.line_number, kind=e.kind, reason=e.reason)
                for e in s.rejected
            ],
            probable_duplicates=[
                ProbableDuplicateOut(
                    line_number=p.transaction.line_number,
                    origin=p.origin,
                    score=round(p.score, 4),
                    matched_date=p.matched.date.isoformat(),
                    matched_amount_minor=p.matched.amount_minor,
                    matched_description=p.matched.description,
                )
                for p in s.probable_duplicates
            ],
            transactions=[
                TransactionOut(
                    line_number=tx.line_number,
                    date=tx.date.isoformat(),
                    amount=str(tx.amount),
                    amount_minor=tx.amount_minor,
                    currency=tx.currency,
                    description=tx.description,
                    merchant=tx.merchant,
                    subtype=tx.subtype,
                    standard_merchant=tx.standard_merchant,
                    category=tx.category,
                    exact_key=fp.exact_key,
                )
                for tx, fp in zip(result.accepted, result.fingerprints, strict=True)
            ],
        )


__all__ = [
    "currency_exponent",
    "RawRow",
    "RowError",
    "RowErrorKind",
    "CanonicalTransaction",
    "Fingerprint",
    "StoredTransaction",
    "DuplicateStatus",
    "ProbableDuplicate",
    "ExactDuplicate",
    "ExactDuplicateOut",
    "ImportSummary",
    "ImportResult",
    "ImportReport",
]
