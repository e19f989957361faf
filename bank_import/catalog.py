"""Static catalog of bank export formats.

The catalog is loaded once from ``data/bank_formats.json`` (validated with
pydantic) into an immutable, ordered :class:`FormatCatalog`. Registration order
matters: the detector breaks score ties in favour of the earlier descriptor.

Query helpers mirror what callers need at the edges: lookup by key,
descriptors for a country, and structural validation of a descriptor.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from datetime import date, datetime
from enum import StrEnum
from functools import cache
from importlib import resources
from types import MappingProxyType
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .logging_setup import get_logger

_LOG = get_logger("bank_import.catalog")

# ---------------------------------------------------------------------------
# Conventions
# ---------------------------------------------------------------------------


class AmountConvention(StrEnum):
    SINGLE_SIGNED = "single-signed"
    TYPE_FLAG = "single-unsigned-with-type-flag"
    DEBIT_CREDIT_COLUMNS = "separate-debit-credit-columns"


# Date-format tokens used by descriptors -> strptime patterns.
DATE_FORMATS: Mapping[str, str] = MappingProxyType(
    {
        "DD/MM/YYYY": "%d/%m/%Y",
        "MM/DD/YYYY": "%m/%d/%Y",
        "YYYY-MM-DD": "%Y-%m-%d",
        "DD.MM.YYYY": "%d.%m.%Y",
        "DD-MM-YYYY": "%d-%m-%Y",
        "YYYY/MM/DD": "%Y/%m/%d",
        "YYYYMMDD": "%Y%m%d",
        "DD/MM/YY": "%d/%m/%y",
        "MM/DD/YY": "%m/%d/%y",
        "DD.MM.YY": "%d.%m.%y",
    }
)

CANONICAL_FIELDS: frozenset[str] = frozenset(
    {
        "date",
        "amount",
        "debit",
        "credit",
        "type",
        "description",
        "description2",
        "balance",
        "reference",
        "memo",
        "category",
    }
)

_REQUIRED_BY_CONVENTION: Mapping[AmountConvention, tuple[str, ...]] = MappingProxyType(
    {
        AmountConvention.SINGLE_SIGNED: ("date", "description", "amount"),
        AmountConvention.TYPE_FLAG: ("date", "description", "amount", "type"),
        AmountConvention.DEBIT_CREDIT_COLUMNS: ("date", "description", "debit", "credit"),
    }
)

DEFAULT_DEBIT_MARKERS: tuple[str, ...] = ("DR", "DEBIT", "D", "-", "AF", "SOLL", "WITHDRAWAL")
DEFAULT_CREDIT_MARKERS: tuple[str, ...] = ("CR", "CREDIT", "C", "+", "BIJ", "HABEN", "DEPOSIT")


def parse_date(text: str, token: str) -> date:
    """Parse ``text`` using the descriptor date ``token``.

    Time suffixes (``"01/02/2024 13:45"``, ``"2024-02-01T13:45:00"``) are
    ignored. Raises ``ValueError`` when the cell does not match the token.
    """

    fmt = DATE_FORMATS.get(token)
    if fmt is None:
        raise ValueError(f"unknown date format token: {token!r}")
    s = text.strip()
    if not s:
        raise ValueError("date is empty")
    first = s.split()[0]
    if "T" in first and token.startswith("YYYY"):
        first = first.split("T", 1)[0]
    try:
        return datetime.strptime(first, fmt).date()
    except ValueError as exc:
        raise ValueError(f"invalid {token} date: {text!r}") from exc


def looks_like_date(text: str) -> bool:
    for token in DATE_FORMATS:
        try:
            parse_date(text, token)
        except ValueError:
            continue
        return True
    return False


# ---------------------------------------------------------------------------
# Descriptor
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class MerchantRule:
    """One ``(pattern, subtype)`` merchant rule.

    The first capture group is the merchant; without a group the whole match
    is used.
    """

    pattern: re.Pattern[str]
    subtype: str

    def extract(self, description: str) -> str | None:
        m = self.pattern.search(description)
        if m is None:
            return None
        if m.re.groups:
            return (m.group(1) or "").strip()
        return m.group(0).strip()


type ColumnRef = str | int


@dataclass(frozen=True, slots=True)
class BankFormatDescriptor:
    key: str
    institution: str
    country: str
    currency: str
    date_format: str
    fields: tuple[tuple[str, ColumnRef], ...]
    identifiers: tuple[str, ...]
    encoding: str = "utf-8"
    delimiter: str = ","
    has_header: bool = True
    skip_rows: int = 0
    amount_convention: AmountConvention = AmountConvention.SINGLE_SIGNED
    merchant_rules: tuple[MerchantRule, ...] = ()
    sample_header: str | None = None
    decimal_separator: Literal[".", ","] = "."
    debit_markers: tuple[str, ...] = DEFAULT_DEBIT_MARKERS
    credit_markers: tuple[str, ...] = DEFAULT_CREDIT_MARKERS

    def source(self, canonical: str) -> ColumnRef | None:
        for name, ref in self.fields:
            if name == canonical:
                return ref
        return None

    @property
    def column_names(self) -> tuple[str, ...]:
        return tuple(ref for _, ref in self.fields if isinstance(ref, str))

    @property
    def column_indices(self) -> tuple[int, ...]:
        return tuple(ref for _, ref in self.fields if isinstance(ref, int))


def validate_descriptor(descriptor: BankFormatDescriptor) -> list[str]:
    """Return the structural problems of ``descriptor`` (empty when valid)."""

    problems: list[str] = []
    for attr in ("key", "institution", "country", "currency"):
        if not getattr(descriptor, attr):
            problems.append(f"{attr} is required")
    if not descriptor.identifiers:
        problems.append("at least one identifier is required")
    if descriptor.date_format not in DATE_FORMATS:
        problems.append(f"unknown date format {descriptor.date_format!r}")
    names = [name for name, _ in descriptor.fields]
    unknown = sorted(set(names) - CANONICAL_FIELDS)
    if unknown:
        problems.append(f"unknown canonical fields: {', '.join(unknown)}")
    if len(set(names)) != len(names):
        problems.append("canonical fields must be mapped once")
    for required in _REQUIRED_BY_CONVENTION[descriptor.amount_convention]:
        if required not in names:
            problems.append(
                f"field {required!r} is required for {descriptor.amount_convention.value}"
            )
    if not descriptor.has_header and descriptor.column_names:
        problems.append("headerless formats must map fields by column index")
    if descriptor.amount_convention is AmountConvention.TYPE_FLAG and not (
        descriptor.debit_markers and descriptor.credit_markers
    ):
        problems.append("type-flag formats need debit and credit markers")
    return problems


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class FormatCatalog:
    """Immutable, ordered registry of :class:`BankFormatDescriptor` values."""

    __slots__ = ("_descriptors", "_index")

    def __init__(self, descriptors: Iterable[BankFormatDescriptor]) -> None:
        items = tuple(descriptors)
        index: dict[str, int] = {}
        for pos, d in enumerate(items):
            if d.key in index:
                raise ValueError(f"duplicate format key: {d.key!r}")
            index[d.key] = pos
        self._descriptors = items
        self._index = MappingProxyType(index)

    def __iter__(self) -> Iterator[BankFormatDescriptor]:
        return iter(self._descriptors)

    def __len__(self) -> int:
        return len(self._descriptors)

    def __contains__(self, key: object) -> bool:
        return key in self._index

    def __getitem__(self, key: str) -> BankFormatDescriptor:
        return self._descriptors[self._index[key]]

    def get(self, key: str) -> BankFormatDescriptor | None:
        pos = self._index.get(key)
        return None if pos is None else self._descriptors[pos]

    def position(self, key: str) -> int:
        """Registration position of ``key`` (tie-break order)."""

        return self._index[key]

    def by_country(self, country: str) -> list[BankFormatDescriptor]:
        code = country.strip().upper()
        return [d for d in self._descriptors if d.country == code]

    @property
    def keys(self) -> tuple[str, ...]:
        return tuple(d.key for d in self._descriptors)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


class _MerchantRuleSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    pattern: str
    subtype: str

    @field_validator("pattern")
    @classmethod
    def _compiles(cls, v: str) -> str:
        try:
            re.compile(v)
        except re.error as exc:
            raise ValueError(f"invalid merchant pattern {v!r}: {exc}") from exc
        return v


class _FormatSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    key: str = Field(min_length=1)
    institution: str = Field(min_length=1)
    country: str = Field(min_length=2, max_length=2)
    currency: str = Field(min_length=3, max_length=3)
    encoding: str = "utf-8"
    delimiter: Literal[",", ";", "\t", "|"] = ","
    has_header: bool = True
    skip_rows: int = Field(default=0, ge=0)
    date_format: str
    amount_convention: AmountConvention = AmountConvention.SINGLE_SIGNED
    decimal_separator: Literal[".", ","] = "."
    fields: dict[str, str | int]
    identifiers: list[str] = Field(min_length=1)
    sample_header: str | None = None
    merchant_rules: list[_MerchantRuleSpec] = Field(default_factory=list)
    debit_markers: list[str] | None = None
    credit_markers: list[str] | None = None

    def to_descriptor(self) -> BankFormatDescriptor:
        return BankFormatDescriptor(
            key=self.key,
            institution=self.institution,
            country=self.country.upper(),
            currency=self.currency.upper(),
            encoding=self.encoding,
            delimiter=self.delimiter,
            has_header=self.has_header,
            skip_rows=self.skip_rows,
            date_format=self.date_format,
            fields=tuple(self.fields.items()),
            identifiers=tuple(self.identifiers),
            amount_convention=self.amount_convention,
            merchant_rules=tuple(
                MerchantRule(pattern=re.compile(r.pattern, re.IGNORECASE), subtype=r.subtype)
                for r in self.merchant_rules
            ),
            sample_header=self.sample_header,
            decimal_separator=self.decimal_separator,
            debit_markers=(
                tuple(m.upper() for m in self.debit_markers)
                if self.debit_markers
                else DEFAULT_DEBIT_MARKERS
            ),
            credit_markers=(
                tuple(m.upper() for m in self.credit_markers)
                if self.credit_markers
                else DEFAULT_CREDIT_MARKERS
            ),
        )


def load_catalog(raw: str | None = None) -> FormatCatalog:
    """Build a catalog from JSON text (the packaged catalog by default).

    Raises ``ValueError`` when an entry is malformed or structurally invalid.
    """

    if raw is None:
        raw = (
            resources.files("bank_import")
            .joinpath("data/bank_formats.json")
            .read_text(encoding="utf-8")
        )
    entries = json.loads(raw)
    if not isinstance(entries, list):
        raise ValueError("catalog must be a JSON array of format entries")

    descriptors: list[BankFormatDescriptor] = []
    for entry in entries:
        descriptor = _FormatSpec.model_validate(entry).to_descriptor()
        problems = validate_descriptor(descriptor)
        if problems:
            raise ValueError(f"invalid format {descriptor.key!r}: {'; '.join(problems)}")
        descriptors.append(descriptor)
    catalog = FormatCatalog(descriptors)
    _LOG.debug("catalog:loaded formats=%d", len(catalog))
    return catalog


@cache
def default_catalog() -> FormatCatalog:
    return load_catalog()


__all__ = [
    "AmountConvention",
    "DATE_FORMATS",
    "CANONICAL_FIELDS",
    "DEFAULT_DEBIT_MARKERS",
    "DEFAULT_CREDIT_MARKERS",
    "parse_date",
    "looks_like_date",
    "MerchantRule",
    "ColumnRef",
    "BankFormatDescriptor",
    "validate_descriptor",
    "FormatCatalog",
    "load_catalog",
    "default_catalog",
]
