"""Map parsed rows onto the canonical transaction schema.

``FieldMapper`` resolves each canonical field of a descriptor to a column of
the file (exact header match, then substring, or the declared index).
``TransactionNormalizer`` casts the mapped cells: dates per the descriptor's
token, amounts per its sign convention (converted to integer minor units),
and merchant strings via the descriptor's ordered merchant rules. When a
:class:`~bank_import.merchants.MerchantDirectory` is supplied, the cleaned
merchant is also looked up there for a standard name and category; the
``merchant`` field itself is left as the rules produced it.

Both are pure; a row that cannot be normalized raises
:class:`~bank_import.errors.ValidationError`, which the pipeline records
against the row's line number before moving on.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from .catalog import AmountConvention, BankFormatDescriptor, parse_date
from .detector import resolve_column
from .errors import ValidationError
from .merchants import MerchantDirectory, display_name
from .models import CanonicalTransaction, RawRow, currency_exponent

# ---------------------------------------------------------------------------
# Amount helpers
# ---------------------------------------------------------------------------

_CURRENCY_SYMBOLS = ("$", "€", "£", "¥", "₹", "kr", "Fr.", "CHF")
_CURRENCY_CODE_RE = re.compile(r"^[A-Z]{3}\s*|\s*[A-Z]{3}$")
_CR_DR_RE = re.compile(r"\s*(CR|DR)$", re.IGNORECASE)


def to_decimal(raw: str | None, *, decimal_separator: str = ".") -> Decimal:
    """Parse a bank amount cell into a signed :class:`Decimal`.

    Handles leading/trailing signs, surrounding parentheses, currency symbols
    and ISO codes, ``CR``/``DR`` suffixes, thousands separators and, when
    ``decimal_separator`` is ``","``, European decimal commas.
    """

    if raw is None:
        raise ValueError("amount is required")
    s = raw.strip().replace("\u00a0", " ").replace("\u202f", " ").replace("\u2212", "-")
    if not s:
        raise ValueError("amount is empty")
    negative = False

    m = _CR_DR_RE.search(s)
    if m:
        negative = m.group(1).upper() == "DR"
        s = s[: m.start()].strip()

    s = _CURRENCY_CODE_RE.sub("", s).strip()

    # Strip sign, currency symbol and parentheses in any order until stable,
    # so "-($1,234.56)" and "$(1,234.56)" both work.
    while True:
        changed = False
        if s.startswith("+"):
            s = s[1:].lstrip()
            changed = True
        elif s.startswith("-"):
            negative = True
            s = s[1:].lstrip()
            changed = True
        elif s.endswith("-"):
            negative = True
            s = s[:-1].rstrip()
            changed = True
        for sym in _CURRENCY_SYMBOLS:
            if s.startswith(sym):
                s = s[len(sym) :].lstrip()
                changed = True
            elif s.endswith(sym):
                s = s[: -len(sym)].rstrip()
                changed = True
        if s.startswith("(") and s.endswith(")") and len(s) >= 2:
            negative = True
            s = s[1:-1].strip()
            changed = True
        if not changed:
            break

    s = s.replace(" ", "").replace("'", "")
    if decimal_separator == ",":
        s = s.replace(".", "").replace(",", ".")
    else:
        s = s.replace(",", "")

    try:
        d = Decimal(s)
    except InvalidOperation as exc:
        raise ValueError(f"invalid amount: {raw!r}") from exc
    if not d.is_finite():
        raise ValueError(f"invalid amount: {raw!r}")
    return -abs(d) if negative else d


def to_minor_units(amount: Decimal, currency: str) -> int:
    """Round half-up to the currency's minor unit and return it as an integer."""

    exp = currency_exponent(currency)
    quantum = Decimal(1).scaleb(-exp)
    q = amount.quantize(quantum, rounding=ROUND_HALF_UP)
    return int(q.scaleb(exp))


def _is_empty_amount(raw: str, decimal_separator: str) -> bool:
    if not raw.strip():
        return True
    try:
        return to_decimal(raw, decimal_separator=decimal_separator) == 0
    except ValueError:
        return False


# ---------------------------------------------------------------------------
# Field mapping
# ---------------------------------------------------------------------------


class FieldMapper:
    """Resolve a descriptor's canonical fields to columns of one file."""

    def __init__(self, descriptor: BankFormatDescriptor, header: Sequence[str] | None) -> None:
        self.descriptor = descriptor
        columns: dict[str, int] = {}
        missing: list[str] = []
        for name, ref in descriptor.fields:
            if isinstance(ref, int):
                columns[name] = ref
                continue
            idx = resolve_column(header or (), ref)
            if idx is None:
                missing.append(name)
            else:
                columns[name] = idx
        self.columns: Mapping[str, int] = columns
        self.missing: tuple[str, ...] = tuple(missing)

    def map(self, row: RawRow) -> dict[str, str]:
        """Canonical field -> cell text; columns past the row's end map to ``""``."""

        cells = row.cells
        return {
            name: (cells[idx].strip() if idx < len(cells) else "")
            for name, idx in self.columns.items()
        }


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


class TransactionNormalizer:
    def __init__(
        self,
        descriptor: BankFormatDescriptor,
        mapper: FieldMapper | None = None,
        *,
        merchants: MerchantDirectory | None = None,
        merchant_threshold: float = 0.8,
    ) -> None:
        self.descriptor = descriptor
        self.mapper = mapper
        self.merchants = merchants
        self.merchant_threshold = merchant_threshold

    def normalize(
        self, row: RawRow, mapped: Mapping[str, str] | None = None
    ) -> CanonicalTransaction:
        d = self.descriptor
        if mapped is None:
            if self.mapper is None:
                raise ValueError("either a mapper or pre-mapped cells are required")
            mapped = self.mapper.map(row)

        line = row.line_number
        try:
            when = parse_date(mapped.get("date", ""), d.date_format)
        except ValueError as exc:
            raise ValidationError(str(exc), line_number=line) from exc

        try:
            amount = self._amount(mapped)
        except ValueError as exc:
            raise ValidationError(str(exc), line_number=line) from exc

        description = mapped.get("description", "")
        extra = mapped.get("description2", "")
        if extra:
            description = f"{description} {extra}".strip()

        merchant, subtype = self.clean_merchant(description)
        standard, category = self.standardize(merchant)
        return CanonicalTransaction(
            date=when,
            amount_minor=to_minor_units(amount, d.currency),
            currency=d.currency,
            description=description,
            merchant=merchant,
            format_key=d.key,
            line_number=line,
            subtype=subtype,
            standard_merchant=standard,
            category=category,
        )

    def _amount(self, mapped: Mapping[str, str]) -> Decimal:
        d = self.descriptor
        sep = d.decimal_separator
        match d.amount_convention:
            case AmountConvention.SINGLE_SIGNED:
                return to_decimal(mapped.get("amount", ""), decimal_separator=sep)
            case AmountConvention.TYPE_FLAG:
                magnitude = abs(to_decimal(mapped.get("amount", ""), decimal_separator=sep))
                flag = mapped.get("type", "").strip().upper()
                if flag in d.debit_markers:
                    return -magnitude
                if flag in d.credit_markers:
                    return magnitude
                raise ValueError(f"unrecognized debit/credit indicator: {flag!r}")
            case AmountConvention.DEBIT_CREDIT_COLUMNS:
                debit = mapped.get("debit", "")
                credit = mapped.get("credit", "")
                has_debit = not _is_empty_amount(debit, sep)
                has_credit = not _is_empty_amount(credit, sep)
                if has_debit and has_credit:
                    raise ValueError("both debit and credit columns are populated")
                if not has_debit and not has_credit:
                    raise ValueError("neither debit nor credit column is populated")
                if has_debit:
                    return -abs(to_decimal(debit, decimal_separator=sep))
                return abs(to_decimal(credit, decimal_separator=sep))
        raise ValueError(f"unsupported amount convention: {d.amount_convention!r}")

    def clean_merchant(self, description: str) -> tuple[str, str | None]:
        """Apply merchant rules in order; the first match wins."""

        for rule in self.descriptor.merchant_rules:
            merchant = rule.extract(description)
            if merchant is not None:
                return merchant or description, rule.subtype
        return description, None

    def standardize(self, merchant: str) -> tuple[str | None, str | None]:
        """Standard name and category from the merchant directory.

        Unknown merchants get a title-cased display name and no category;
        without a directory both stay ``None``.
        """

        if self.merchants is None:
            return None, None
        found = self.merchants.match(
            merchant, self.descriptor.country, threshold=self.merchant_threshold
        )
        if found is None:
            return display_name(merchant) or None, None
        return found.standard_name, found.category


__all__ = [
    "to_decimal",
    "to_minor_units",
    "FieldMapper",
    "TransactionNormalizer",
]
