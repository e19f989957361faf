"""Score catalog descriptors against a sniffed sample.

Scoring (per descriptor, evaluated in registration order):

- ``+10`` per identifier found in the sample content, ``+5`` per identifier
  found in the filename hint (case-insensitive);
- ``+20`` x the fraction of the descriptor's source columns present among the
  header cells (exact or substring); index columns count when they fall
  inside the field count of a headerless file;
- ``+15`` when the declared sample header equals the file header after
  case/whitespace normalization;
- ``+5`` x the fraction of sample date cells parsing under the descriptor's
  date convention.

Confidence is the score divided by the maximum the descriptor could attain
for this input. The strictly highest score wins (earlier registration wins
ties) and is accepted when its confidence clears the configured threshold;
otherwise a generic descriptor is inferred from header keywords or content.
"""

from __future__ import annotations

import itertools
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from .catalog import (
    DATE_FORMATS,
    DEFAULT_CREDIT_MARKERS,
    DEFAULT_DEBIT_MARKERS,
    AmountConvention,
    BankFormatDescriptor,
    ColumnRef,
    FormatCatalog,
    default_catalog,
    looks_like_date,
    parse_date,
)
from .config import ImportSettings
from .logging_setup import get_logger
from .sniffer import SniffResult, is_numeric_or_date

_LOG = get_logger("bank_import.detector")

IDENTIFIER_CONTENT_WEIGHT = 10.0
IDENTIFIER_FILENAME_WEIGHT = 5.0
HEADER_FIELDS_WEIGHT = 20.0
SAMPLE_HEADER_WEIGHT = 15.0
DATE_PARSE_WEIGHT = 5.0

_DATE_SAMPLE_SIZE = 5
_WS_RE = re.compile(r"\s+")

GENERIC_KEY = "GENERIC"

# Header keywords per canonical field, several languages. Matched exactly
# first, then as substrings; earlier fields claim a cell first.
_HEADER_KEYWORDS: Mapping[str, tuple[str, ...]] = {
    "date": (
        "date",
        "transaction date",
        "booking date",
        "posted date",
        "posting date",
        "datum",
        "buchungstag",
        "buchungsdatum",
        "valuta",
        "fecha",
        "data",
        "date opération",
    ),
    "debit": (
        "debit",
        "withdrawal",
        "withdrawals",
        "paid out",
        "money out",
        "lastschrift",
        "belastung",
        "soll",
        "débit",
    ),
    "credit": (
        "credit",
        "deposit",
        "deposits",
        "paid in",
        "money in",
        "gutschrift",
        "haben",
        "crédit",
    ),
    "type": ("af bij", "dr/cr", "debit/credit", "transaction type", "type", "sens"),
    "amount": (
        "amount",
        "betrag",
        "bedrag",
        "montant",
        "importe",
        "importo",
        "umsatz",
        "value",
        "sum",
    ),
    "balance": ("balance", "running bal", "saldo", "solde", "kontostand"),
    "description": (
        "description",
        "details",
        "narrative",
        "payee",
        "merchant",
        "verwendungszweck",
        "buchungstext",
        "omschrijving",
        "libellé",
        "beschreibung",
        "concepto",
        "memo",
        "text",
        "name",
    ),
}


def normalize_header_cell(cell: str) -> str:
    return _WS_RE.sub(" ", cell).strip().casefold()


@dataclass(frozen=True, slots=True)
class ScoredFormat:
    key: str
    score: float
    max_score: float

    @property
    def confidence(self) -> float:
        if self.max_score <= 0:
            return 0.0
        return min(self.score / self.max_score, 1.0)


@dataclass(frozen=True, slots=True)
class DetectionResult:
    descriptor: BankFormatDescriptor
    confidence: float
    score: float
    recognized: bool
    ranking: tuple[ScoredFormat, ...] = ()


def resolve_column(header: Sequence[str], ref: ColumnRef) -> int | None:
    """Index of ``ref`` in ``header`` (exact match first, then substring)."""

    if isinstance(ref, int):
        return ref
    wanted = normalize_header_cell(ref)
    cells = [normalize_header_cell(c) for c in header]
    for i, c in enumerate(cells):
        if c == wanted:
            return i
    for i, c in enumerate(cells):
        if wanted and wanted in c:
            return i
    return None


class FormatDetector:
    def __init__(
        self,
        catalog: FormatCatalog | None = None,
        settings: ImportSettings | None = None,
    ) -> None:
        self._catalog = catalog if catalog is not None else default_catalog()
        self._settings = settings or ImportSettings()

    @property
    def catalog(self) -> FormatCatalog:
        return self._catalog

    def detect(
        self,
        sniff: SniffResult,
        *,
        content_sample: str = "",
        filename_hint: str | None = None,
        header: Sequence[str] | None = None,
        sample_rows: Sequence[Sequence[str]] | None = None,
    ) -> DetectionResult:
        """Pick the best descriptor for the sniffed file.

        ``header`` defaults to the first sampled record and ``sample_rows`` to
        the whole sniffed sample; headerless descriptors are scored against
        every sampled row, headered ones against the rows after the header.
        """

        rows = list(sample_rows if sample_rows is not None else sniff.sample)
        first = list(header) if header is not None else (rows[0] if rows else [])
        content = content_sample.casefold()
        hint = (filename_hint or "").casefold()

        best: ScoredFormat | None = None
        ranking: list[ScoredFormat] = []
        for descriptor in self._catalog:
            scored = self.score(descriptor, sniff, first, rows, content, hint)
            ranking.append(scored)
            if best is None or scored.score > best.score:
                best = scored

        ranking.sort(key=lambda s: (-s.score, self._catalog.position(s.key)))
        top = tuple(ranking[:5])

        if best is not None and best.confidence >= self._settings.detection_threshold:
            _LOG.info(
                "detect:match key=%s score=%.2f confidence=%.3f",
                best.key,
                best.score,
                best.confidence,
            )
            return DetectionResult(
                descriptor=self._catalog[best.key],
                confidence=best.confidence,
                score=best.score,
                recognized=True,
                ranking=top,
            )

        generic = infer_generic_descriptor(sniff, first, rows, self._settings)
        confidence = best.confidence if best is not None else 0.0
        score = best.score if best is not None else 0.0
        _LOG.info(
            "detect:unrecognized best=%s confidence=%.3f fields=%s",
            best.key if best is not None else None,
            confidence,
            ",".join(f"{k}={v}" for k, v in generic.fields),
        )
        return DetectionResult(
            descriptor=generic,
            confidence=confidence,
            score=score,
            recognized=False,
            ranking=top,
        )

    def score(
        self,
        descriptor: BankFormatDescriptor,
        sniff: SniffResult,
        header: Sequence[str],
        rows: Sequence[Sequence[str]],
        content: str,
        hint: str,
    ) -> ScoredFormat:
        score = 0.0
        max_score = 0.0

        for identifier in descriptor.identifiers:
            ident = identifier.casefold()
            max_score += IDENTIFIER_CONTENT_WEIGHT
            if ident in content:
                score += IDENTIFIER_CONTENT_WEIGHT
            if hint:
                max_score += IDENTIFIER_FILENAME_WEIGHT
                if ident in hint:
                    score += IDENTIFIER_FILENAME_WEIGHT

        max_score += HEADER_FIELDS_WEIGHT
        score += HEADER_FIELDS_WEIGHT * self._field_fraction(descriptor, sniff, header)

        if descriptor.sample_header and descriptor.has_header:
            max_score += SAMPLE_HEADER_WEIGHT
            expected = [
                normalize_header_cell(c)
                for c in descriptor.sample_header.split(descriptor.delimiter)
            ]
            if expected == [normalize_header_cell(c) for c in header]:
                score += SAMPLE_HEADER_WEIGHT

        max_score += DATE_PARSE_WEIGHT
        score += DATE_PARSE_WEIGHT * self._date_fraction(descriptor, header, rows)

        return ScoredFormat(key=descriptor.key, score=score, max_score=max_score)

    @staticmethod
    def _field_fraction(
        descriptor: BankFormatDescriptor, sniff: SniffResult, header: Sequence[str]
    ) -> float:
        if not descriptor.fields:
            return 0.0
        cells = [normalize_header_cell(c) for c in header]
        found = 0
        for _, ref in descriptor.fields:
            if isinstance(ref, int):
                if not sniff.has_header and ref < sniff.field_count:
                    found += 1
                continue
            name = normalize_header_cell(ref)
            if any(c == name or (name and name in c) for c in cells):
                found += 1
        return found / len(descriptor.fields)

    @staticmethod
    def _date_fraction(
        descriptor: BankFormatDescriptor,
        header: Sequence[str],
        rows: Sequence[Sequence[str]],
    ) -> float:
        ref = descriptor.source("date")
        if ref is None:
            return 0.0
        col = resolve_column(header, ref) if descriptor.has_header else ref
        if not isinstance(col, int):
            return 0.0
        data = rows[1:] if descriptor.has_header else rows
        cells = [r[col] for r in data[:_DATE_SAMPLE_SIZE] if col < len(r) and r[col].strip()]
        if not cells:
            return 0.0
        parsed = 0
        for cell in cells:
            try:
                parse_date(cell, descriptor.date_format)
            except ValueError:
                continue
            parsed += 1
        return parsed / len(cells)


# ---------------------------------------------------------------------------
# Generic descriptor
# ---------------------------------------------------------------------------


def _keyword_columns(header: Sequence[str]) -> dict[str, int]:
    cells = [normalize_header_cell(c) for c in header]
    claimed: dict[str, int] = {}
    taken: set[int] = set()
    for exact in (True, False):
        for canonical, keywords in _HEADER_KEYWORDS.items():
            if canonical in claimed:
                continue
            for i, cell in enumerate(cells):
                if i in taken or not cell:
                    continue
                hit = cell in keywords if exact else any(k in cell for k in keywords)
                if hit:
                    claimed[canonical] = i
                    taken.add(i)
                    break
    return claimed


def _column(rows: Sequence[Sequence[str]], col: int) -> list[str]:
    return [r[col] for r in rows if col < len(r) and r[col].strip()]


def _content_columns(rows: Sequence[Sequence[str]], width: int) -> dict[str, int]:
    found: dict[str, int] = {}
    for col in range(width):
        cells = _column(rows, col)
        if cells and sum(looks_like_date(c) for c in cells) * 2 > len(cells):
            found["date"] = col
            break
    for col in range(width):
        if col in found.values():
            continue
        cells = _column(rows, col)
        if cells and sum(is_numeric_or_date(c) for c in cells) * 2 > len(cells):
            found["amount"] = col
            break
    best_len = -1.0
    for col in range(width):
        if col in found.values():
            continue
        cells = _column(rows, col)
        text = [c for c in cells if not is_numeric_or_date(c)]
        if not text:
            continue
        avg = sum(len(c) for c in text) / len(text)
        if avg > best_len:
            best_len = avg
            found["description"] = col
    return found


def _pick_date_format(cells: Sequence[str]) -> str:
    if not cells:
        return "YYYY-MM-DD"
    best_token, best_hits = "YYYY-MM-DD", -1
    for token in DATE_FORMATS:
        hits = 0
        for cell in cells:
            try:
                parse_date(cell, token)
            except ValueError:
                continue
            hits += 1
        if hits == len(cells):
            return token
        if hits > best_hits:
            best_token, best_hits = token, hits
    return best_token


_DECIMAL_COMMA_RE = re.compile(r"\d,\d{1,2}\s*-?\)?$")


def _looks_like_markers(cells: Sequence[str]) -> bool:
    markers = set(DEFAULT_DEBIT_MARKERS) | set(DEFAULT_CREDIT_MARKERS)
    return bool(cells) and sum(c.strip().upper() in markers for c in cells) * 2 > len(cells)


def infer_generic_descriptor(
    sniff: SniffResult,
    header: Sequence[str],
    rows: Sequence[Sequence[str]],
    settings: ImportSettings,
) -> BankFormatDescriptor:
    """Best-effort descriptor for a file no catalog entry matched.

    Header keywords are tried first; when they do not yield a date column
    the columns are guessed from cell content. Every field is mapped by
    index.
    """

    keyword_cols = _keyword_columns(header) if header else {}
    has_header = sniff.has_header or len(keyword_cols) >= 2
    data = list(rows[1:] if has_header else rows)
    width = max([sniff.field_count, *(len(r) for r in rows)] or [0])

    cols = keyword_cols if has_header and "date" in keyword_cols else {}
    if not cols:
        cols = _content_columns(data, width)

    convention = AmountConvention.SINGLE_SIGNED
    if "amount" not in cols and "debit" in cols and "credit" in cols:
        convention = AmountConvention.DEBIT_CREDIT_COLUMNS
    elif "amount" in cols and "type" in cols and _looks_like_markers(_column(data, cols["type"])):
        convention = AmountConvention.TYPE_FLAG

    # Every required field gets a column, guessing unused indices in order.
    required = {
        AmountConvention.SINGLE_SIGNED: ("date", "amount", "description"),
        AmountConvention.TYPE_FLAG: ("date", "amount", "type", "description"),
        AmountConvention.DEBIT_CREDIT_COLUMNS: ("date", "debit", "credit", "description"),
    }[convention]
    used = set(cols.values())
    spare = (i for i in itertools.count() if i not in used)
    for name in required:
        if name not in cols:
            cols[name] = next(spare)

    keep = set(required) | {"balance"}
    fields = tuple((name, cols[name]) for name in sorted(cols, key=cols.__getitem__) if name in keep)

    date_cells = _column(data, cols["date"])[:_DATE_SAMPLE_SIZE * 2]
    amount_col = cols.get("amount", cols.get("debit"))
    amount_cells = _column(data, amount_col) if amount_col is not None else []
    decimal = (
        ","
        if sniff.delimiter != "," and any(_DECIMAL_COMMA_RE.search(c) for c in amount_cells)
        else "."
    )

    return BankFormatDescriptor(
        key=GENERIC_KEY,
        institution="Unrecognized format",
        country="ZZ",
        currency=settings.default_currency,
        date_format=_pick_date_format(date_cells),
        fields=fields,
        identifiers=(GENERIC_KEY.casefold(),),
        encoding=sniff.encoding,
        delimiter=sniff.delimiter,
        has_header=has_header,
        skip_rows=sniff.preamble_lines,
        amount_convention=convention,
        decimal_separator=decimal,
    )


__all__ = [
    "GENERIC_KEY",
    "ScoredFormat",
    "DetectionResult",
    "FormatDetector",
    "infer_generic_descriptor",
    "normalize_header_cell",
    "resolve_column",
]
