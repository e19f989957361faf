"""Encoding, delimiter and header inference from raw file content.

Nothing here consults the format catalog: the sniffer works from bytes and
characters alone so that the detector can score descriptors against a
correctly split sample.

Delimiter rule
--------------
For each candidate (``,`` ``;`` tab ``|``) the first non-blank records are
split with :mod:`csv`. A candidate is consistent when every record has the
same field count once empty trailing cells are taken into account; the
consistent candidate with the highest count wins, ties going to the earlier
candidate. A count below 2 never counts as consistent.
"""

from __future__ import annotations

import codecs
import csv
import io
import re
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass

from .catalog import looks_like_date
from .config import ImportSettings
from .logging_setup import get_logger

_LOG = get_logger("bank_import.sniffer")

DELIMITER_CANDIDATES: tuple[str, ...] = (",", ";", "\t", "|")

# Longest BOMs first: the UTF-32 LE mark starts with the UTF-16 LE one.
_BOMS: tuple[tuple[bytes, str, str], ...] = (
    (codecs.BOM_UTF32_LE, "utf-32-le", "utf-32-le"),
    (codecs.BOM_UTF32_BE, "utf-32-be", "utf-32-be"),
    (codecs.BOM_UTF8, "utf-8", "utf-8"),
    (codecs.BOM_UTF16_LE, "utf-16-le", "utf-16-le"),
    (codecs.BOM_UTF16_BE, "utf-16-be", "utf-16-be"),
)

_NUMERIC_RE = re.compile(
    r"""^
    [(+\-]?\s*                # leading sign or opening parenthesis
    (?:[$€£¥]|[A-Z]{3}\s)?\s* # currency symbol or code
    [+\-]?\d[\d,.'\s]*        # digits with grouping/decimal separators
    \)?\s*-?\s*               # closing parenthesis or trailing minus
    (?:CR|DR)?$               # credit/debit suffix
    """,
    re.VERBOSE | re.IGNORECASE,
)


@dataclass(frozen=True, slots=True)
class DecodedContent:
    text: str
    encoding: str
    bom: str | None = None
    ambiguous: bool = False


@dataclass(frozen=True, slots=True)
class SniffResult:
    """What the sniffer inferred about one file.

    ``sample`` holds the first records after the preamble, split with the
    chosen delimiter; the detector scores against it.
    """

    encoding: str
    delimiter: str
    has_header: bool
    field_count: int
    consistent: bool
    preamble_lines: int = 0
    encoding_ambiguous: bool = False
    bom: str | None = None
    sample: tuple[tuple[str, ...], ...] = ()


def looks_binary(data: bytes) -> bool:
    """True for NUL-bearing content without a UTF-16/32 byte-order mark."""

    if any(data.startswith(bom) for bom, _, _ in _BOMS):
        return False
    return b"\x00" in data[:8192]


def decode_content(content: bytes | str) -> DecodedContent:
    """Decode ``content`` following the byte-order-mark / ASCII / UTF-8 rule.

    Bytes that are neither ASCII nor valid UTF-8 are decoded as Latin-1 and
    flagged ambiguous; decoding itself never fails.
    """

    if isinstance(content, str):
        if content.startswith("\ufeff"):
            return DecodedContent(text=content[1:], encoding="utf-8", bom="utf-8")
        return DecodedContent(text=content, encoding="utf-8")

    for bom, codec, label in _BOMS:
        if content.startswith(bom):
            return DecodedContent(
                text=content[len(bom) :].decode(codec, errors="replace"),
                encoding=codec,
                bom=label,
            )

    if content.isascii():
        return DecodedContent(text=content.decode("ascii"), encoding="utf-8")
    try:
        return DecodedContent(text=content.decode("utf-8"), encoding="utf-8")
    except UnicodeDecodeError:
        return DecodedContent(text=content.decode("latin-1"), encoding="latin-1", ambiguous=True)


def is_numeric_or_date(cell: str) -> bool:
    s = cell.strip()
    if not s:
        return False
    return bool(_NUMERIC_RE.match(s)) or looks_like_date(s)


def _is_blank(record: Sequence[str]) -> bool:
    return all(not c.strip() for c in record)


def _split(text: str, delimiter: str, limit: int) -> list[list[str]]:
    reader = csv.reader(io.StringIO(text, newline=""), delimiter=delimiter)
    records: list[list[str]] = []
    try:
        for record in reader:
            if _is_blank(record):
                continue
            records.append(record)
            if len(records) >= limit:
                break
    except csv.Error as exc:
        # Sampling stops at the first unsplittable record; the parser reports it.
        _LOG.debug("sniff:sample_truncated delim=%r error=%s", delimiter, exc)
    return records


def _effective_width(record: Sequence[str]) -> int:
    n = len(record)
    while n > 0 and not record[n - 1].strip():
        n -= 1
    return n


def _consistent_width(records: Sequence[Sequence[str]]) -> int | None:
    """Common field count of ``records`` or ``None`` when inconsistent.

    A record wider than the others only by empty trailing cells, or narrower
    only because its trailing cells are empty, still agrees.
    """

    if not records:
        return None
    raw_min = min(len(r) for r in records)
    eff_max = max(_effective_width(r) for r in records)
    if eff_max > raw_min or raw_min < 2:
        return None
    return raw_min


def _narrow_preamble(skipped: Sequence[Sequence[str]], width: int) -> bool:
    """Account-information lines carry fewer fields than the table below them.

    A skipped record as wide as the table is a header or a data row, so it
    cannot be preamble.
    """

    return all(_effective_width(r) < width for r in skipped)


def detect_header(records: Sequence[Sequence[str]]) -> bool:
    """Row 1 is a header when most of its cells are text and most of row 2's are not."""

    if not records:
        return False
    first = records[0]
    if not first:
        return False
    textual = sum(1 for c in first if not is_numeric_or_date(c))
    if textual * 2 <= len(first):
        return False
    if len(records) < 2:
        return True
    aligned = [c for c in records[1][: len(first)] if c.strip()]
    if not aligned:
        return False
    numeric = sum(1 for c in aligned if is_numeric_or_date(c))
    return numeric * 2 > len(aligned)


class ContentSniffer:
    """Infer encoding, delimiter and header presence for one file."""

    def __init__(self, settings: ImportSettings | None = None) -> None:
        self._settings = settings or ImportSettings()

    def sniff(self, content: bytes | str) -> SniffResult:
        return self.analyze(decode_content(content))

    def analyze(self, decoded: DecodedContent) -> SniffResult:
        s = self._settings
        limit = s.sniff_sample_lines + s.max_preamble_lines
        text = decoded.text

        per_candidate = {d: _split(text, d, limit) for d in DELIMITER_CANDIDATES}

        for preamble in range(s.max_preamble_lines + 1):
            best: tuple[str, int] | None = None
            for delim in DELIMITER_CANDIDATES:
                records = per_candidate[delim][preamble : preamble + s.sniff_sample_lines]
                width = _consistent_width(records)
                if width is None or not _narrow_preamble(per_candidate[delim][:preamble], width):
                    continue
                if best is None or width > best[1]:
                    best = (delim, width)
            if best is not None:
                delim, width = best
                sample = per_candidate[delim][preamble : preamble + s.sniff_sample_lines]
                result = self._result(decoded, delim, width, True, preamble, sample)
                _LOG.debug(
                    "sniff:delimiter delim=%r width=%d preamble=%d header=%s",
                    delim,
                    width,
                    preamble,
                    result.has_header,
                )
                return result

        delim, width = self._best_effort(per_candidate)
        sample = per_candidate[delim][: s.sniff_sample_lines]
        _LOG.info("sniff:inconsistent delim=%r width=%d", delim, width)
        return self._result(decoded, delim, width, False, 0, sample)

    def _best_effort(self, per_candidate: dict[str, list[list[str]]]) -> tuple[str, int]:
        best: tuple[str, int, int] | None = None  # (delimiter, width, rows at width)
        for delim in DELIMITER_CANDIDATES:
            records = per_candidate[delim][: self._settings.sniff_sample_lines]
            if not records:
                continue
            width, rows = Counter(len(r) for r in records).most_common(1)[0]
            if width < 2:
                continue
            if best is None or rows > best[2]:
                best = (delim, width, rows)
        if best is None:
            return ",", 1
        return best[0], best[1]

    @staticmethod
    def _result(
        decoded: DecodedContent,
        delimiter: str,
        width: int,
        consistent: bool,
        preamble: int,
        sample: Sequence[Sequence[str]],
    ) -> SniffResult:
        return SniffResult(
            encoding=decoded.encoding,
            delimiter=delimiter,
            has_header=detect_header(sample),
            field_count=width,
            consistent=consistent,
            preamble_lines=preamble,
            encoding_ambiguous=decoded.ambiguous,
            bom=decoded.bom,
            sample=tuple(tuple(r) for r in sample),
        )


__all__ = [
    "DELIMITER_CANDIDATES",
    "DecodedContent",
    "SniffResult",
    "ContentSniffer",
    "decode_content",
    "detect_header",
    "is_numeric_or_date",
    "looks_binary",
]
