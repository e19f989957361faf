"""Import pipeline state machine.

One call walks ``Idle -> Validating -> Sniffing -> DetectingFormat -> Parsing
-> Mapping -> Deduplicating -> Completed``; any fatal error moves it to
``Failed`` instead. Every transition, and every chunk boundary inside the
row-oriented stages, is reported to the progress sink as ``(stage, percent)``
and is where cancellation is honoured.

Fatal conditions are raised (nothing partial is returned):

- ``InputError``: empty, binary, unreadable or oversized input;
- ``ParseError`` / ``ValidationError``: row rejections over the ceiling;
- ``CancelledError``: the caller's token fired;
- ``InvariantViolation``: anything unexpected, including stage misuse.

Row-level problems, low-confidence detection and probable duplicates are
recorded on the summary and the call still completes.

All per-call state lives on an :class:`ImportContext`; an
:class:`ImportPipeline` holds only settings, the catalog and the merchant
directory and can serve concurrent calls.
"""

from __future__ import annotations

import itertools
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import BinaryIO, TextIO

from .catalog import FormatCatalog, default_catalog
from .config import ImportSettings
from .detector import DetectionResult, FormatDetector
from .duplicates import DuplicateDetector
from .errors import (
    BankImportError,
    CancelledError,
    EncodingAmbiguous,
    FormatDetectionLowConfidence,
    InputError,
    InvariantViolation,
    ValidationError,
)
from .logging_setup import get_logger
from .merchants import MerchantDirectory, default_directory
from .models import (
    CanonicalTransaction,
    ExactDuplicate,
    Fingerprint,
    ImportResult,
    ImportSummary,
    ProbableDuplicate,
    RawRow,
    RowError,
)
from .normalizers import FieldMapper, TransactionNormalizer
from .parser import RowParser, check_error_ceiling
from .sniffer import ContentSniffer, DecodedContent, SniffResult, decode_content, looks_binary
from .store import EmptyFingerprintSource, FingerprintSource

_LOG = get_logger("bank_import.pipeline")


class ImportStage(StrEnum):
    IDLE = "idle"
    VALIDATING = "validating"
    SNIFFING = "sniffing"
    DETECTING_FORMAT = "detecting-format"
    PARSING = "parsing"
    MAPPING = "mapping"
    DEDUPLICATING = "deduplicating"
    COMPLETED = "completed"
    FAILED = "failed"


_FORWARD: tuple[ImportStage, ...] = (
    ImportStage.IDLE,
    ImportStage.VALIDATING,
    ImportStage.SNIFFING,
    ImportStage.DETECTING_FORMAT,
    ImportStage.PARSING,
    ImportStage.MAPPING,
    ImportStage.DEDUPLICATING,
    ImportStage.COMPLETED,
)

# (start, end) percent of each stage.
_PERCENT: dict[ImportStage, tuple[float, float]] = {
    ImportStage.VALIDATING: (0.0, 5.0),
    ImportStage.SNIFFING: (5.0, 10.0),
    ImportStage.DETECTING_FORMAT: (10.0, 15.0),
    ImportStage.PARSING: (15.0, 55.0),
    ImportStage.MAPPING: (55.0, 80.0),
    ImportStage.DEDUPLICATING: (80.0, 98.0),
    ImportStage.COMPLETED: (100.0, 100.0),
}

type ProgressSink = Callable[[ImportStage, float], None]
type ImportInput = bytes | bytearray | str | BinaryIO | TextIO


class CancellationToken:
    """Thread-safe cooperative cancellation flag."""

    __slots__ = ("_event",)

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(slots=True)
class ImportContext:
    """Everything one import call owns."""

    settings: ImportSettings
    catalog: FormatCatalog
    fingerprints: FingerprintSource
    merchants: MerchantDirectory | None = None
    progress: ProgressSink | None = None
    cancel_token: CancellationToken | None = None
    filename_hint: str | None = None
    stage: ImportStage = ImportStage.IDLE
    percent: float = 0.0
    warnings: list[str] = field(default_factory=list)

    def advance(self, stage: ImportStage) -> None:
        if self.stage in (ImportStage.COMPLETED, ImportStage.FAILED):
            raise InvariantViolation(f"import already finished in {self.stage.value}")
        if stage is not ImportStage.FAILED:
            expected = _FORWARD[_FORWARD.index(self.stage) + 1]
            if stage is not expected:
                raise InvariantViolation(
                    f"illegal transition {self.stage.value} -> {stage.value}"
                )
            self.percent = _PERCENT[stage][0]
        self.stage = stage
        _LOG.debug("import:stage stage=%s percent=%.1f", stage.value, self.percent)
        self._emit()

    def report(self, fraction: float) -> None:
        """Report progress ``fraction`` (0..1) through the current stage."""

        start, end = _PERCENT[self.stage]
        self.percent = start + (end - start) * max(0.0, min(1.0, fraction))
        self._emit()

    def _emit(self) -> None:
        if self.progress is not None:
            self.progress(self.stage, self.percent)

    def check_cancelled(self) -> None:
        if self.cancel_token is not None and self.cancel_token.cancelled:
            raise CancelledError("import cancelled by caller")

    def warn(self, warning: BankImportError) -> None:
        self.warnings.append(f"{type(warning).__name__}: {warning.message}")
        _LOG.info("import:warning %s %s", type(warning).__name__, warning.message)


def _read_input(content: ImportInput, max_bytes: int) -> bytes | str:
    if isinstance(content, bytes | bytearray):
        data: bytes | str = bytes(content)
    elif isinstance(content, str):
        data = content
    elif hasattr(content, "read"):
        try:
            data = content.read(max_bytes + 1)
        except (OSError, UnicodeDecodeError) as exc:
            raise InputError(f"input is unreadable: {exc}") from exc
        if not isinstance(data, bytes | str):
            raise InputError(f"stream returned {type(data).__name__}, expected bytes or str")
    else:
        raise InputError(f"unsupported input type: {type(content).__name__}")

    size = len(data) if isinstance(data, bytes) else len(data.encode("utf-8"))
    if size > max_bytes:
        raise InputError(f"input exceeds the {max_bytes}-byte limit")
    if size == 0:
        raise InputError("input is empty")
    return data


class ImportPipeline:
    def __init__(
        self,
        settings: ImportSettings | None = None,
        catalog: FormatCatalog | None = None,
        merchants: MerchantDirectory | None = None,
    ) -> None:
        self.settings = settings or ImportSettings()
        self.catalog = catalog if catalog is not None else default_catalog()
        self.merchants: MerchantDirectory | None = None
        if self.settings.match_merchants:
            self.merchants = merchants if merchants is not None else default_directory()

    def run(
        self,
        content: ImportInput,
        *,
        filename_hint: str | None = None,
        fingerprints: FingerprintSource | None = None,
        progress: ProgressSink | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> ImportResult:
        """Import one file.

        ``fingerprints`` is the read-only snapshot of the store (empty when
        omitted). Raises a :class:`~bank_import.errors.BankImportError`
        subclass carrying the failed stage when the call ends in ``Failed``.
        """

        ctx = ImportContext(
            settings=self.settings,
            catalog=self.catalog,
            merchants=self.merchants,
            fingerprints=fingerprints if fingerprints is not None else EmptyFingerprintSource(),
            progress=progress,
            cancel_token=cancel_token,
            filename_hint=filename_hint,
        )
        _LOG.info("import:start filename=%s", filename_hint)
        try:
            return self._run(ctx, content)
        except BankImportError as exc:
            self._fail(ctx, exc)
            raise
        except Exception as exc:
            err = InvariantViolation(f"unexpected {type(exc).__name__}: {exc}")
            self._fail(ctx, err)
            raise err from exc

    def _fail(self, ctx: ImportContext, exc: BankImportError) -> None:
        if exc.stage is None:
            exc.stage = ctx.stage.value
        _LOG.warning("import:failed stage=%s error=%s", exc.stage, exc.message)
        if ctx.stage is not ImportStage.FAILED:
            ctx.stage = ImportStage.FAILED
            try:
                ctx._emit()
            except Exception:
                # The original failure is what the caller must see.
                _LOG.exception("import:progress_sink_failed stage=%s", exc.stage)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _run(self, ctx: ImportContext, content: ImportInput) -> ImportResult:
        ctx.advance(ImportStage.VALIDATING)
        decoded = self._validate(ctx, content)
        ctx.check_cancelled()

        ctx.advance(ImportStage.SNIFFING)
        sniff = ContentSniffer(ctx.settings).analyze(decoded)
        if not sniff.consistent:
            ctx.warn(
                FormatDetectionLowConfidence(
                    "no delimiter gives a consistent field count; "
                    f"using best-effort {sniff.delimiter!r}"
                )
            )
        ctx.check_cancelled()

        ctx.advance(ImportStage.DETECTING_FORMAT)
        detection = self._detect(ctx, decoded, sniff)
        ctx.check_cancelled()

        ctx.advance(ImportStage.PARSING)
        header, rows, parse_errors = self._parse(ctx, decoded.text, sniff, detection)

        ctx.advance(ImportStage.MAPPING)
        transactions, validation_errors = self._map(ctx, detection, header, rows)
        total = len(rows) + len(parse_errors)
        rejected = sorted(parse_errors + validation_errors, key=lambda e: e.line_number)
        rate = len(rejected) / total if total else 0.0
        if rate > ctx.settings.error_ceiling:
            raise ValidationError(
                f"{len(rejected)} of {total} rows rejected "
                f"({rate:.1%} > {ctx.settings.error_ceiling:.0%} ceiling)",
                error_rate=rate,
            )

        ctx.advance(ImportStage.DEDUPLICATING)
        accepted, fingerprints, exact, probable = self._dedupe(ctx, transactions)

        summary = ImportSummary(
            rows_read=total,
            rows_parsed=len(rows),
            rows_rejected=len(rejected),
            rejected=tuple(rejected),
            accepted=len(accepted),
            exact_duplicates=tuple(exact),
            probable_duplicates=tuple(probable),
            format_key=detection.descriptor.key,
            confidence=detection.confidence,
            format_recognized=detection.recognized,
            encoding=sniff.encoding,
            delimiter=sniff.delimiter if sniff.consistent else detection.descriptor.delimiter,
            warnings=tuple(ctx.warnings),
        )
        result = ImportResult(
            accepted=tuple(accepted),
            fingerprints=tuple(fingerprints),
            summary=summary,
            detected_format=detection.descriptor.key,
            confidence=detection.confidence,
        )
        ctx.advance(ImportStage.COMPLETED)
        _LOG.info(
            "import:done format=%s read=%d rejected=%d accepted=%d exact=%d probable=%d",
            summary.format_key,
            summary.rows_read,
            summary.rows_rejected,
            summary.accepted,
            summary.exact_duplicate_count,
            len(summary.probable_duplicates),
        )
        return result

    def _validate(self, ctx: ImportContext, content: ImportInput) -> DecodedContent:
        data = _read_input(content, ctx.settings.max_file_bytes)
        if isinstance(data, bytes) and looks_binary(data):
            raise InputError("input looks like a binary file")
        decoded = decode_content(data)
        if not decoded.text.strip():
            raise InputError("input is empty")
        if "\x00" in decoded.text:
            raise InputError("input contains NUL characters")
        if decoded.ambiguous:
            ctx.warn(
                EncodingAmbiguous(
                    f"content is not valid UTF-8; decoded as {decoded.encoding}"
                )
            )
        return decoded

    def _detect(
        self, ctx: ImportContext, decoded: DecodedContent, sniff: SniffResult
    ) -> DetectionResult:
        head_lines = ctx.settings.sniff_sample_lines + ctx.settings.max_preamble_lines + 1
        head = "\n".join(decoded.text.splitlines()[:head_lines])
        detection = FormatDetector(ctx.catalog, ctx.settings).detect(
            sniff, content_sample=head, filename_hint=ctx.filename_hint
        )
        if not detection.recognized:
            ctx.warn(
                FormatDetectionLowConfidence(
                    f"no catalog format matched (best confidence {detection.confidence:.2f}); "
                    "using columns inferred from the file"
                )
            )
        return detection

    def _parse(
        self,
        ctx: ImportContext,
        text: str,
        sniff: SniffResult,
        detection: DetectionResult,
    ) -> tuple[tuple[str, ...] | None, list[RawRow], list[RowError]]:
        descriptor = detection.descriptor
        if sniff.consistent:
            delimiter, skip_rows = sniff.delimiter, sniff.preamble_lines
        else:
            delimiter = descriptor.delimiter
            skip_rows = descriptor.skip_rows if detection.recognized else 0
        has_header = descriptor.has_header
        parser = RowParser(
            delimiter,
            skip_rows=skip_rows,
            has_header=has_header,
            expected_fields=sniff.field_count if sniff.consistent and not has_header else None,
            error_ceiling=ctx.settings.error_ceiling,
        )
        header, stream = parser.open(text)
        total_lines = max(1, text.count("\n") + 1)

        rows: list[RawRow] = []
        errors: list[RowError] = []
        for chunk in itertools.batched(stream, ctx.settings.chunk_size):
            for item in chunk:
                if isinstance(item, RowError):
                    errors.append(item)
                else:
                    rows.append(item)
            ctx.check_cancelled()
            ctx.report(chunk[-1].line_number / total_lines)

        check_error_ceiling(len(errors), len(rows) + len(errors), ctx.settings.error_ceiling)
        _LOG.debug("import:parsed rows=%d errors=%d", len(rows), len(errors))
        return header, rows, errors

    def _map(
        self,
        ctx: ImportContext,
        detection: DetectionResult,
        header: tuple[str, ...] | None,
        rows: list[RawRow],
    ) -> tuple[list[CanonicalTransaction], list[RowError]]:
        mapper = FieldMapper(detection.descriptor, header)
        if mapper.missing:
            _LOG.info("import:unmapped fields=%s", ",".join(mapper.missing))
        normalizer = TransactionNormalizer(
            detection.descriptor,
            mapper,
            merchants=ctx.merchants,
            merchant_threshold=ctx.settings.merchant_match_threshold,
        )

        out: list[CanonicalTransaction] = []
        errors: list[RowError] = []
        done = 0
        for chunk in itertools.batched(rows, ctx.settings.chunk_size):
            for row in chunk:
                try:
                    out.append(normalizer.normalize(row))
                except ValidationError as exc:
                    errors.append(
                        RowError(line_number=row.line_number, reason=exc.message, kind="validation")
                    )
            done += len(chunk)
            ctx.check_cancelled()
            ctx.report(done / len(rows))
        return out, errors

    def _dedupe(
        self, ctx: ImportContext, transactions: Iterable[CanonicalTransaction]
    ) -> tuple[
        list[CanonicalTransaction],
        list[Fingerprint],
        list[ExactDuplicate],
        list[ProbableDuplicate],
    ]:
        detector = DuplicateDetector(ctx.fingerprints, ctx.settings)
        batch = list(transactions)
        accepted: list[CanonicalTransaction] = []
        fingerprints: list[Fingerprint] = []
        exact: list[ExactDuplicate] = []
        probable: list[ProbableDuplicate] = []
        done = 0
        for chunk in itertools.batched(batch, ctx.settings.chunk_size):
            outcome = detector.classify_batch(chunk)
            accepted.extend(outcome.accepted)
            fingerprints.extend(outcome.fingerprints)
            exact.extend(outcome.exact_duplicates)
            probable.extend(outcome.probable_duplicates)
            done += len(chunk)
            ctx.check_cancelled()
            ctx.report(done / len(batch))
        return accepted, fingerprints, exact, probable


__all__ = [
    "ImportStage",
    "ProgressSink",
    "ImportInput",
    "CancellationToken",
    "ImportContext",
    "ImportPipeline",
]
