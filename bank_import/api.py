"""Public API for the ``bank_import`` package.

This module is the stable import surface. Each call builds its own
:class:`~bank_import.pipeline.ImportPipeline` run; nothing is shared between
calls except the (immutable) format catalog and merchant directory. Store access stays with the
caller: pass a fingerprint snapshot in, commit the returned result
afterwards (see ``bank_import.persistence``).
"""

from __future__ import annotations

from pathlib import Path

from .catalog import FormatCatalog
from .config import ImportSettings
from .detector import DetectionResult, FormatDetector
from .errors import InputError
from .merchants import MerchantDirectory
from .models import ImportResult
from .pipeline import CancellationToken, ImportInput, ImportPipeline, ProgressSink
from .sniffer import ContentSniffer, SniffResult, decode_content
from .store import FingerprintSource


def import_transactions(
    content: ImportInput,
    *,
    filename_hint: str | None = None,
    fingerprints: FingerprintSource | None = None,
    settings: ImportSettings | None = None,
    catalog: FormatCatalog | None = None,
    merchants: MerchantDirectory | None = None,
    progress: ProgressSink | None = None,
    cancel_token: CancellationToken | None = None,
) -> ImportResult:
    """Import one bank CSV export.

    Input
    -----
    content:
        Raw bytes, already-decoded text, or a readable stream.
    filename_hint:
        Original file name; contributes to format detection.
    fingerprints:
        Read-only snapshot of previously imported transactions. Omit for an
        empty store.
    merchants:
        Merchant directory for standard names and categories; the packaged
        one when omitted and ``settings.match_merchants`` is on.

    Output
    ------
    An :class:`~bank_import.models.ImportResult` whose ``accepted``
    transactions and ``fingerprints`` are ready to commit.

    Raises
    ------
    bank_import.errors.BankImportError
        A subclass naming the failure (input, parse, validation,
        cancellation, internal) with ``.stage`` set.
    """

    pipeline = ImportPipeline(settings=settings, catalog=catalog, merchants=merchants)
    return pipeline.run(
        content,
        filename_hint=filename_hint,
        fingerprints=fingerprints,
        progress=progress,
        cancel_token=cancel_token,
    )


def _read_path(path: Path, settings: ImportSettings) -> bytes:
    try:
        size = path.stat().st_size
        if size > settings.max_file_bytes:
            raise InputError(f"{path.name} exceeds the {settings.max_file_bytes}-byte limit")
        return path.read_bytes()
    except OSError as exc:
        raise InputError(f"cannot read {path}: {exc.strerror or exc}") from exc


def import_path(
    path: str | Path,
    *,
    fingerprints: FingerprintSource | None = None,
    settings: ImportSettings | None = None,
    catalog: FormatCatalog | None = None,
    merchants: MerchantDirectory | None = None,
    progress: ProgressSink | None = None,
    cancel_token: CancellationToken | None = None,
) -> ImportResult:
    """Import the file at ``path``; its name is used as the filename hint."""

    p = Path(path)
    settings = settings or ImportSettings()
    try:
        data = _read_path(p, settings)
    except InputError as exc:
        exc.stage = "validating"
        raise
    return import_transactions(
        data,
        filename_hint=p.name,
        fingerprints=fingerprints,
        settings=settings,
        catalog=catalog,
        merchants=merchants,
        progress=progress,
        cancel_token=cancel_token,
    )


def sniff_content(content: bytes | str, *, settings: ImportSettings | None = None) -> SniffResult:
    return ContentSniffer(settings).sniff(content)


def detect_format(
    content: bytes | str,
    *,
    filename_hint: str | None = None,
    settings: ImportSettings | None = None,
    catalog: FormatCatalog | None = None,
) -> tuple[SniffResult, DetectionResult]:
    """Sniff ``content`` and rank it against the catalog without importing."""

    settings = settings or ImportSettings()
    decoded = decode_content(content)
    sniff = ContentSniffer(settings).analyze(decoded)
    head_lines = settings.sniff_sample_lines + settings.max_preamble_lines + 1
    head = "\n".join(decoded.text.splitlines()[:head_lines])
    detection = FormatDetector(catalog, settings).detect(
        sniff, content_sample=head, filename_hint=filename_hint
    )
    return sniff, detection


__all__ = [
    "import_transactions",
    "import_path",
    "sniff_content",
    "detect_format",
]
