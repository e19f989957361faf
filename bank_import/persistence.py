"""SQLAlchemy-backed store adapter.

The import core never writes; these helpers sit on either side of a call:

- :func:`load_fingerprint_snapshot` reads the stored fingerprints of an
  account into an immutable :class:`~bank_import.store.InMemoryFingerprintSource`
  handed to the pipeline;
- :func:`commit_import` writes a completed :class:`~bank_import.models.ImportResult`
  (run summary, accepted transactions and their fingerprints) inside the
  caller's transaction. Commit/rollback belongs to the caller (see
  ``bank_import.db.client.session_scope``).
"""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from .db.models import ImportedTransaction, ImportRun
from .logging_setup import get_logger
from .models import Fingerprint, ImportResult, StoredTransaction
from .store import InMemoryFingerprintSource

_LOG = get_logger("bank_import.persistence")

# Keep IN (...) lists comfortably below SQLite's bound-parameter limit.
_IN_CHUNK = 500


def _account_filter(source_account: str | None):
    if source_account is None:
        return ImportedTransaction.source_account.is_(None)
    return ImportedTransaction.source_account == source_account


def load_fingerprint_snapshot(
    session: Session, *, source_account: str | None = None
) -> InMemoryFingerprintSource:
    """Snapshot every stored fingerprint of ``source_account``."""

    stmt = select(ImportedTransaction).where(_account_filter(source_account))
    entries: list[tuple[Fingerprint, StoredTransaction]] = []
    for row in session.execute(stmt).scalars():
        entries.append(
            (
                Fingerprint(exact_key=row.exact_key, fuzzy_key=row.fuzzy_key),
                StoredTransaction(
                    date=row.date,
                    amount_minor=row.amount_minor,
                    description=row.description,
                    merchant=row.merchant,
                    exact_key=row.exact_key,
                    currency=row.currency_code,
                ),
            )
        )
    snapshot = InMemoryFingerprintSource(entries)
    _LOG.info("store:snapshot account=%s fingerprints=%d", source_account, len(snapshot))
    return snapshot


def _existing_exact_keys(
    session: Session, source_account: str | None, keys: Iterable[str]
) -> set[str]:
    wanted = list(dict.fromkeys(keys))
    found: set[str] = set()
    for start in range(0, len(wanted), _IN_CHUNK):
        chunk = wanted[start : start + _IN_CHUNK]
        stmt = select(ImportedTransaction.exact_key).where(
            _account_filter(source_account),
            ImportedTransaction.exact_key.in_(chunk),
        )
        found.update(session.execute(stmt).scalars())
    return found


def commit_import(
    session: Session,
    result: ImportResult,
    *,
    source_account: str | None = None,
    filename: str | None = None,
) -> int:
    """Insert the accepted batch of ``result``; return the number of rows written.

    Rows whose exact key is already stored for the account (a concurrent
    import got there first) are skipped, so replaying a result is harmless.
    """

    s = result.summary
    run = ImportRun(
        source_account=source_account,
        filename=filename,
        format_key=result.detected_format,
        confidence=result.confidence,
        rows_read=s.rows_read,
        rows_rejected=s.rows_rejected,
        accepted=s.accepted,
        exact_duplicates=s.exact_duplicate_count,
        probable_duplicates=len(s.probable_duplicates),
    )
    session.add(run)
    session.flush()

    existing = _existing_exact_keys(
        session, source_account, (fp.exact_key for fp in result.fingerprints)
    )
    written = 0
    for tx, fp in zip(result.accepted, result.fingerprints, strict=True):
        if fp.exact_key in existing:
            continue
        existing.add(fp.exact_key)
        session.add(
            ImportedTransaction(
                import_run_id=run.id,
                source_account=source_account,
                format_key=tx.format_key,
                exact_key=fp.exact_key,
                fuzzy_key=fp.fuzzy_key,
                date=tx.date,
                amount_minor=tx.amount_minor,
                currency_code=tx.currency,
                description=tx.description,
                merchant=tx.merchant,
                subtype=tx.subtype,
                standard_merchant=tx.standard_merchant,
                category=tx.category,
                line_number=tx.line_number,
            )
        )
        written += 1
    session.flush()
    _LOG.info(
        "store:commit account=%s run=%s written=%d skipped=%d",
        source_account,
        run.id,
        written,
        len(result.accepted) - written,
    )
    return written


__all__ = ["load_fingerprint_snapshot", "commit_import"]
