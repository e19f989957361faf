"""Read-only fingerprint sources consulted during deduplication.

The pipeline only ever reads from a :class:`FingerprintSource`; writing the
accepted batch back is the store collaborator's job (see
:mod:`bank_import.persistence` for the SQLAlchemy one).
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from types import MappingProxyType
from typing import Protocol, runtime_checkable

from .models import Fingerprint, ImportResult, StoredTransaction


@runtime_checkable
class FingerprintSource(Protocol):
    def has_exact_fingerprint(self, key: str) -> bool: ...

    def existing_fuzzy_candidates(self, key: str) -> Sequence[StoredTransaction]: ...


class EmptyFingerprintSource:
    """A store with nothing in it (first import of an account)."""

    def has_exact_fingerprint(self, key: str) -> bool:
        return False

    def existing_fuzzy_candidates(self, key: str) -> Sequence[StoredTransaction]:
        return ()


class InMemoryFingerprintSource:
    """Immutable snapshot of stored fingerprints.

    Built once before an import call; the copies taken at construction keep
    the snapshot stable even if the caller keeps mutating its own data.
    """

    __slots__ = ("_exact", "_fuzzy")

    def __init__(self, entries: Iterable[tuple[Fingerprint, StoredTransaction]] = ()) -> None:
        exact: set[str] = set()
        fuzzy: dict[str, list[StoredTransaction]] = {}
        for fp, stored in entries:
            exact.add(fp.exact_key)
            fuzzy.setdefault(fp.fuzzy_key, []).append(stored)
        self._exact = frozenset(exact)
        self._fuzzy: Mapping[str, tuple[StoredTransaction, ...]] = MappingProxyType(
            {k: tuple(v) for k, v in fuzzy.items()}
        )

    @classmethod
    def from_result(cls, result: ImportResult) -> InMemoryFingerprintSource:
        """Snapshot of a store that has just committed ``result``."""

        return cls(
            (
                fp,
                StoredTransaction(
                    date=tx.date,
                    amount_minor=tx.amount_minor,
                    description=tx.description,
                    merchant=tx.merchant,
                    exact_key=fp.exact_key,
                    currency=tx.currency,
                ),
            )
            for tx, fp in zip(result.accepted, result.fingerprints, strict=True)
        )

    def __len__(self) -> int:
        return len(self._exact)

    def has_exact_fingerprint(self, key: str) -> bool:
        return key in self._exact

    def existing_fuzzy_candidates(self, key: str) -> Sequence[StoredTransaction]:
        return self._fuzzy.get(key, ())


__all__ = ["FingerprintSource", "EmptyFingerprintSource", "InMemoryFingerprintSource"]
