"""Database layer for the import store (SQLAlchemy).

Public exports
--------------
- ``Base`` and ``metadata``
- ORM models ``ImportRun`` and ``ImportedTransaction``
- Engine/session helpers in ``bank_import.db.client``
"""

from __future__ import annotations

from .models import Base, ImportedTransaction, ImportRun

metadata = Base.metadata

__all__ = [
    "Base",
    "metadata",
    "ImportRun",
    "ImportedTransaction",
]
