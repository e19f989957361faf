"""Pytest configuration for test isolation.

Settings and the database URL are read from ``BANK_IMPORT_*`` and
``DATABASE_URL`` environment variables (and a local ``.env`` in the CLI).
A developer's shell or ``.env`` must not leak into tests, so every test
starts with those variables removed and with no cached SQLAlchemy engines.
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from pathlib import Path

import pytest

from bank_import.db.client import dispose_engines
from bank_import.logging_setup import reset_logging


@pytest.fixture(autouse=True)
def _isolate_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    for name in list(os.environ):
        if name.startswith("BANK_IMPORT_") or name == "DATABASE_URL":
            monkeypatch.delenv(name, raising=False)
    # The CLI loads ``.env`` from the working directory.
    monkeypatch.chdir(tmp_path)
    yield
    dispose_engines()
    reset_logging()
