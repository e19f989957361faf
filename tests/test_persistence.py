import textwrap
from pathlib import Path

from sqlalchemy import func, select

from bank_import import import_transactions
from bank_import.db.client import session_scope
from bank_import.db.models import ImportedTransaction, ImportRun
from bank_import.persistence import commit_import, load_fingerprint_snapshot
from tests.helpers.db import bootstrap_sqlite_db

CSV = textwrap.dedent(
    """\
    Date,Amount,Description,Reference,Balance
    15/01/2024,-4.50,EFTPOS 1234567 Coffee Shop,,995.50
    16/01/2024,2500.00,TRANSFER Salary ACME,,3495.50
    17/01/2024,-45.00,DD Power Co,,3450.50
    """
)


def test_commit_then_reimport_against_store(tmp_path: Path):
    url = bootstrap_sqlite_db(tmp_path / "store.db")

    with session_scope(database_url=url) as session:
        snapshot = load_fingerprint_snapshot(session, source_account="checking")
        assert len(snapshot) == 0
        result = import_transactions(CSV, fingerprints=snapshot)
        written = commit_import(session, result, source_account="checking", filename="a.csv")
    assert written == 3

    with session_scope(database_url=url) as session:
        rows = session.execute(select(ImportedTransaction).order_by(ImportedTransaction.id)).scalars().all()
        assert [r.amount_minor for r in rows] == [-450, 250000, -4500]
        assert {r.currency_code for r in rows} == {"NZD"}
        assert rows[0].merchant == "Coffee Shop"
        assert rows[0].subtype == "card-present"
        assert (rows[0].standard_merchant, rows[0].category) == ("Coffee Shop", None)
        run = session.execute(select(ImportRun)).scalar_one()
        assert (run.format_key, run.accepted, run.filename) == ("ANZ_NZ", 3, "a.csv")
        assert all(r.import_run_id == run.id for r in rows)

    with session_scope(database_url=url) as session:
        snapshot = load_fingerprint_snapshot(session, source_account="checking")
        again = import_transactions(CSV, fingerprints=snapshot)

    assert len(snapshot) == 3
    assert again.accepted == ()
    assert again.summary.exact_duplicate_count == 3


def test_snapshots_are_scoped_per_account(tmp_path: Path):
    url = bootstrap_sqlite_db(tmp_path / "store.db")

    with session_scope(database_url=url) as session:
        commit_import(session, import_transactions(CSV), source_account="checking")

    with session_scope(database_url=url) as session:
        other = load_fingerprint_snapshot(session, source_account="savings")
        unscoped = load_fingerprint_snapshot(session)

    assert len(other) == 0
    assert len(unscoped) == 0
    assert import_transactions(CSV, fingerprints=other).summary.accepted == 3


def test_replaying_a_result_writes_nothing_new(tmp_path: Path):
    url = bootstrap_sqlite_db(tmp_path / "store.db")
    result = import_transactions(CSV)

    with session_scope(database_url=url) as session:
        first = commit_import(session, result, source_account="checking")
    with session_scope(database_url=url) as session:
        second = commit_import(session, result, source_account="checking")
        count = session.execute(select(func.count()).select_from(ImportedTransaction)).scalar_one()
        runs = session.execute(select(func.count()).select_from(ImportRun)).scalar_one()

    assert (first, second) == (3, 0)
    assert count == 3
    assert runs == 2
