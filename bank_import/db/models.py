from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    CHAR,
    BigInteger,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# BIGINT ids on Postgres; SQLite only autoincrements INTEGER PRIMARY KEY.
_PK = BigInteger().with_variant(Integer, "sqlite")


class Base(DeclarativeBase):
    pass


# ---------------------------
# bi_import_runs
# ---------------------------


class ImportRun(Base):
    """Summary of one committed import call."""

    __tablename__ = "bi_import_runs"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    source_account: Mapped[str | None] = mapped_column(String, nullable=True)
    filename: Mapped[str | None] = mapped_column(Text, nullable=True)
    format_key: Mapped[str] = mapped_column(String, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    rows_read: Mapped[int] = mapped_column(Integer, nullable=False)
    rows_rejected: Mapped[int] = mapped_column(Integer, nullable=False)
    accepted: Mapped[int] = mapped_column(Integer, nullable=False)
    exact_duplicates: Mapped[int] = mapped_column(Integer, nullable=False)
    probable_duplicates: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


# ---------------------------
# bi_transactions
# ---------------------------


class ImportedTransaction(Base):
    __tablename__ = "bi_transactions"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    import_run_id: Mapped[int | None] = mapped_column(
        ForeignKey("bi_import_runs.id", ondelete="SET NULL"), nullable=True
    )
    source_account: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    format_key: Mapped[str] = mapped_column(String, nullable=False)
    exact_key: Mapped[str] = mapped_column(CHAR(64), nullable=False)
    fuzzy_key: Mapped[str] = mapped_column(String, nullable=False, index=True)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency_code: Mapped[str] = mapped_column(CHAR(3), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    merchant: Mapped[str] = mapped_column(Text, nullable=False)
    subtype: Mapped[str | None] = mapped_column(String, nullable=True)
    standard_merchant: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String, nullable=True)
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("source_account", "exact_key", name="uq_bi_tx_account_exact_key"),
    )


__all__ = [
    "Base",
    "ImportRun",
    "ImportedTransaction",
]
