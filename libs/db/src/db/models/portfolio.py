from __future__ import annotations

import datetime as dt
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# SQLite only auto-increments ``INTEGER PRIMARY KEY`` columns.
_PK = BigInteger().with_variant(Integer(), "sqlite")


class Base(DeclarativeBase):
    pass


# ---------------------------
# Reference: portfolios
# ---------------------------


class Portfolio(Base):
    __tablename__ = "portfolios"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    transactions: Mapped[list[PortfolioTransaction]] = relationship(
        back_populates="portfolio",
        cascade="all, delete-orphan",
    )


# ---------------------------
# Core: portfolio_transactions
# ---------------------------


class PortfolioTransaction(Base):
    __tablename__ = "portfolio_transactions"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    portfolio_id: Mapped[int] = mapped_column(
        ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False
    )
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False)
    ticker: Mapped[str | None] = mapped_column(String, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    price: Mapped[Decimal | None] = mapped_column(Numeric(18, 6), nullable=True)
    quantity: Mapped[Decimal | None] = mapped_column(Numeric(18, 6), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Running cash balance around this row, in (date, id) order. Rewritten in
    # bulk by the balance recalculation after every import.
    cash_balance_before: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, server_default=text("0")
    )
    cash_balance_after: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, server_default=text("0")
    )
    # EXECUTED rows are written directly; PENDING rows wait for review and
    # become CONFIRMED or REJECTED. Only EXECUTED/CONFIRMED rows move cash.
    status: Mapped[str] = mapped_column(
        String, nullable=False, server_default=text("'EXECUTED'")
    )
    confirmed_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    portfolio: Mapped[Portfolio] = relationship(back_populates="transactions")

    __table_args__ = (
        CheckConstraint(
            "type in ('CASH_CREDIT','CASH_DEBIT','BUY','SELL_WITHDRAWAL','DIVIDEND')",
            name="ck_portfolio_tx_type",
        ),
        CheckConstraint(
            "status in ('EXECUTED','CONFIRMED','PENDING','REJECTED')",
            name="ck_portfolio_tx_status",
        ),
        CheckConstraint("amount > 0", name="ck_portfolio_tx_amount_positive"),
        Index("ix_portfolio_tx_portfolio_date", "portfolio_id", "date"),
    )


__all__ = [
    "Base",
    "Portfolio",
    "PortfolioTransaction",
]
