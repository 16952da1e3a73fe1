"""Account, ledger, holding and dividend tables."""

from __future__ import annotations

import datetime as dt
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from finance_tracker.db.base import Base

TRANSACTION_TYPES = ("buy", "sell")
CASH_TRANSACTION_TYPES = ("inflow", "outflow")
CASH_SOURCES = ("manual", "stock_trade", "dividend", "reversal")


class Account(Base):
    __tablename__ = "account"
    __table_args__ = (Index("ix_account_user", "user_id"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64))
    name: Mapped[str] = mapped_column(String(64))
    type: Mapped[str] = mapped_column(String(16), default="stock")
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=dt.datetime.utcnow)

    transactions: Mapped[list["StockTransaction"]] = relationship(
        back_populates="account", cascade="all, delete-orphan"
    )


class StockTransaction(Base):
    __tablename__ = "stock_transaction"
    __table_args__ = (
        Index("ix_stock_transaction_account_symbol", "account_id", "symbol"),
        Index("ix_stock_transaction_date", "trade_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("account.id", ondelete="CASCADE"))
    symbol: Mapped[str] = mapped_column(String(20))
    type: Mapped[str] = mapped_column(Enum(*TRANSACTION_TYPES, name="stock_transaction_type"))
    shares: Mapped[Decimal] = mapped_column(Numeric(18, 6))
    price: Mapped[Decimal] = mapped_column(Numeric(18, 6))
    fees: Mapped[Decimal] = mapped_column(Numeric(18, 6), default=0)
    trade_date: Mapped[dt.date] = mapped_column(Date)

    account: Mapped[Account] = relationship(back_populates="transactions")


class Holding(Base):
    """Derived position; only ever written by a ledger replay."""

    __tablename__ = "holding"
    __table_args__ = (UniqueConstraint("account_id", "symbol", name="uq_holding_account_symbol"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("account.id", ondelete="CASCADE"))
    symbol: Mapped[str] = mapped_column(String(20))
    shares: Mapped[Decimal] = mapped_column(Numeric(18, 6), default=0)
    avg_cost: Mapped[Decimal] = mapped_column(Numeric(18, 6), default=0)
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), default=dt.datetime.utcnow, onupdate=dt.datetime.utcnow
    )


class Dividend(Base):
    __tablename__ = "dividend"
    __table_args__ = (
        UniqueConstraint("account_id", "symbol", "ex_date", name="uq_dividend_account_symbol_ex_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("account.id", ondelete="CASCADE"))
    symbol: Mapped[str] = mapped_column(String(20))
    ex_date: Mapped[dt.date] = mapped_column(Date)
    pay_date: Mapped[dt.date | None] = mapped_column(Date, nullable=True)
    amount_per_share: Mapped[Decimal] = mapped_column(Numeric(18, 6))
    shares_held: Mapped[Decimal] = mapped_column(Numeric(18, 6))
    gross_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2))
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(6, 4))
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2))
    net_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2))
    transaction_created: Mapped[bool] = mapped_column(Boolean, default=False)


class CashTransaction(Base):
    __tablename__ = "cash_transaction"
    __table_args__ = (Index("ix_cash_transaction_account", "account_id"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("account.id", ondelete="CASCADE"))
    type: Mapped[str] = mapped_column(Enum(*CASH_TRANSACTION_TYPES, name="cash_transaction_type"))
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2))
    entry_date: Mapped[dt.date] = mapped_column(Date)
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    source: Mapped[str] = mapped_column(Enum(*CASH_SOURCES, name="cash_transaction_source"), default="manual")


class UserSetting(Base):
    __tablename__ = "user_setting"
    __table_args__ = (UniqueConstraint("user_id", "key", name="uq_user_setting_key"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64))
    key: Mapped[str] = mapped_column(String(64))
    value: Mapped[str] = mapped_column(String(255))
