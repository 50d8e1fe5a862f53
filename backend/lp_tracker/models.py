from datetime import date, datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base

MIN_SLOT = 1
MAX_SLOT = 10


class AccountModel(Base):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    owner_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    slot: Mapped[int] = mapped_column(Integer, nullable=False)
    balance: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total_points: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total_fees: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    pending_yield: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    account_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    positions: Mapped[list["PositionModel"]] = relationship(
        "PositionModel", back_populates="account", cascade="all, delete-orphan", order_by="PositionModel.id"
    )
    history: Mapped[list["DailyHistoryModel"]] = relationship(
        "DailyHistoryModel", back_populates="account", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("owner_id", "slot", name="uq_accounts_owner_slot"),
        CheckConstraint(f"slot >= {MIN_SLOT} AND slot <= {MAX_SLOT}", name="ck_accounts_slot_range"),
    )


class PositionModel(Base):
    __tablename__ = "positions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    pair: Mapped[str] = mapped_column(String(50), nullable=False)
    position_size: Mapped[float | None] = mapped_column(Float, nullable=True)
    apr: Mapped[float | None] = mapped_column(Float, nullable=True)
    in_range: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    account: Mapped[AccountModel] = relationship("AccountModel", back_populates="positions")


class DailyHistoryModel(Base):
    __tablename__ = "daily_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    balance: Mapped[float] = mapped_column(Float, nullable=False)
    total_points: Mapped[float] = mapped_column(Float, nullable=False)
    total_fees: Mapped[float] = mapped_column(Float, nullable=False)
    recorded_on: Mapped[date] = mapped_column(Date, nullable=False)

    account: Mapped[AccountModel] = relationship("AccountModel", back_populates="history")

    __table_args__ = (
        UniqueConstraint("account_id", "recorded_on", name="uq_daily_history_account_day"),
    )
