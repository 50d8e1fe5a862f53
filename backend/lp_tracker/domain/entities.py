from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..models import DailyHistoryModel, PositionModel
    from ..schemas import ExtractionRecord

MERGED_NUMERIC_FIELDS = ("balance", "total_points", "total_fees", "pending_yield")


@dataclass(slots=True)
class AccountSnapshot:
    """Account row copied out of the ORM session."""

    id: int | None
    slot: int
    balance: float
    total_points: float
    total_fees: float
    pending_yield: float
    account_name: str | None = None
    updated_at: datetime | None = None

    @property
    def display_name(self) -> str:
        return self.account_name or f"Account {self.slot}"


@dataclass(slots=True)
class PositionSnapshot:
    pair: str
    position_size: float | None
    apr: float | None
    in_range: bool = True

    @property
    def estimated_daily_earnings(self) -> float:
        if self.position_size is None or self.apr is None:
            return 0.0
        return estimate_daily_earnings(self.position_size, self.apr)


@dataclass(slots=True)
class HistorySnapshot:
    recorded_on: date
    balance: float
    total_points: float
    total_fees: float


@dataclass(slots=True)
class PortfolioSummary:
    account_count: int
    balance: float
    total_points: float
    total_fees: float
    pending_yield: float


@dataclass(slots=True)
class SaveResult:
    account: AccountSnapshot
    previous: AccountSnapshot | None

    @property
    def created(self) -> bool:
        return self.previous is None

    @property
    def balance_delta(self) -> float:
        if self.previous is None:
            return 0.0
        return self.account.balance - self.previous.balance


@dataclass(slots=True)
class AccountAnalysis:
    """Everything the per-account analysis view needs, computed from store state."""

    account: AccountSnapshot
    previous: HistorySnapshot | None
    positions: list[PositionSnapshot] = field(default_factory=list)

    @property
    def balance_delta(self) -> float:
        if self.previous is None:
            return 0.0
        return self.account.balance - self.previous.balance

    @property
    def points_delta(self) -> float:
        if self.previous is None:
            return 0.0
        return self.account.total_points - self.previous.total_points

    @property
    def total_position_value(self) -> float:
        return sum(p.position_size for p in self.positions if p.position_size is not None)

    @property
    def estimated_daily_earnings(self) -> float:
        return sum(p.estimated_daily_earnings for p in self.positions)

    @property
    def average_apr(self) -> float:
        """Mean APR over positions whose rate is known."""
        rates = [p.apr for p in self.positions if p.apr is not None]
        if not rates:
            return 0.0
        return sum(rates) / len(rates)

    @property
    def all_in_range(self) -> bool:
        return all(p.in_range for p in self.positions)

    def position_share(self, position: PositionSnapshot) -> float:
        """Percentage of the account balance held in one position."""
        if self.account.balance <= 0 or position.position_size is None:
            return 0.0
        return position.position_size / self.account.balance * 100

    def should_claim(self, threshold: float) -> bool:
        return self.account.pending_yield > threshold


def estimate_daily_earnings(position_size: float, apr: float) -> float:
    return position_size * (apr / 100) / 365


def merge_account_fields(previous: AccountSnapshot | None, record: ExtractionRecord) -> dict[str, object]:
    """Merge a fresh extraction over the stored values.

    A field the extraction did not produce (``None``) keeps the stored value.
    Anything that was extracted, zero included, replaces it.
    """
    merged: dict[str, object] = {}
    for name in MERGED_NUMERIC_FIELDS:
        value = getattr(record, name)
        if value is not None:
            merged[name] = float(value)
        elif previous is not None:
            merged[name] = getattr(previous, name)
        else:
            merged[name] = 0.0

    if record.account_name:
        merged["account_name"] = record.account_name
    else:
        merged["account_name"] = previous.account_name if previous is not None else None
    return merged


MANUAL_BALANCE_REGEX = re.compile(r"\d+(?:\.\d+)?|\.\d+")


def parse_manual_balance(text: str) -> float | None:
    """Parse a typed balance such as ``640.50`` or ``$1,200``.

    Only a currency sign, spaces and thousands separators are tolerated.
    Anything else (signs, exponents, letters) yields ``None`` so the user is
    asked again instead of a guessed number being saved.
    """
    cleaned = re.sub(r"[$\s,]", "", text or "")
    if not MANUAL_BALANCE_REGEX.fullmatch(cleaned):
        return None
    value = float(cleaned)
    if not math.isfinite(value):
        return None
    return round(value, 2)


def account_snapshot_from_model(model: object) -> AccountSnapshot:
    from ..models import AccountModel

    if not isinstance(model, AccountModel):
        raise TypeError("Expected AccountModel instance.")

    return AccountSnapshot(
        id=model.id,
        slot=model.slot,
        balance=float(model.balance or 0.0),
        total_points=float(model.total_points or 0.0),
        total_fees=float(model.total_fees or 0.0),
        pending_yield=float(model.pending_yield or 0.0),
        account_name=model.account_name,
        updated_at=model.updated_at,
    )


def position_snapshot_from_model(model: PositionModel) -> PositionSnapshot:
    return PositionSnapshot(
        pair=model.pair,
        position_size=float(model.position_size) if model.position_size is not None else None,
        apr=float(model.apr) if model.apr is not None else None,
        in_range=bool(model.in_range),
    )


def history_snapshot_from_model(model: DailyHistoryModel) -> HistorySnapshot:
    return HistorySnapshot(
        recorded_on=model.recorded_on,
        balance=float(model.balance or 0.0),
        total_points=float(model.total_points or 0.0),
        total_fees=float(model.total_fees or 0.0),
    )
