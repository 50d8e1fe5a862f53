import math
import re
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from .models import MAX_SLOT, MIN_SLOT

_NUMBER_NOISE = re.compile(r"[^0-9.\-]")


def coerce_number(value: Any) -> Optional[float]:
    """Turn model output like ``"$20.77"`` or ``"+39.0"`` into a float; anything unreadable is None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        cleaned = _NUMBER_NOISE.sub("", value.replace(",", ""))
        if not cleaned or cleaned in {".", "-", "-."}:
            return None
        try:
            number = float(cleaned)
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(number):
        return None
    return number


class ExtractedPosition(BaseModel):
    model_config = ConfigDict(extra="ignore")

    pair: Optional[str] = None
    position_size: Optional[float] = None
    apr: Optional[float] = None
    range: Optional[str] = None
    current_price: Optional[float] = None
    status: Optional[str] = None
    unclaimed: Optional[float] = None

    @field_validator("position_size", "apr", "current_price", "unclaimed", mode="before")
    @classmethod
    def parse_number(cls, value: Any) -> Optional[float]:
        return coerce_number(value)

    @field_validator("pair", "range", "status", mode="before")
    @classmethod
    def parse_text(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @property
    def in_range(self) -> bool:
        if not self.status:
            return True
        words = re.sub(r"[^a-z]+", " ", self.status.lower()).split()
        if "out" in words:
            return False
        return words[:2] == ["in", "range"] or words[:1] == ["inrange"]


class ExtractionRecord(BaseModel):
    """Portfolio fields read from one dashboard paste or screenshot."""

    model_config = ConfigDict(extra="ignore")

    balance: Optional[float] = None
    total_points: Optional[float] = None
    points_change: Optional[float] = None
    rank: Optional[str] = None
    total_fees: Optional[float] = None
    fees_today: Optional[float] = None
    pending_yield: Optional[float] = None
    positions: Optional[list[ExtractedPosition]] = None
    account_number: Optional[int] = None
    account_name: Optional[str] = None

    @field_validator(
        "balance", "total_points", "points_change", "total_fees", "fees_today", "pending_yield", mode="before"
    )
    @classmethod
    def parse_number(cls, value: Any) -> Optional[float]:
        return coerce_number(value)

    @field_validator("rank", "account_name", mode="before")
    @classmethod
    def parse_text(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip()
        return text[:100] or None

    @field_validator("account_number", mode="before")
    @classmethod
    def parse_account_number(cls, value: Any) -> Optional[int]:
        number = coerce_number(value)
        if number is None or not number.is_integer():
            return None
        slot = int(number)
        return slot if MIN_SLOT <= slot <= MAX_SLOT else None

    @field_validator("positions", mode="before")
    @classmethod
    def parse_positions(cls, value: Any) -> Optional[list[Any]]:
        if not isinstance(value, list):
            return None
        return [item for item in value if isinstance(item, dict)]

    @field_validator("positions")
    @classmethod
    def drop_unnamed_positions(cls, value: Optional[list[ExtractedPosition]]) -> Optional[list[ExtractedPosition]]:
        if value is None:
            return None
        return [position for position in value if position.pair]

    def is_empty(self) -> bool:
        return self.balance is None and self.total_points is None and not self.positions

    def with_balance(self, balance: float) -> "ExtractionRecord":
        return self.model_copy(update={"balance": balance})
