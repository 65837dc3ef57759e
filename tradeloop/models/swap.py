"""Swap model: immutable record of every confirmed swap."""

from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


class Swap(SQLModel, table=True):
    __tablename__ = "swap"

    id: int | None = Field(default=None, primary_key=True)
    slot: int = Field(index=True)  # trading loop that performed the swap
    account: str = Field(index=True)  # sub-account address
    side: str  # "buy" or "sell"
    src: str
    dst: str
    amount: float  # whole units of src
    destination_amount: float  # quoted whole units of dst
    tx_hash: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
