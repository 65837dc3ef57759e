"""JobLog model: lifecycle events of each trading loop."""

from datetime import datetime, timezone
from typing import Any

from sqlmodel import SQLModel, Field, Column
from sqlalchemy import JSON


class JobLog(SQLModel, table=True):
    __tablename__ = "job_log"

    id: int | None = Field(default=None, primary_key=True)
    slot: int = Field(index=True)
    account: str | None = Field(default=None, index=True)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    status: str  # "success", "error", "skipped"
    action: str | None = None  # "fund", "approve", "rotate", "forced_rotation", "abandoned"
    message: str | None = None
    tx_hash: str | None = None
    error: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
