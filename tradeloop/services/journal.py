"""Trade journal: persists confirmed swaps and loop lifecycle events."""

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from tradeloop.models.job_log import JobLog
from tradeloop.models.swap import Swap

logger = logging.getLogger(__name__)


class Journal:
    """Writes journal rows. A failed write is logged, never raised into the trading loop."""

    def __init__(self, engine=None):
        if engine is None:
            from tradeloop.database import engine as default_engine

            engine = default_engine
        self.engine = engine

    def _add(self, row) -> None:
        try:
            with Session(self.engine) as session:
                session.add(row)
                session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Journal write failed for {type(row).__name__}: {e}")

    def record_swap(
        self,
        slot: int,
        account: str,
        side: str,
        src: str,
        dst: str,
        amount: float,
        destination_amount: float,
        tx_hash: str,
    ) -> None:
        self._add(
            Swap(
                slot=slot,
                account=account,
                side=side,
                src=src,
                dst=dst,
                amount=amount,
                destination_amount=destination_amount,
                tx_hash=tx_hash,
            )
        )

    def log(
        self,
        slot: int,
        status: str,
        account: str | None = None,
        action: str | None = None,
        message: str | None = None,
        tx_hash: str | None = None,
        error: dict[str, Any] | None = None,
    ) -> None:
        self._add(
            JobLog(
                slot=slot,
                account=account,
                status=status,
                action=action,
                message=message,
                tx_hash=tx_hash,
                error=error,
            )
        )
