"""Swap history API."""

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select

from tradeloop.database import get_session
from tradeloop.models.swap import Swap
from tradeloop.api.deps import require_operator

router = APIRouter(prefix="/api/trades", tags=["trades"], dependencies=[Depends(require_operator)])


@router.get("")
def list_trades(
    slot: int | None = None,
    account: str | None = None,
    side: str | None = None,
    limit: int = 50,
    offset: int = 0,
    session: Session = Depends(get_session),
):
    stmt = select(Swap).order_by(Swap.timestamp.desc(), Swap.id.desc())
    if slot is not None:
        stmt = stmt.where(Swap.slot == slot)
    if account is not None:
        stmt = stmt.where(Swap.account == account)
    if side is not None:
        stmt = stmt.where(Swap.side == side)
    stmt = stmt.offset(offset).limit(limit)
    return session.exec(stmt).all()


@router.get("/{trade_id}")
def get_trade(trade_id: int, session: Session = Depends(get_session)):
    trade = session.get(Swap, trade_id)
    if not trade:
        raise HTTPException(status_code=404, detail="Trade not found")
    return trade
