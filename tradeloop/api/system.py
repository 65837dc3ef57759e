"""System API: health check, trading loop status, stop request and job logs."""

from fastapi import APIRouter, Depends
from sqlmodel import Session, select

from tradeloop.database import get_session
from tradeloop.models.job_log import JobLog
from tradeloop.api.deps import require_operator

router = APIRouter(prefix="/api/system", tags=["system"])


@router.get("/health")
def health_check():
    return {"status": "ok"}


@router.get("/status", dependencies=[Depends(require_operator)])
def trading_status():
    """Current trading loop state with per-slot sessions."""
    from tradeloop.engine.scheduler import get_trading_status
    return get_trading_status()


@router.post("/stop", dependencies=[Depends(require_operator)])
def stop():
    """Ask every trading loop to exit after its current step."""
    from tradeloop.engine.scheduler import stop_trading
    if stop_trading():
        return {"status": "stopping"}
    return {"status": "not_running"}


@router.get("/logs", dependencies=[Depends(require_operator)])
def job_logs(
    slot: int | None = None,
    status: str | None = None,
    action: str | None = None,
    limit: int = 100,
    offset: int = 0,
    session: Session = Depends(get_session),
):
    stmt = select(JobLog).order_by(JobLog.timestamp.desc(), JobLog.id.desc())
    if slot is not None:
        stmt = stmt.where(JobLog.slot == slot)
    if status is not None:
        stmt = stmt.where(JobLog.status == status)
    if action is not None:
        stmt = stmt.where(JobLog.action == action)
    stmt = stmt.offset(offset).limit(limit)
    return session.exec(stmt).all()
