"""
Admin endpoints for the expiry sweeper.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from campus_market.core import scheduler
from campus_market.core.logging import get_logger
from campus_market.core.security import Principal, require_admin
from campus_market.db.session import get_db
from campus_market.services.sweeper import ExpirySweeper

logger = get_logger(__name__)
router = APIRouter(prefix="/admin", tags=["Admin"])


def get_sweeper() -> ExpirySweeper:
    return scheduler.sweeper


@router.post("/sweeper/run")
async def run_sweeper_endpoint(
    principal: Principal = Depends(require_admin),
    sweeper: ExpirySweeper = Depends(get_sweeper),
    db: AsyncSession = Depends(get_db),
):
    """Run one cleanup pass now, outside the hourly schedule."""
    # The caller lookup must not hold a transaction open while the sweeper
    # writes through its own sessions.
    await db.commit()

    logger.info("sweeper_manual_run", by_user=principal.user_id)
    report = await sweeper.run()
    return report.to_dict()


@router.get("/sweeper/status")
async def sweeper_status_endpoint(
    principal: Principal = Depends(require_admin),
    sweeper: ExpirySweeper = Depends(get_sweeper),
):
    status = scheduler.get_scheduler_status()
    status["last_run"] = sweeper.last_report.to_dict() if sweeper.last_report else None
    return status
