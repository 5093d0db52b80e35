# response assembler — snapshot + insights into the dashboard response contract
# all-or-nothing on the statistics, best-effort on the insights

import logging
from datetime import datetime
from typing import Optional

from serenity.errors import DataAccessError
from serenity.models.dashboard import DashboardPayload, DashboardResponse, InsightsBundle, RawSnapshot
from serenity.services.agents import GenerationBackend
from serenity.services.db import Database
from serenity.services.insights import generate_insights
from serenity.services.snapshot import collect_snapshot

logger = logging.getLogger(__name__)

GENERIC_ERROR = "Unexpected error while building the dashboard"


def build_payload(snapshot: RawSnapshot, insights: InsightsBundle) -> DashboardPayload:
    return DashboardPayload(**dict(snapshot), insights=insights)


async def build_dashboard(
    db: Database,
    backend: GenerationBackend,
    now: Optional[datetime] = None,
) -> DashboardResponse:
    """collect the snapshot, generate insights, and wrap the result.

    a failure while collecting statistics yields success=false with the error
    message; agent failures never reach this level.
    """
    try:
        snapshot = await collect_snapshot(db, now=now)
    except DataAccessError as e:
        logger.error(f"Dashboard aggregation failed: {e}")
        return DashboardResponse(success=False, error=str(e))
    except Exception:
        logger.exception("Unexpected error while collecting dashboard data")
        return DashboardResponse(success=False, error=GENERIC_ERROR)

    insights = await generate_insights(snapshot, backend)
    return DashboardResponse(success=True, stats=build_payload(snapshot, insights))
