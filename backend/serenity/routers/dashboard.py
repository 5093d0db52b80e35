# dashboard router — aggregated app analytics with generated insights
# no auth at this layer; the surrounding gateway handles it

import logging

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from serenity.models.dashboard import DashboardErrorBody, DashboardResponse, DashboardSuccessBody
from serenity.services.dashboard_service import build_dashboard
from serenity.services.db import Database, get_db
from serenity.services.generation import GeminiBackend, get_generation_backend

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


def _render(response: DashboardResponse) -> JSONResponse:
    """stats only on success, error only on failure; nulls inside stats are kept"""
    if response.success:
        body = DashboardSuccessBody(stats=response.stats)
        code = status.HTTP_200_OK
    else:
        body = DashboardErrorBody(error=response.error or "")
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return JSONResponse(status_code=code, content=body.model_dump(mode="json", by_alias=True))


@router.get(
    "",
    response_model=None,
    responses={
        200: {"model": DashboardSuccessBody, "description": "Statistics snapshot with insights"},
        500: {"model": DashboardErrorBody, "description": "Statistical aggregation failed"},
    },
)
async def get_dashboard(
    db: Database = Depends(get_db),
    backend: GeminiBackend = Depends(get_generation_backend),
) -> JSONResponse:
    """statistics snapshot plus ai insights; 500 with an error message if the statistics fail"""
    response = await build_dashboard(db, backend)
    if not response.success:
        logger.warning(f"Dashboard request failed: {response.error}")
    return _render(response)
