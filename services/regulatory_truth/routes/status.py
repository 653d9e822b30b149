"""
Status Routes
=============

Pipeline health for operators.

Version: 0.1.0
"""

from fastapi import APIRouter, Depends

from services.regulatory_truth.dependencies import get_status_service
from services.regulatory_truth.services import StatusService
from shared.models import StatusSnapshot


router = APIRouter()


@router.get("", response_model=StatusSnapshot)
async def pipeline_status(
    service: StatusService = Depends(get_status_service),
) -> StatusSnapshot:
    """
    Per-source check state, per-stage outcome counts over the trailing
    window, rate limiter state, queue depths and the overall health score.
    """
    return await service.snapshot()
