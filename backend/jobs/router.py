"""Scheduled-job trigger for an external cron.

Routes:
    /jobs            — Available job names
    /jobs/{job}      — Run one job (X-Cron-Secret)
"""


import logging
from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.exceptions import NotFoundException
from backend.database import get_db
from backend.dependencies import verify_cron_secret
from backend.jobs.registry import JOBS

logger = logging.getLogger(__name__)

router = APIRouter(prefix="", tags=["jobs"], dependencies=[Depends(verify_cron_secret)])


@router.get("")
async def list_jobs() -> dict[str, list[str]]:
    return {"jobs": sorted(JOBS)}


@router.post("/{job}")
async def run_job(job: str, db: AsyncSession = Depends(get_db)) -> dict[str, Any]:
    fn = JOBS.get(job)
    if fn is None:
        raise NotFoundException(entity_type="Job", entity_id=job)
    logger.info("Running scheduled job %s", job)
    result = await fn(db)
    return {"job": job, "result": result.model_dump()}
