"""
Scheduler API Routes

Status of the periodic jobs and the background task supervisor.
"""
from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from postcraft.services.scheduler import scheduler_service
from postcraft.services.task_supervisor import get_supervisor

router = APIRouter(prefix="/api/scheduler", tags=["scheduler"])


class SchedulerStatus(BaseModel):
    running: bool
    jobs_count: int
    jobs: list[dict]


@router.get("/status", response_model=SchedulerStatus)
async def get_scheduler_status():
    jobs = scheduler_service.get_jobs()
    return SchedulerStatus(running=scheduler_service.is_running(), jobs_count=len(jobs), jobs=jobs)


@router.post("/jobs/{job_id}/run", response_model=dict)
async def run_job_now(job_id: str):
    """Run a periodic job immediately."""
    result = await scheduler_service.run_now(job_id)
    if "error" in result:
        raise HTTPException(status_code=404, detail=result["error"])
    return result


@router.get("/tasks", response_model=dict)
async def list_background_tasks(
    failed_only: bool = False,
    limit: int = Query(default=50, ge=1, le=500),
):
    """In-flight and recently finished background chains."""
    supervisor = get_supervisor()
    finished = supervisor.failures(limit) if failed_only else supervisor.history(limit)
    return {
        "active": [h.to_dict() for h in supervisor.active],
        "finished": [h.to_dict() for h in finished],
    }
