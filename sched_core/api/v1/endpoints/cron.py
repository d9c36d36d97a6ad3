from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from fastapi.responses import JSONResponse

from sched_core.api.deps import get_runner, verify_cron_secret
from sched_core.constants.job_types import JobTrigger
from sched_core.constants.queue_status import JobRunStatus
from sched_core.core.logger import error
from sched_core.core.setup_logger import api_logger
from sched_core.schemas.job_run_schemas import JobRunSummary
from sched_core.workers.runner import JobRunner, WORKERS

router = APIRouter(dependencies=[Depends(verify_cron_secret)])


def trigger_source(header_value: Optional[str]) -> str:
    if header_value in (JobTrigger.scheduler.value, JobTrigger.cli.value):
        return header_value
    return JobTrigger.manual.value


@router.api_route("/{job_name}", methods=["GET", "POST"], response_model=JobRunSummary)
async def trigger_job(
        job_name: str,
        x_trigger_source: Optional[str] = Header(None),
        job_runner: JobRunner = Depends(get_runner),
):
    if job_name not in WORKERS:
        raise HTTPException(status_code=404, detail=f"Unknown job: '{job_name}'")

    try:
        summary = await job_runner.run(job_name, triggered_by=trigger_source(x_trigger_source))
    except Exception as e:
        error(api_logger, "Job trigger failed", context={
            "job_name": job_name,
            "error": str(e),
            "error_type": type(e).__name__,
        }, exc_info=True)
        raise HTTPException(status_code=500, detail=f"Job run failed: {str(e)}")

    if summary.status == JobRunStatus.failed.value:
        return JSONResponse(status_code=500, content=summary.model_dump(mode="json"))
    return summary
