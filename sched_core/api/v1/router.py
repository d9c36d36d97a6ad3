from fastapi import APIRouter

from sched_core.api.v1.endpoints import cron, ops, webhooks

router = APIRouter()

router.include_router(cron.router, prefix="/cron", tags=["cron"])
router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
router.include_router(ops.router, prefix="/ops", tags=["ops"])
