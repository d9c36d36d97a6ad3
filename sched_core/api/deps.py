"""
Shared FastAPI dependencies: settings, cron-secret guard and service providers
"""
import hmac
from typing import Optional

from fastapi import Depends, Header, HTTPException

from sched_core.core.config import Settings, settings
from sched_core.core.logger import warning, mask_secret
from sched_core.core.setup_logger import api_logger
from sched_core.services.job_run_service import JobRunService
from sched_core.services.lock_service import LockService
from sched_core.services.notification_service import NotificationService
from sched_core.services.webhook_service import WebhookService
from sched_core.repositories.reconciliation_repository import ReconciliationRepository
from sched_core.workers.runner import JobRunner

runner: Optional[JobRunner] = None
reconciliation_repo = ReconciliationRepository()


def get_app_settings() -> Settings:
    return settings


def get_runner(app_settings: Settings = Depends(get_app_settings)) -> JobRunner:
    global runner
    if runner is None:
        runner = JobRunner(app_settings)
    return runner


def get_job_run_service(app_settings: Settings = Depends(get_app_settings)) -> JobRunService:
    return JobRunService(app_settings)


def get_lock_service(app_settings: Settings = Depends(get_app_settings)) -> LockService:
    return LockService(app_settings)


def get_notification_service(app_settings: Settings = Depends(get_app_settings)) -> NotificationService:
    return NotificationService(app_settings)


def get_webhook_service(app_settings: Settings = Depends(get_app_settings)) -> WebhookService:
    return WebhookService(app_settings)


def get_reconciliation_repo() -> ReconciliationRepository:
    return reconciliation_repo


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


async def verify_cron_secret(
        authorization: Optional[str] = Header(None),
        x_cron_secret: Optional[str] = Header(None),
        app_settings: Settings = Depends(get_app_settings),
) -> None:
    """
    Guard for cron and ops endpoints. Accepts 'Authorization: Bearer <secret>'
    or 'x-cron-secret: <secret>'. With no secret configured, only development
    environments are let through.
    """
    expected = app_settings.CRON_SECRET
    if not expected:
        if app_settings.ENVIRONMENT == "development":
            return None
        warning(api_logger, "CRON_SECRET not configured, rejecting request", context={
            "environment": app_settings.ENVIRONMENT,
        })
        raise HTTPException(status_code=401, detail="Unauthorized")

    provided = _bearer_token(authorization) or x_cron_secret
    if not provided or not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        warning(api_logger, "Rejected request with invalid cron secret", context={
            "provided": mask_secret(provided) if provided else None,
        })
        raise HTTPException(status_code=401, detail="Unauthorized")
    return None
