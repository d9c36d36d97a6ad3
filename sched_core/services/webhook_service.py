"""
Webhook Receiver
Authenticates, deduplicates and persists inbound events. No business effect runs
here; the webhook worker applies events later.
"""
import hashlib
import hmac
import json
from typing import Any, Dict, Optional

from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from sched_core.constants.job_types import AuditAction
from sched_core.constants.queue_status import WebhookStatus
from sched_core.core.clock import Clock, utc_now
from sched_core.core.config import Settings
from sched_core.core.logger import info, warning, error
from sched_core.core.setup_logger import api_logger
from sched_core.repositories.audit_repository import AuditRepository
from sched_core.repositories.webhook_repository import WebhookRepository
from sched_core.schemas.webhook_schemas import WebhookAck


def compute_signature(secret: str, raw_body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def payload_hash(payload: Dict[str, Any]) -> str:
    """sha256 over the payload serialized with sorted keys"""
    normalized = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def dedup_key_for(event_id: Optional[str], hashed: str) -> str:
    if event_id:
        return f"event:{event_id}"
    return f"hash:{hashed}"


class WebhookService:
    def __init__(
            self,
            settings: Settings,
            repo: WebhookRepository = None,
            audit_repo: AuditRepository = None,
            clock: Clock = utc_now,
    ):
        self.settings = settings
        self.repo = repo or WebhookRepository()
        self.audit_repo = audit_repo or AuditRepository()
        self.clock = clock

    def verify_signature(self, raw_body: bytes, signature: str) -> bool:
        """Constant-time HMAC-SHA256 check; accepts an optional sha256= prefix"""
        if not self.settings.WEBHOOK_SECRET or not signature:
            return False

        if signature.startswith("sha256="):
            signature = signature[len("sha256="):]

        expected = compute_signature(self.settings.WEBHOOK_SECRET, raw_body)
        return hmac.compare_digest(expected, signature.strip().lower())

    def parse_body(self, raw_body: bytes) -> Dict[str, Any]:
        try:
            body = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError):
            raise HTTPException(
                status_code=400,
                detail={"error": "Invalid JSON payload", "code": "INVALID_JSON"},
            )

        if not isinstance(body, dict) or not body.get("eventType"):
            raise HTTPException(
                status_code=400,
                detail={"error": "Missing required field: eventType", "code": "MISSING_FIELD"},
            )
        return body

    async def receive(
            self,
            db: AsyncSession,
            *,
            provider: str,
            raw_body: bytes,
            signature: Optional[str],
    ) -> WebhookAck:
        if not signature:
            warning(api_logger, "Webhook rejected: missing signature header", context={"provider": provider})
            raise HTTPException(
                status_code=401,
                detail={"error": "Missing signature header", "code": "MISSING_SIGNATURE"},
            )

        body = self.parse_body(raw_body)
        event_id = body.get("eventId")
        event_id = str(event_id) if event_id not in (None, "") else None
        event_type = str(body["eventType"])
        hashed = payload_hash(body)
        verified = self.verify_signature(raw_body, signature)
        now = self.clock()

        try:
            if not verified:
                return await self._store_unverified(db, provider, body, event_id, event_type, hashed, signature)

            dedup_key = dedup_key_for(event_id, hashed)
            event, created = await self.repo.insert_verified(db, event_data={
                "provider": provider,
                "event_id": event_id,
                "event_type": event_type,
                "payload": body,
                "payload_hash": hashed,
                "dedup_key": dedup_key,
                "signature": signature,
                "verified": True,
                "status": WebhookStatus.received.value,
                "attempts": 0,
                "max_attempts": self.settings.WEBHOOK_MAX_ATTEMPTS,
                "run_after": now,
                "created_at": now,
                "updated_at": now,
            })

            action = AuditAction.webhook_received if created else AuditAction.webhook_deduped
            await self.audit_repo.log(db, action=action.value, payload={
                "webhook_id": event.id,
                "provider": provider,
                "event_id": event_id,
                "event_type": event_type,
                "dedup_key": dedup_key,
            })
            await db.commit()
        except HTTPException:
            raise
        except Exception as e:
            await db.rollback()
            error(api_logger, "Failed to persist webhook", context={
                "provider": provider,
                "event_id": event_id,
                "error": str(e),
            })
            raise HTTPException(status_code=500, detail=f"Failed to persist webhook: {str(e)}")

        info(api_logger, "Webhook received" if created else "Duplicate webhook acknowledged", context={
            "webhook_id": event.id,
            "provider": provider,
            "event_id": event_id,
            "event_type": event_type,
        })

        return WebhookAck(
            webhook_id=event.id,
            event_id=event_id,
            is_duplicate=not created,
            verified=True,
            message="Webhook received and queued for processing" if created else "Duplicate webhook ignored",
        )

    async def _store_unverified(self, db, provider, body, event_id, event_type, hashed, signature) -> WebhookAck:
        """
        Persist for audit only. No dedup key and never claimable.
        """
        now = self.clock()
        event = await self.repo.create(db, obj_in={
            "provider": provider,
            "event_id": event_id,
            "event_type": event_type,
            "payload": body,
            "payload_hash": hashed,
            "dedup_key": None,
            "signature": signature,
            "verified": False,
            "status": WebhookStatus.received.value,
            "max_attempts": self.settings.WEBHOOK_MAX_ATTEMPTS,
            "run_after": now,
        })
        await self.audit_repo.log(db, action=AuditAction.webhook_received.value, payload={
            "webhook_id": event.id,
            "provider": provider,
            "event_id": event_id,
            "event_type": event_type,
            "verified": False,
        })
        await db.commit()

        warning(api_logger, "Webhook signature invalid, stored for audit", context={
            "webhook_id": event.id,
            "provider": provider,
            "event_id": event_id,
        })

        return WebhookAck(
            webhook_id=event.id,
            event_id=event_id,
            is_duplicate=False,
            verified=False,
            message="Signature verification failed; event stored but will not be processed",
        )
