import uuid
from abc import ABC, abstractmethod
from typing import Dict, Optional

from sched_core.core.config import Settings


class AtsClient(ABC):
    """Applicant-tracking system seam (iCIMS)"""

    @abstractmethod
    async def note_exists(self, application_id: str, activity_id: str) -> bool:
        pass

    @abstractmethod
    async def add_note(self, application_id: str, text: str, idempotency_key: str) -> str:
        """Write a note and return its activity id. Same key, same note."""


class InMemoryAtsClient(AtsClient):
    def __init__(self):
        self.notes: Dict[str, Dict[str, str]] = {}
        self._by_key: Dict[str, str] = {}
        self.writes = 0

    async def note_exists(self, application_id: str, activity_id: str) -> bool:
        return activity_id in self.notes.get(application_id, {})

    async def add_note(self, application_id: str, text: str, idempotency_key: str) -> str:
        existing: Optional[str] = self._by_key.get(idempotency_key)
        if existing and existing in self.notes.get(application_id, {}):
            return existing

        activity_id = f"act-{uuid.uuid4().hex[:12]}"
        self.notes.setdefault(application_id, {})[activity_id] = text
        self._by_key[idempotency_key] = activity_id
        self.writes += 1
        return activity_id


def build_ats_client(settings: Settings) -> AtsClient:
    if settings.ATS_MODE == "mock":
        return InMemoryAtsClient()
    raise ValueError(f"Unsupported ATS_MODE: '{settings.ATS_MODE}'")
