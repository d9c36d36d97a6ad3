"""
Webhook Handler Registry
Maps event_type to handler instances
"""

from typing import Dict, Optional

from sched_core.workers.webhook_handlers.base_handler import BaseWebhookHandler
from sched_core.workers.webhook_handlers.application_handler import ApplicationHandler
from sched_core.workers.webhook_handlers.candidate_handler import CandidateHandler
from sched_core.workers.webhook_handlers.requisition_handler import RequisitionHandler
from sched_core.workers.webhook_handlers.calendar_handler import CalendarCancelledHandler
from sched_core.core.setup_logger import worker_logger
from sched_core.core.logger import info

# Handler Registry - maps event_type string to handler instance
HANDLERS: Dict[str, BaseWebhookHandler] = {}


def register_handler(handler: BaseWebhookHandler) -> None:
    """
    Register a handler for every event type it declares

    Args:
        handler: Handler instance (must inherit from BaseWebhookHandler)
    """
    if not isinstance(handler, BaseWebhookHandler):
        raise TypeError("Handler must inherit from BaseWebhookHandler")

    for event_type in handler.event_types:
        info(worker_logger, f"Registering webhook handler for event_type: {event_type}")
        HANDLERS[event_type] = handler


def get_handler(event_type: str) -> Optional[BaseWebhookHandler]:
    """
    Get handler instance for a given event type

    Returns:
        Handler instance, or None for event types with no local effect
    """
    return HANDLERS.get(event_type)


def list_handlers() -> list:
    """Get list of all registered event types"""
    return list(HANDLERS.keys())


for _handler in (ApplicationHandler(), CandidateHandler(), RequisitionHandler(), CalendarCancelledHandler()):
    register_handler(_handler)


__all__ = [
    'BaseWebhookHandler',
    'ApplicationHandler',
    'CandidateHandler',
    'RequisitionHandler',
    'CalendarCancelledHandler',
    'HANDLERS',
    'get_handler',
    'register_handler',
    'list_handlers',
]
