"""
Process-wide DispatchService used by the HTTP views.

Live dispatch cycles are held in memory, so one service instance is shared by
every request handled by this process. The audit trail (attempts, cycle
outcomes, assignment events) goes to the database through DjangoAttemptLog.
Tests swap the service with set_dispatch_service().
"""

import logging
import threading
from typing import Optional

from django.conf import settings

from dispatch.service import DispatchService, build_in_memory_service
from notifications import LoggingNotifier, PushGatewayNotifier
from .attempt_log import DjangoAttemptLog

logger = logging.getLogger(__name__)

_lock = threading.Lock()
_service: Optional[DispatchService] = None


def build_notifier():
    if settings.PUSH_GATEWAY_URL:
        return PushGatewayNotifier(base_url=settings.PUSH_GATEWAY_URL)
    logger.info("PUSH_GATEWAY_URL not set, offers will only be logged")
    return LoggingNotifier()


def get_dispatch_service() -> DispatchService:
    global _service
    with _lock:
        if _service is None:
            _service = build_in_memory_service(
                build_notifier(),
                policy=settings.DISPATCH_POLICY,
                attempt_log=DjangoAttemptLog(),
            )
        return _service


def set_dispatch_service(service: Optional[DispatchService]) -> None:
    global _service
    with _lock:
        _service = service
