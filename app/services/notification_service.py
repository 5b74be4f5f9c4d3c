"""
Notification emitter: routing, escalation and acknowledgment events

Sinks are fire-and-forget. A delivery failure is logged inside the sink and
never reaches the routing engine.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Any, Optional, Callable, Iterable
import logging
import uuid

import httpx

from app.core.config import settings

logger = logging.getLogger(__name__)


class EventKind:
    CRITICAL_CASE = "critical_case"
    ESCALATION = "escalation"
    CASE_ASSIGNED = "case_assigned"
    CASE_ACKNOWLEDGED = "case_acknowledged"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class EventSink(ABC):
    """Outbound event channel, one method per event kind"""

    def critical_case(
        self,
        case_id: uuid.UUID,
        patient_id: uuid.UUID,
        esi_level: int,
        patient_summary: Dict[str, Any]
    ) -> None:
        self.publish(EventKind.CRITICAL_CASE, {
            "caseId": str(case_id),
            "patientId": str(patient_id),
            "esiLevel": esi_level,
            "patientSummary": patient_summary,
        })

    def escalation(
        self,
        case_id: uuid.UUID,
        patient_id: uuid.UUID,
        esi_level: Optional[int],
        escalation_level: int,
        assigned_to: str,
        assigned_role: str,
        patient_summary: Dict[str, Any]
    ) -> None:
        self.publish(EventKind.ESCALATION, {
            "caseId": str(case_id),
            "patientId": str(patient_id),
            "esiLevel": esi_level,
            "escalationLevel": escalation_level,
            "assignedTo": assigned_to,
            "assignedRole": assigned_role,
            "patientSummary": patient_summary,
        })

    def case_assigned(
        self,
        case_id: uuid.UUID,
        assigned_to: str,
        esi_level: int,
        deadline: Optional[datetime]
    ) -> None:
        self.publish(EventKind.CASE_ASSIGNED, {
            "caseId": str(case_id),
            "assignedTo": assigned_to,
            "esiLevel": esi_level,
            "deadline": _iso(deadline),
        })

    def case_acknowledged(
        self,
        case_id: uuid.UUID,
        acknowledged_by: str,
        response_time_ms: Optional[int],
        met_target: bool
    ) -> None:
        self.publish(EventKind.CASE_ACKNOWLEDGED, {
            "caseId": str(case_id),
            "acknowledgedBy": acknowledged_by,
            "responseTimeMs": response_time_ms,
            "metTarget": met_target,
        })

    @abstractmethod
    def publish(self, event: str, payload: Dict[str, Any]) -> None:
        """Deliver one event. Must not raise."""

    def close(self) -> None:
        """Release transport resources"""


class LoggingEventSink(EventSink):
    """Writes events to the application log"""

    def publish(self, event: str, payload: Dict[str, Any]) -> None:
        logger.info("event=%s payload=%s", event, payload)


class WebhookEventSink(EventSink):
    """POSTs events to a notification gateway"""

    def __init__(self, url: str, timeout: float = 5.0, client: Optional[httpx.Client] = None):
        self.url = url
        self.client = client or httpx.Client(timeout=timeout)

    def publish(self, event: str, payload: Dict[str, Any]) -> None:
        try:
            response = self.client.post(self.url, json={"event": event, "payload": payload})
            response.raise_for_status()
        except httpx.HTTPError:
            logger.exception("Failed to deliver %s event for case %s", event, payload.get("caseId"))

    def close(self) -> None:
        self.client.close()


class FanOutEventSink(EventSink):
    """Publishes each event to several sinks"""

    def __init__(self, *sinks: EventSink):
        self.sinks = sinks

    def publish(self, event: str, payload: Dict[str, Any]) -> None:
        for sink in self.sinks:
            sink.publish(event, payload)

    def close(self) -> None:
        for sink in self.sinks:
            sink.close()


def dispatch(notifications: Iterable[Callable[[], None]]) -> None:
    """Run queued notifications once the owning transaction has committed"""
    for notify in notifications:
        try:
            notify()
        except Exception:
            logger.exception("Event sink raised; event dropped")


# Singleton instance
_event_sink: Optional[EventSink] = None


def get_event_sink() -> EventSink:
    """Get singleton event sink configured from settings"""
    global _event_sink
    if _event_sink is None:
        if settings.EVENT_WEBHOOK_URL:
            _event_sink = FanOutEventSink(
                LoggingEventSink(),
                WebhookEventSink(settings.EVENT_WEBHOOK_URL, settings.EVENT_WEBHOOK_TIMEOUT_SECONDS),
            )
        else:
            _event_sink = LoggingEventSink()
    return _event_sink


def close_event_sink() -> None:
    """Close the singleton sink on application shutdown"""
    global _event_sink
    if _event_sink is not None:
        _event_sink.close()
        _event_sink = None
