import asyncio
import logging
from abc import ABC, abstractmethod

from shared.events import build_event, routing_key_for, to_json
from shared.rabbitmq import RabbitPublisher

logger = logging.getLogger(__name__)

SERVICE_NAME = "booking-service"


class NotificationDispatcher(ABC):
    @abstractmethod
    def emit(self, event_type: str, data: dict) -> None:
        """Hand an event off without waiting for delivery."""
        raise NotImplementedError


class EventBusDispatcher(NotificationDispatcher):
    def __init__(self, publisher: RabbitPublisher):
        self.publisher = publisher
        self._pending: set[asyncio.Task] = set()

    def emit(self, event_type: str, data: dict) -> None:
        event = build_event(event_type, data)
        task = asyncio.create_task(self._publish(event_type, event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _publish(self, event_type: str, event: dict) -> None:
        try:
            delivered = await self.publisher.publish(event_type, to_json(event))
        except Exception as e:
            logger.warning(
                "Notification dispatch failed",
                extra={"event_type": event_type, "booking_id": event["data"].get("bookingId"), "error": str(e)},
            )
            return
        if not delivered and self.publisher.enabled:
            logger.warning(
                "Notification not delivered",
                extra={"event_type": event_type, "booking_id": event["data"].get("bookingId")},
            )

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


def transition_event_type(to_status: str) -> str:
    return routing_key_for("booking", to_status)


publisher = RabbitPublisher(SERVICE_NAME)
dispatcher = EventBusDispatcher(publisher)
