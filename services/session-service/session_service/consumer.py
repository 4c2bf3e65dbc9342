import asyncio
import json
import logging
from functools import partial

import aio_pika
from aio_pika import ExchangeType

from shared.config import EXCHANGE_NAME
from shared.idempotency import already_processed
from shared.rabbitmq import connect

from .registry import SessionGrant, SessionRegistry

logger = logging.getLogger(__name__)

QUEUE_NAME = "session_service_booking_events"

ROUTING_KEYS = ["booking.in_progress", "booking.completed"]

RETRY_SECONDS = 5


def apply_event(registry: SessionRegistry, event_type: str, data: dict) -> bool:
    session_id = data.get("sessionId")
    if not session_id:
        return False

    if event_type == "booking.in_progress":
        roles = {}
        if data.get("clientId"):
            roles[str(data["clientId"])] = "client"
        if data.get("providerId"):
            roles[str(data["providerId"])] = "provider"
        registry.grant(SessionGrant(session_id=session_id, booking_id=data.get("bookingId"), roles=roles))
        logger.info("Session granted", extra={"session_id": session_id, "booking_id": data.get("bookingId")})
        return True

    if event_type == "booking.completed":
        registry.revoke(session_id)
        logger.info("Session grant revoked", extra={"session_id": session_id, "booking_id": data.get("bookingId")})
        return True

    return False


async def handle_message(message: aio_pika.IncomingMessage, registry: SessionRegistry):
    async with message.process(requeue=False):
        try:
            payload = json.loads(message.body.decode("utf-8"))
        except ValueError:
            logger.warning("Discarding undecodable event")
            return

        event_id = payload.get("event_id")
        event_type = payload.get("event_type")
        data = payload.get("data") or {}

        if not event_id or not event_type:
            return

        if event_type not in ROUTING_KEYS:
            return

        if await already_processed(event_id):
            return

        apply_event(registry, event_type, data)


async def _connect_and_consume(registry: SessionRegistry):
    connection = await connect()
    if connection is None:
        raise RuntimeError("RABBIT_URL not set; cannot start consumer")

    channel = await connection.channel()
    await channel.set_qos(prefetch_count=50)

    exchange = await channel.declare_exchange(EXCHANGE_NAME, ExchangeType.TOPIC, durable=True)
    queue = await channel.declare_queue(QUEUE_NAME, durable=True)

    for rk in ROUTING_KEYS:
        await queue.bind(exchange, routing_key=rk)

    await queue.consume(partial(handle_message, registry=registry))

    logger.info("Booking event consumer started")
    return connection


async def start_consumer_with_retry(stop_event: asyncio.Event, registry: SessionRegistry):
    while not stop_event.is_set():
        try:
            return await _connect_and_consume(registry)
        except Exception as e:
            logger.warning(f"Consumer connect failed, retrying in {RETRY_SECONDS}s", extra={"error": str(e)})
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=RETRY_SECONDS)
            except asyncio.TimeoutError:
                continue

    return None
