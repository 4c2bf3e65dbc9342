import logging

import aio_pika

from .config import RABBIT_URL, EXCHANGE_NAME

logger = logging.getLogger(__name__)


async def connect(url: str | None = None):
    url = url or RABBIT_URL
    if not url:
        return None
    return await aio_pika.connect_robust(url)


class RabbitPublisher:
    def __init__(self, service_name: str, url: str | None = None, exchange_name: str = EXCHANGE_NAME):
        self.service_name = service_name
        self.url = url or RABBIT_URL
        self.exchange_name = exchange_name
        self.enabled = bool(self.url)
        self._connection: aio_pika.RobustConnection | None = None
        self._channel: aio_pika.abc.AbstractChannel | None = None
        self._exchange: aio_pika.abc.AbstractExchange | None = None

    async def connect(self):
        if not self.enabled:
            return

        if self._connection and not self._connection.is_closed:
            return

        try:
            self._connection = await aio_pika.connect_robust(self.url)
            self._channel = await self._connection.channel()
            self._exchange = await self._channel.declare_exchange(
                self.exchange_name,
                aio_pika.ExchangeType.TOPIC,
                durable=True,
            )
        except Exception as e:
            logger.warning("[%s] RabbitMQ connect failed", self.service_name, extra={"error": str(e)})
            self._connection = None
            self._channel = None
            self._exchange = None
            raise

    async def publish(self, routing_key: str, message_body: str) -> bool:
        if not self.enabled:
            return False

        try:
            await self.connect()
        except Exception:
            return False

        if not self._exchange:
            return False

        try:
            msg = aio_pika.Message(
                body=message_body.encode("utf-8"),
                content_type="application/json",
                delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
            )
            await self._exchange.publish(msg, routing_key=routing_key)
            return True
        except Exception as e:
            logger.warning(
                "[%s] RabbitMQ publish failed",
                self.service_name,
                extra={"event_type": routing_key, "error": str(e)},
            )
            return False

    async def close(self):
        try:
            if self._connection and not self._connection.is_closed:
                await self._connection.close()
        finally:
            self._connection = None
            self._channel = None
            self._exchange = None
