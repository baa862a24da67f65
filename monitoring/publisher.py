import json
import logging
from typing import Any, Dict, List, Optional

import aio_pika
from aio_pika import DeliveryMode, Message

from models.schemas import BillingRecord, Event
from .config import mq_config, MQConfig

logger = logging.getLogger(__name__)


class PublishError(Exception):
    pass


class BusPublisher:
    def __init__(self, config: MQConfig = None):
        self.config = config or mq_config

        self._connection: Optional[aio_pika.RobustConnection] = None
        self._channel: Optional[aio_pika.RobustChannel] = None
        self._exchanges: Dict[str, aio_pika.abc.AbstractExchange] = {}

    async def connect(self):
        logger.info(f"Connecting to RabbitMQ at {self.config.host}:{self.config.port}")

        self._connection = await aio_pika.connect_robust(
            self.config.url,
            reconnect_interval=self.config.reconnect_delay
        )
        self._channel = await self._connection.channel(publisher_confirms=True)

        for name in (self.config.records_exchange, self.config.events_exchange, self.config.datas_exchange):
            self._exchanges[name] = await self._channel.declare_exchange(
                name,
                aio_pika.ExchangeType.TOPIC,
                durable=True
            )

        logger.info(f"Connected to RabbitMQ, exchanges: {', '.join(self._exchanges)}")

    async def close(self):
        if self._channel:
            await self._channel.close()
            self._channel = None

        if self._connection:
            await self._connection.close()
            self._connection = None

        self._exchanges = {}
        logger.info("Disconnected from RabbitMQ")

    async def _publish(self, exchange_name: str, body: Any):
        exchange = self._exchanges.get(exchange_name)
        if exchange is None:
            raise PublishError(f"Exchange {exchange_name} is not declared, call connect() first")

        message = Message(
            body=json.dumps(body).encode(),
            content_type="application/json",
            delivery_mode=DeliveryMode.PERSISTENT
        )
        try:
            await exchange.publish(message, routing_key=self.config.routing_key)
        except Exception as e:
            raise PublishError(f"Failed to publish to {exchange_name}: {e}") from e

    async def publish_records(self, records: List[BillingRecord]):
        if not records:
            return
        await self._publish(
            self.config.records_exchange,
            [r.model_dump(mode="json") for r in records]
        )
        logger.debug(f"Published {len(records)} records")

    async def publish_event(self, event: Event):
        await self._publish(self.config.events_exchange, event.model_dump(mode="json"))
        logger.debug(f"Published event {event.key} for {event.uuid}")

    async def publish_data(self, instance_uuid: str, data: Dict[str, Any]):
        await self._publish(self.config.datas_exchange, {"uuid": instance_uuid, "data": data})
