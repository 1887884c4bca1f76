"""Booking domain events and the sinks that receive them."""
from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Protocol

import pika
from pika.exceptions import AMQPError

logger = logging.getLogger(__name__)


@dataclass
class BookingCreated:
    """Fired after a booking is committed."""

    booking_id: int
    room_id: int
    user_id: int
    start_time: datetime
    end_time: datetime
    name: str = field(default="booking-created", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BookingRescheduled:
    """Fired after a booking window is moved."""

    booking_id: int
    room_id: int
    user_id: int
    start_time: datetime
    end_time: datetime
    previous_start_time: datetime
    previous_end_time: datetime
    name: str = field(default="booking-rescheduled", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BookingCancelled:
    """Fired after a booking is cancelled."""

    booking_id: int
    room_id: int
    cancelled_by: int
    name: str = field(default="booking-cancelled", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class BookingEvent(Protocol):
    name: str

    def to_dict(self) -> Dict[str, Any]:
        ...


class BookingEventSink(Protocol):
    """Anything that accepts booking events; the transport layer subscribes here."""

    def publish(self, event: BookingEvent) -> None:
        ...


def serialize_event(event: BookingEvent) -> Dict[str, Any]:
    payload = event.to_dict()
    for key, value in payload.items():
        if isinstance(value, datetime):
            payload[key] = value.isoformat()
    payload["event"] = payload.pop("name")
    return payload


class NullEventSink:
    def publish(self, event: BookingEvent) -> None:
        return None


class InMemoryEventSink:
    """Keeps published events in order; handy for tests and in-process subscribers."""

    def __init__(self) -> None:
        self.events: List[BookingEvent] = []

    def publish(self, event: BookingEvent) -> None:
        self.events.append(event)

    def names(self) -> List[str]:
        return [event.name for event in self.events]

    def clear(self) -> None:
        self.events.clear()


class RabbitMQEventSink:
    """Publishes persistent JSON messages to a durable RabbitMQ queue.

    Broker failures are logged and swallowed: the booking is already committed
    by the time an event is published.
    """

    def __init__(self, host: str, queue: str = "bookings") -> None:
        self.host = host
        self.queue = queue

    def publish(self, event: BookingEvent) -> None:
        message = serialize_event(event)
        try:
            connection = pika.BlockingConnection(pika.ConnectionParameters(host=self.host))
            try:
                channel = connection.channel()
                channel.queue_declare(queue=self.queue, durable=True)
                channel.basic_publish(
                    exchange="",
                    routing_key=self.queue,
                    body=json.dumps(message),
                    properties=pika.BasicProperties(delivery_mode=2),
                )
            finally:
                connection.close()
        except AMQPError as exc:
            logger.error("Failed to publish %s for booking %s: %s", event.name, message.get("booking_id"), exc)
            return
        logger.info("Published %s for booking %s", event.name, message.get("booking_id"))


def build_event_sink(settings: Any) -> BookingEventSink:
    if settings.events_backend == "rabbitmq":
        return RabbitMQEventSink(host=settings.rabbitmq_host, queue=settings.rabbitmq_queue)
    if settings.events_backend == "memory":
        return InMemoryEventSink()
    return NullEventSink()
