from __future__ import annotations

import json
import logging
from typing import Optional, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from awaredb import config
from awaredb.errors import PublishTransportFailure

from . import models

logger = logging.getLogger(__name__)


class EventTransport:
    name = "base"

    def publish(self, message: models.OutboundMessage) -> Optional[str]:
        """Deliver one message; return the transport's message id if it has one."""
        raise NotImplementedError


class NoopTransport(EventTransport):
    name = "none"

    def publish(self, message: models.OutboundMessage) -> Optional[str]:
        return None


class LogTransport(EventTransport):
    name = "log"

    def publish(self, message: models.OutboundMessage) -> Optional[str]:
        logger.info(
            "Outbound event",
            extra={
                "message_id": message.id,
                "event_type": message.event_type,
                "idempotency_key": message.idempotency_key,
                "payload": message.payload_json,
            },
        )
        return None


class SnsTransport(EventTransport):
    name = "sns"

    def __init__(self, topic_arn: str, *, region_name: Optional[str] = None, client=None) -> None:
        self.topic_arn = topic_arn
        self._client = client or boto3.client("sns", region_name=region_name)

    @property
    def is_fifo(self) -> bool:
        return self.topic_arn.endswith(".fifo")

    def publish(self, message: models.OutboundMessage) -> Optional[str]:
        params = {
            "TopicArn": self.topic_arn,
            "Message": json.dumps(message.payload_json, default=str),
            "MessageAttributes": {
                "event_type": {"DataType": "String", "StringValue": message.event_type},
            },
        }
        if self.is_fifo:
            # Ordering per session; the idempotency key collapses redeliveries.
            params["MessageGroupId"] = message.tracking_link_id
            params["MessageDeduplicationId"] = message.idempotency_key[:128]
        try:
            response = self._client.publish(**params)
        except (BotoCoreError, ClientError) as exc:
            raise PublishTransportFailure(str(exc)) from exc
        return response.get("MessageId")


def get_event_transport() -> Tuple[EventTransport, bool]:
    transport_name = config.events_transport()
    topic_arn = config.events_topic_arn()
    if not transport_name and topic_arn:
        transport_name = "sns"
    if not transport_name or transport_name in {"none", "noop", "disabled"}:
        return NoopTransport(), False
    if transport_name == "log":
        return LogTransport(), True
    if transport_name == "sns":
        if not topic_arn:
            raise ValueError("EVENTS_SNS_TOPIC_ARN is required for the sns transport")
        return SnsTransport(topic_arn, region_name=config.aws_region() or None), True
    raise ValueError(f"Unsupported events transport: {transport_name}")
