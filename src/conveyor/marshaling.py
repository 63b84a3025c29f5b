"""Conversion between conveyor messages and SQS/SNS wire formats.

SNS wraps every message it delivers to SQS in a JSON envelope unless raw
message delivery is enabled on the subscription. Consumers unwrap it here.
"""

import base64
import json
from typing import TYPE_CHECKING, Any

from conveyor.message import OutboundMessage, RawMessage

if TYPE_CHECKING:
    from types_aiobotocore_sns.type_defs import PublishBatchRequestEntryTypeDef
    from types_aiobotocore_sqs.type_defs import (
        MessageAttributeValueTypeDef,
        MessageTypeDef,
        SendMessageBatchRequestEntryTypeDef,
    )

ENVELOPE_MESSAGE_FIELD = "Message"
ENVELOPE_ATTRIBUTES_FIELD = "MessageAttributes"
RECEIVE_COUNT_ATTR = "ApproximateReceiveCount"


def encode_message_body(payload: bytes | str) -> str:
    """Encode payload for an SQS/SNS message body.

    Attempts UTF-8 decode first, falls back to base64 encoding.
    """
    if isinstance(payload, str):
        return payload
    try:
        return payload.decode("utf-8")
    except UnicodeDecodeError:
        return base64.b64encode(payload).decode("ascii")


def unwrap_sns_envelope(body: str) -> tuple[str, dict[str, str]]:
    """Unwrap an SNS envelope from an SQS message body.

    Returns (payload, sns_message_attributes). Bodies that are not an
    envelope come back unchanged with no attributes.
    """
    try:
        envelope = json.loads(body)
    except (json.JSONDecodeError, TypeError):
        return body, {}
    if not isinstance(envelope, dict):
        return body, {}
    payload = envelope.get(ENVELOPE_MESSAGE_FIELD)
    if not isinstance(payload, str):
        return body, {}

    attributes: dict[str, str] = {}
    raw_attrs = envelope.get(ENVELOPE_ATTRIBUTES_FIELD)
    if isinstance(raw_attrs, dict):
        for key, value in raw_attrs.items():
            if isinstance(value, dict) and isinstance(value.get("Value"), str):
                attributes[key] = value["Value"]
    return payload, attributes


def decode_envelope(body: str) -> str:
    """Return the payload of an SNS envelope, or body if it isn't one."""
    payload, _ = unwrap_sns_envelope(body)
    return payload


def from_sqs_message(sqs_msg: "MessageTypeDef") -> RawMessage:
    """Convert a ReceiveMessage entry to a RawMessage."""
    system_attrs = sqs_msg.get("Attributes", {})
    try:
        receive_count = int(system_attrs.get(RECEIVE_COUNT_ATTR, "1"))
    except ValueError:
        receive_count = 1

    # Only string-valued attributes are kept
    attributes: dict[str, str] = {}
    for key, value in sqs_msg.get("MessageAttributes", {}).items():
        str_value = value.get("StringValue")
        if str_value is not None:
            attributes[key] = str_value

    return RawMessage(
        message_id=sqs_msg.get("MessageId", ""),
        body=sqs_msg.get("Body", ""),
        receipt_handle=sqs_msg["ReceiptHandle"],
        receive_count=receive_count,
        attributes=attributes,
    )


def to_message_attributes(
    attributes: dict[str, str],
) -> dict[str, "MessageAttributeValueTypeDef"]:
    """Convert string attributes to SQS/SNS message attributes."""
    return {
        key: {"DataType": "String", "StringValue": value}
        for key, value in attributes.items()
    }


def to_sqs_entry(
    entry_id: str, message: OutboundMessage
) -> "SendMessageBatchRequestEntryTypeDef":
    """Build a SendMessageBatch entry."""
    entry: dict[str, Any] = {
        "Id": entry_id,
        "MessageBody": encode_message_body(message.payload),
    }
    if message.attributes:
        entry["MessageAttributes"] = to_message_attributes(message.attributes)
    if message.group_id is not None:
        entry["MessageGroupId"] = message.group_id
    if message.deduplication_id is not None:
        entry["MessageDeduplicationId"] = message.deduplication_id
    if message.delay_s is not None:
        entry["DelaySeconds"] = message.delay_s
    return entry  # type: ignore[return-value]


def to_sns_entry(
    entry_id: str, message: OutboundMessage
) -> "PublishBatchRequestEntryTypeDef":
    """Build a PublishBatch entry."""
    entry: dict[str, Any] = {
        "Id": entry_id,
        "Message": encode_message_body(message.payload),
    }
    if message.attributes:
        entry["MessageAttributes"] = to_message_attributes(message.attributes)
    if message.group_id is not None:
        entry["MessageGroupId"] = message.group_id
    if message.deduplication_id is not None:
        entry["MessageDeduplicationId"] = message.deduplication_id
    return entry  # type: ignore[return-value]
