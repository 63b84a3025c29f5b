"""conveyor: reliable SQS consumption and batched SQS/SNS publishing."""

from conveyor.acknowledger import Acknowledger
from conveyor.backoff import Backoff
from conveyor.client import Conveyor
from conveyor.config import (
    BackoffConfig,
    ConsumerSettings,
    DeadLetterSettings,
    PublisherSettings,
    ReceiveSettings,
)
from conveyor.consumer import ConsumerState, SQSConsumer
from conveyor.errors import (
    ConsumerError,
    ConveyorError,
    ProvisioningError,
    PublishError,
)
from conveyor.limitation import CountLimitation, Limitation, Unlimited
from conveyor.marshaling import decode_envelope, unwrap_sns_envelope
from conveyor.message import (
    Consumed,
    OutboundMessage,
    ProcessResult,
    RawMessage,
    Rejected,
)
from conveyor.metrics import ConveyorMetrics
from conveyor.provisioning import QueueInfo, QueueProvisioner
from conveyor.publisher import BatchPublisher, PublishFailure, PublishResult
from conveyor.readers import (
    FunctionReader,
    JsonReader,
    MessageReader,
    PydanticReader,
    StringReader,
)
from conveyor.shutdown import graceful_shutdown
from conveyor.targets import BatchResult, BatchTarget, SNSBatchTarget, SQSBatchTarget

__all__ = [
    # consuming
    "Acknowledger",
    "ConsumerSettings",
    "ConsumerState",
    "Consumed",
    "CountLimitation",
    "DeadLetterSettings",
    "Limitation",
    "ProcessResult",
    "RawMessage",
    "ReceiveSettings",
    "Rejected",
    "SQSConsumer",
    "Unlimited",
    # readers
    "FunctionReader",
    "JsonReader",
    "MessageReader",
    "PydanticReader",
    "StringReader",
    "decode_envelope",
    "unwrap_sns_envelope",
    # publishing
    "BatchPublisher",
    "BatchResult",
    "BatchTarget",
    "OutboundMessage",
    "PublishFailure",
    "PublishResult",
    "PublisherSettings",
    "SNSBatchTarget",
    "SQSBatchTarget",
    # setup
    "Conveyor",
    "QueueInfo",
    "QueueProvisioner",
    # shared
    "Backoff",
    "BackoffConfig",
    "ConsumerError",
    "ConveyorError",
    "ConveyorMetrics",
    "ProvisioningError",
    "PublishError",
    "graceful_shutdown",
]
