"""Configuration dataclasses for consumers and publishers."""

from dataclasses import dataclass, field

from conveyor.limitation import Limitation, Unlimited

# SQS/SNS service limits
MAX_WAIT_TIME_S = 20
MAX_MESSAGES_PER_RECEIVE = 10
MAX_VISIBILITY_TIMEOUT_S = 43200
MAX_BATCH_ENTRIES = 10


@dataclass
class BackoffConfig:
    """Exponential backoff used between retries of transient AWS errors."""

    initial_delay_s: float = 1.0
    """Delay before the first retry."""

    max_delay_s: float = 30.0
    """Upper bound for any single delay."""

    multiplier: float = 2.0
    """Factor applied to the delay after each attempt."""

    jitter: float = 0.1
    """Random jitter factor (0.1 = ±10% randomization)."""

    def __post_init__(self) -> None:
        if self.initial_delay_s < 0 or self.max_delay_s < 0:
            msg = "initial_delay_s and max_delay_s must be >= 0"
            raise ValueError(msg)
        if self.initial_delay_s > self.max_delay_s:
            msg = "initial_delay_s must be <= max_delay_s"
            raise ValueError(msg)
        if self.multiplier < 1:
            msg = "multiplier must be >= 1"
            raise ValueError(msg)
        if not 0 <= self.jitter <= 1:
            msg = "jitter must be between 0 and 1"
            raise ValueError(msg)


@dataclass
class ReceiveSettings:
    """Long-polling parameters for ReceiveMessage."""

    wait_time_s: int = MAX_WAIT_TIME_S
    """Long polling wait time (max 20s)."""

    max_messages: int = MAX_MESSAGES_PER_RECEIVE
    """Messages to fetch per poll (max 10)."""

    visibility_timeout_s: int | None = None
    """Overrides the queue's visibility timeout for received messages."""

    def __post_init__(self) -> None:
        if not 0 <= self.wait_time_s <= MAX_WAIT_TIME_S:
            msg = f"wait_time_s must be between 0 and {MAX_WAIT_TIME_S}"
            raise ValueError(msg)
        if not 1 <= self.max_messages <= MAX_MESSAGES_PER_RECEIVE:
            msg = f"max_messages must be between 1 and {MAX_MESSAGES_PER_RECEIVE}"
            raise ValueError(msg)
        if self.visibility_timeout_s is not None and not (
            0 <= self.visibility_timeout_s <= MAX_VISIBILITY_TIMEOUT_S
        ):
            msg = (
                "visibility_timeout_s must be between 0 and "
                f"{MAX_VISIBILITY_TIMEOUT_S}"
            )
            raise ValueError(msg)


@dataclass
class DeadLetterSettings:
    """Redrive policy moving repeatedly failing messages to a second queue."""

    queue_name: str
    """Name of the dead-letter queue (created if missing)."""

    max_receive_count: int = 5
    """Receives after which SQS moves the message to the dead-letter queue."""

    def __post_init__(self) -> None:
        if self.max_receive_count < 1:
            msg = "max_receive_count must be >= 1"
            raise ValueError(msg)


@dataclass
class ConsumerSettings:
    """Configuration for SQSConsumer."""

    queue_name: str
    """Queue to consume from."""

    topics: list[str] = field(default_factory=list)
    """SNS topic ARNs the queue gets subscribed to."""

    parallelism: int = 1
    """Number of messages handled concurrently."""

    kms_key_alias: str | None = None
    """KMS key used for server-side encryption of a newly created queue."""

    limitation: Limitation = field(default_factory=Unlimited)
    """Decides when the consumer stops."""

    receive: ReceiveSettings = field(default_factory=ReceiveSettings)

    reject_visibility_timeout_s: int = 0
    """Visibility timeout set on rejected messages (0 = redeliver now)."""

    backoff: BackoffConfig = field(default_factory=BackoffConfig)
    """Backoff between polls after a transient error."""

    dead_letter: DeadLetterSettings | None = None

    create_queue_if_missing: bool = True
    """Auto-create the queue (and dead-letter queue) if it doesn't exist."""

    def __post_init__(self) -> None:
        if not self.queue_name:
            msg = "queue_name must not be empty"
            raise ValueError(msg)
        if self.parallelism < 1:
            msg = "parallelism must be >= 1"
            raise ValueError(msg)
        if not 0 <= self.reject_visibility_timeout_s <= MAX_VISIBILITY_TIMEOUT_S:
            msg = (
                "reject_visibility_timeout_s must be between 0 and "
                f"{MAX_VISIBILITY_TIMEOUT_S}"
            )
            raise ValueError(msg)


@dataclass
class PublisherSettings:
    """Configuration for BatchPublisher."""

    max_batch_size: int = MAX_BATCH_ENTRIES
    """Entries per batch request (max 10)."""

    concurrency: int = 4
    """Batch requests in flight at once."""

    max_retries: int = 3
    """Resubmissions of a failed entry before it is reported as failed."""

    backoff: BackoffConfig = field(default_factory=BackoffConfig)

    def __post_init__(self) -> None:
        if not 1 <= self.max_batch_size <= MAX_BATCH_ENTRIES:
            msg = f"max_batch_size must be between 1 and {MAX_BATCH_ENTRIES}"
            raise ValueError(msg)
        if self.concurrency < 1:
            msg = "concurrency must be >= 1"
            raise ValueError(msg)
        if self.max_retries < 0:
            msg = "max_retries must be >= 0"
            raise ValueError(msg)
