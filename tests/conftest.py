"""Test fixtures for conveyor."""

import uuid
from dataclasses import dataclass, field
from typing import Any

import aioboto3
import anyio
import pytest
from botocore.exceptions import ClientError

try:
    import docker
    from testcontainers.localstack import LocalStackContainer

    TESTCONTAINERS_AVAILABLE = True
except ImportError:
    docker = None  # type: ignore[assignment]
    TESTCONTAINERS_AVAILABLE = False
    LocalStackContainer = None  # type: ignore[misc, assignment]

ACCOUNT_ID = "000000000000"
REGION = "us-east-1"
DEFAULT_VISIBILITY_TIMEOUT = 30.0
EMPTY_POLL_DELAY = 0.005


def client_error(code: str, operation: str = "Operation") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


@dataclass
class FakeQueueMessage:
    message_id: str
    body: str
    message_attributes: dict[str, Any] = field(default_factory=dict)
    visible_at: float = 0.0
    receive_count: int = 0
    receipt_handle: str | None = None


@dataclass
class FakeQueue:
    name: str
    url: str
    arn: str
    attributes: dict[str, str] = field(default_factory=dict)
    messages: list[FakeQueueMessage] = field(default_factory=list)


class FakeSQSClient:
    """In-memory stand-in for an aioboto3 SQS client.

    Time is virtual: visibility timeouts only elapse through advance().
    """

    def __init__(self) -> None:
        self.queues: dict[str, FakeQueue] = {}
        self.now = 0.0
        self.receive_errors: list[Exception] = []
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.received_total = 0

    # helpers

    def _url(self, name: str) -> str:
        return f"http://localhost:4566/{ACCOUNT_ID}/{name}"

    def _queue(self, url: str, operation: str) -> FakeQueue:
        queue = self.queues.get(url)
        if queue is None:
            raise client_error("AWS.SimpleQueueService.NonExistentQueue", operation)
        return queue

    def add_queue(self, name: str, **attributes: str) -> str:
        url = self._url(name)
        if url not in self.queues:
            self.queues[url] = FakeQueue(
                name=name,
                url=url,
                arn=f"arn:aws:sqs:{REGION}:{ACCOUNT_ID}:{name}",
                attributes=dict(attributes),
            )
        return url

    def add_message(self, name: str, body: str) -> None:
        url = self.add_queue(name)
        self.queues[url].messages.append(
            FakeQueueMessage(message_id=str(uuid.uuid4()), body=body)
        )

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def message_count(self, name: str) -> int:
        return len(self.queues[self._url(name)].messages)

    def visible_count(self, name: str) -> int:
        queue = self.queues[self._url(name)]
        return sum(1 for m in queue.messages if m.visible_at <= self.now)

    def calls_to(self, operation: str) -> list[dict[str, Any]]:
        return [kwargs for name, kwargs in self.calls if name == operation]

    # SQS API

    async def create_queue(
        self, QueueName: str, Attributes: dict[str, str] | None = None
    ) -> dict[str, Any]:
        self.calls.append(("create_queue", {"QueueName": QueueName}))
        url = self.add_queue(QueueName, **(Attributes or {}))
        return {"QueueUrl": url}

    async def get_queue_url(self, QueueName: str) -> dict[str, Any]:
        url = self._url(QueueName)
        self._queue(url, "GetQueueUrl")
        return {"QueueUrl": url}

    async def get_queue_attributes(
        self, QueueUrl: str, AttributeNames: list[str]
    ) -> dict[str, Any]:
        queue = self._queue(QueueUrl, "GetQueueAttributes")
        return {"Attributes": {"QueueArn": queue.arn, **queue.attributes}}

    async def set_queue_attributes(
        self, QueueUrl: str, Attributes: dict[str, str]
    ) -> dict[str, Any]:
        self.calls.append(("set_queue_attributes", {"Attributes": Attributes}))
        self._queue(QueueUrl, "SetQueueAttributes").attributes.update(Attributes)
        return {}

    async def receive_message(
        self,
        QueueUrl: str,
        MaxNumberOfMessages: int = 1,
        WaitTimeSeconds: int = 0,
        VisibilityTimeout: int | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        self.calls.append(
            ("receive_message", {"MaxNumberOfMessages": MaxNumberOfMessages})
        )
        if self.receive_errors:
            raise self.receive_errors.pop(0)
        queue = self._queue(QueueUrl, "ReceiveMessage")
        if VisibilityTimeout is None:
            VisibilityTimeout = int(
                queue.attributes.get("VisibilityTimeout", DEFAULT_VISIBILITY_TIMEOUT)
            )

        visible = [m for m in queue.messages if m.visible_at <= self.now]
        batch = visible[:MaxNumberOfMessages]
        if not batch:
            await anyio.sleep(EMPTY_POLL_DELAY)
            return {}

        entries = []
        for message in batch:
            message.receive_count += 1
            message.visible_at = self.now + VisibilityTimeout
            message.receipt_handle = str(uuid.uuid4())
            entries.append(
                {
                    "MessageId": message.message_id,
                    "ReceiptHandle": message.receipt_handle,
                    "Body": message.body,
                    "Attributes": {
                        "ApproximateReceiveCount": str(message.receive_count)
                    },
                    "MessageAttributes": message.message_attributes,
                }
            )
        self.received_total += len(entries)
        return {"Messages": entries}

    def _by_handle(self, queue: FakeQueue, receipt_handle: str) -> FakeQueueMessage:
        for message in queue.messages:
            if message.receipt_handle == receipt_handle:
                return message
        raise client_error("ReceiptHandleIsInvalid")

    async def delete_message(self, QueueUrl: str, ReceiptHandle: str) -> dict[str, Any]:
        self.calls.append(("delete_message", {"ReceiptHandle": ReceiptHandle}))
        queue = self._queue(QueueUrl, "DeleteMessage")
        queue.messages.remove(self._by_handle(queue, ReceiptHandle))
        return {}

    async def change_message_visibility(
        self, QueueUrl: str, ReceiptHandle: str, VisibilityTimeout: int
    ) -> dict[str, Any]:
        self.calls.append(
            (
                "change_message_visibility",
                {"ReceiptHandle": ReceiptHandle, "VisibilityTimeout": VisibilityTimeout},
            )
        )
        queue = self._queue(QueueUrl, "ChangeMessageVisibility")
        self._by_handle(queue, ReceiptHandle).visible_at = self.now + VisibilityTimeout
        return {}

    async def send_message_batch(
        self, QueueUrl: str, Entries: list[dict[str, Any]]
    ) -> dict[str, Any]:
        self.calls.append(("send_message_batch", {"Entries": Entries}))
        queue = self._queue(QueueUrl, "SendMessageBatch")
        successful = []
        for entry in Entries:
            message_id = str(uuid.uuid4())
            queue.messages.append(
                FakeQueueMessage(
                    message_id=message_id,
                    body=entry["MessageBody"],
                    message_attributes=entry.get("MessageAttributes", {}),
                )
            )
            successful.append({"Id": entry["Id"], "MessageId": message_id})
        return {"Successful": successful, "Failed": []}


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def fake_sqs() -> FakeSQSClient:
    return FakeSQSClient()


def docker_available() -> bool:
    """Check if Docker is available."""
    if not TESTCONTAINERS_AVAILABLE or docker is None:
        return False
    try:
        client = docker.from_env()
        client.ping()
        return True
    except Exception:
        return False


@pytest.fixture(scope="session")
def localstack():
    """Start localstack container for the test session."""
    if not docker_available():
        pytest.skip("Docker not available")

    with LocalStackContainer(image="localstack/localstack:latest") as container:
        container.with_services("sqs", "sns")
        yield container


@pytest.fixture
def endpoint_url(localstack: LocalStackContainer) -> str:
    """Get the localstack endpoint URL."""
    return localstack.get_url()


@pytest.fixture
def session() -> aioboto3.Session:
    """Create an aioboto3 session."""
    return aioboto3.Session(
        aws_access_key_id="test",
        aws_secret_access_key="test",
        region_name=REGION,
    )
