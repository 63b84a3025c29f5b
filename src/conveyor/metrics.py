"""OpenTelemetry metrics for consumers and publishers."""

from typing import Any

from opentelemetry import metrics
from opentelemetry.metrics import MeterProvider

from conveyor.message import ProcessResult

OUTCOME_ATTR = "conveyor.outcome"


class ConveyorMetrics:
    """Records consume and publish metrics.

    Tracks:
    - messaging.client.consumed.messages: Messages handled, by outcome
    - messaging.process.duration: Decode + handle + acknowledge time
    - messaging.client.sent.messages: Messages published
    - conveyor.publish.failed.messages: Messages that exhausted retries
    - messaging.client.operation.duration: Batch request duration

    Uses the global MeterProvider unless one is given, so metrics are
    no-ops until the application configures OpenTelemetry.
    """

    def __init__(
        self,
        meter_provider: MeterProvider | None = None,
        messaging_system: str = "aws_sqs",
    ) -> None:
        provider = meter_provider or metrics.get_meter_provider()
        meter = provider.get_meter("conveyor")
        self._system = messaging_system

        self._consumed_messages = meter.create_counter(
            "messaging.client.consumed.messages",
            unit="{message}",
            description="Number of messages delivered to the application",
        )
        self._process_duration = meter.create_histogram(
            "messaging.process.duration",
            unit="s",
            description="Duration of processing operation",
        )
        self._sent_messages = meter.create_counter(
            "messaging.client.sent.messages",
            unit="{message}",
            description="Number of messages producer attempted to send",
        )
        self._failed_messages = meter.create_counter(
            "conveyor.publish.failed.messages",
            unit="{message}",
            description="Number of messages that could not be published",
        )
        self._operation_duration = meter.create_histogram(
            "messaging.client.operation.duration",
            unit="s",
            description="Duration of messaging operation",
        )

    def _attributes(self, operation: str, destination: str | None) -> dict[str, Any]:
        attributes: dict[str, Any] = {
            "messaging.system": self._system,
            "messaging.operation.name": operation,
        }
        if destination:
            attributes["messaging.destination.name"] = destination
        return attributes

    def record_processed(
        self,
        result: ProcessResult,
        duration_s: float,
        destination: str | None = None,
    ) -> None:
        attributes = self._attributes("process", destination)
        attributes[OUTCOME_ATTR] = result.value
        self._consumed_messages.add(1, attributes)
        self._process_duration.record(duration_s, attributes)

    def record_batch(
        self,
        sent: int,
        duration_s: float,
        destination: str | None = None,
        error_type: str | None = None,
    ) -> None:
        attributes = self._attributes("send", destination)
        if error_type:
            attributes["error.type"] = error_type
        if sent:
            self._sent_messages.add(sent, attributes)
        self._operation_duration.record(duration_s, attributes)

    def record_publish_failures(
        self, count: int, destination: str | None = None
    ) -> None:
        if count:
            self._failed_messages.add(count, self._attributes("send", destination))
