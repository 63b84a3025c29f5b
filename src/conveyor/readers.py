"""Readers turning an unwrapped payload into a typed value.

A reader may return None to signal that the message carries no event for
this consumer; such messages are deleted without calling the handler.
Any exception raised by a reader marks the message as PARSE_FAILED.
"""

import json
from collections.abc import Callable
from typing import Any, Generic, Protocol, TypeVar, runtime_checkable

from pydantic import BaseModel

T = TypeVar("T")
T_co = TypeVar("T_co", covariant=True)
ModelT = TypeVar("ModelT", bound=BaseModel)


@runtime_checkable
class MessageReader(Protocol[T_co]):
    """Protocol for payload readers."""

    def read(self, payload: str) -> T_co | None:
        """Deserialize payload. Raise on malformed input."""
        ...


class StringReader:
    """Passes the payload through unchanged."""

    def read(self, payload: str) -> str:
        return payload


class JsonReader:
    """Parses the payload as JSON."""

    def read(self, payload: str) -> Any:
        return json.loads(payload)


class PydanticReader(Generic[ModelT]):
    """Validates the payload as JSON against a pydantic model."""

    def __init__(self, model: type[ModelT]) -> None:
        if not (isinstance(model, type) and issubclass(model, BaseModel)):
            msg = f"Expected BaseModel subclass, got {model!r}"
            raise TypeError(msg)
        self._model = model

    def read(self, payload: str) -> ModelT:
        return self._model.model_validate_json(payload)


class FunctionReader(Generic[T]):
    """Adapts a plain function to the MessageReader protocol."""

    def __init__(self, func: Callable[[str], T | None]) -> None:
        self._func = func

    def read(self, payload: str) -> T | None:
        return self._func(payload)
