"""Tests for payload readers."""

import json

import pytest
from pydantic import BaseModel, ValidationError

from conveyor import (
    FunctionReader,
    JsonReader,
    MessageReader,
    PydanticReader,
    StringReader,
)


class Order(BaseModel):
    order_id: str
    quantity: int


def test_string_reader() -> None:
    assert StringReader().read("raw") == "raw"


def test_json_reader() -> None:
    assert JsonReader().read('{"x": 1}') == {"x": 1}
    with pytest.raises(json.JSONDecodeError):
        JsonReader().read("not json")


class TestPydanticReader:
    def test_reads_model(self) -> None:
        reader = PydanticReader(Order)
        order = reader.read('{"order_id": "o-1", "quantity": 2}')
        assert order == Order(order_id="o-1", quantity=2)

    def test_invalid_payload_raises(self) -> None:
        with pytest.raises(ValidationError):
            PydanticReader(Order).read('{"order_id": "o-1"}')

    def test_rejects_non_model(self) -> None:
        with pytest.raises(TypeError, match="BaseModel"):
            PydanticReader(dict)  # type: ignore[type-var]


def test_function_reader_can_skip() -> None:
    reader = FunctionReader(lambda payload: None if payload == "ping" else payload)
    assert reader.read("ping") is None
    assert reader.read("order") == "order"


def test_readers_satisfy_protocol() -> None:
    for reader in (StringReader(), JsonReader(), PydanticReader(Order)):
        assert isinstance(reader, MessageReader)
