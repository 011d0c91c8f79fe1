"""Tests for result serialization."""

from datetime import UTC, date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from pydantic import BaseModel

from datacache.errors import SerializationError
from datacache.serialization import canonical_json, deserialize, serialize


class UserRow(BaseModel):
    id: int
    email: str
    created_at: datetime


class TestSerialize:
    """Tests for serialize."""

    def test_serialize_dict(self) -> None:
        """Test serializing a dictionary."""
        result = serialize({"key": "value", "number": 42})
        assert isinstance(result, str)
        assert '"key"' in result

    def test_datetime_is_tagged(self) -> None:
        """Test datetimes are written as tagged ISO strings."""
        moment = datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)
        assert serialize(moment) == '{"__d":"2024-01-02T03:04:05+00:00"}'

    def test_bytes_are_tagged_base64(self) -> None:
        """Test binary buffers are written as tagged base64."""
        assert serialize(b"\x00\xff") == '{"__b":"AP8="}'

    def test_pydantic_model_is_dumped(self) -> None:
        """Test pydantic rows are serialized as their fields."""
        row = UserRow(id=1, email="a@example.com", created_at=datetime(2024, 1, 1, tzinfo=UTC))
        restored = deserialize(serialize(row))
        assert restored == {
            "id": 1,
            "email": "a@example.com",
            "created_at": datetime(2024, 1, 1, tzinfo=UTC),
        }

    def test_unsupported_type_raises(self) -> None:
        """Test unsupported values raise SerializationError."""
        with pytest.raises(SerializationError):
            serialize({"handle": object()})


class TestDeserialize:
    """Tests for deserialize."""

    def test_deserialize_string(self) -> None:
        """Test deserializing a string."""
        assert deserialize('{"key": "value"}') == {"key": "value"}

    def test_deserialize_bytes(self) -> None:
        """Test deserializing bytes."""
        assert deserialize(b'{"key": "value"}') == {"key": "value"}

    def test_untagged_single_key_dict_passes_through(self) -> None:
        """Test ordinary one-key objects are not mistaken for tags."""
        assert deserialize('{"__x": "1"}') == {"__x": "1"}

    def test_malformed_json_raises(self) -> None:
        """Test malformed text raises SerializationError."""
        with pytest.raises(SerializationError):
            deserialize("{not json")

    def test_malformed_tag_payload_raises(self) -> None:
        """Test a tag with a bad payload raises SerializationError."""
        with pytest.raises(SerializationError):
            deserialize('{"__d": "yesterday"}')

    def test_non_string_tag_payload_raises(self) -> None:
        """Test a tag with a non-string payload raises SerializationError."""
        with pytest.raises(SerializationError):
            deserialize('{"__b": 12}')

    def test_malformed_escape_payload_raises(self) -> None:
        """Test an escaped object with a bad payload raises SerializationError."""
        with pytest.raises(SerializationError):
            deserialize('{"__o": "x"}')


class TestRoundTrip:
    """Round trips over the supported value shapes."""

    @pytest.mark.parametrize(
        "value",
        [
            None,
            True,
            0,
            3.5,
            "text",
            [1, "two", None],
            {"nested": {"data": [1, 2, 3]}},
            datetime(2024, 5, 6, 7, 8, 9, 123000, tzinfo=UTC),
            datetime(2024, 5, 6, 7, 8, 9, tzinfo=timezone(timedelta(hours=5))),
            datetime(2024, 5, 6, 7, 8, 9),
            date(2024, 5, 6),
            b"\x00\x01binary\xfe",
            Decimal("12.50"),
        ],
    )
    def test_round_trip(self, value: object) -> None:
        """Test serialize then deserialize returns an equal value."""
        assert deserialize(serialize(value)) == value

    def test_nested_rich_values(self) -> None:
        """Test rich values survive inside containers."""
        original = {
            "users": [
                {"id": 1, "joined": datetime(2023, 1, 1, tzinfo=UTC), "avatar": b"png"},
                {"id": 2, "joined": datetime(2023, 2, 1, tzinfo=UTC), "avatar": None},
            ],
            "balance": Decimal("-0.01"),
            "as_of": date(2024, 1, 1),
        }
        restored = deserialize(serialize(original))
        assert restored == original
        assert isinstance(restored["users"][0]["avatar"], bytes)
        assert isinstance(restored["users"][0]["joined"], datetime)

    def test_bytearray_comes_back_as_bytes(self) -> None:
        """Test mutable buffers restore as bytes."""
        assert deserialize(serialize(bytearray(b"abc"))) == b"abc"

    @pytest.mark.parametrize(
        "value",
        [
            {"__dec": "7"},
            {"__b": "not base64"},
            {"__d": "yesterday"},
            {"__date": 3},
            {"__o": ["a", 1]},
            [{"meta": {"__dec": "7"}}],
            {"__d": {"__b": "AP8="}},
        ],
    )
    def test_tag_shaped_dicts_round_trip(self, value: object) -> None:
        """Test plain dicts keyed by a reserved tag come back unchanged."""
        assert deserialize(serialize(value)) == value

    def test_tag_shaped_dict_inside_model(self) -> None:
        """Test reserved-tag dicts inside a dumped model stay plain."""

        class Setting(BaseModel):
            meta: dict[str, str]

        assert deserialize(serialize(Setting(meta={"__dec": "7"}))) == {"meta": {"__dec": "7"}}


class TestCanonicalJson:
    """Tests for canonical_json."""

    def test_key_order_does_not_matter(self) -> None:
        """Test equal dicts with different insertion order encode identically."""
        assert canonical_json({"a": 1, "b": {"x": 1, "y": 2}}) == canonical_json(
            {"b": {"y": 2, "x": 1}, "a": 1}
        )

    def test_rich_values_are_encoded(self) -> None:
        """Test datetimes encode in canonical form."""
        assert canonical_json({"at": datetime(2024, 1, 1, tzinfo=UTC)}) == (
            '{"at":{"__d":"2024-01-01T00:00:00+00:00"}}'
        )

    def test_tag_shaped_argument_differs_from_rich_value(self) -> None:
        """Test a literal tag dict does not encode like the value it mimics."""
        moment = datetime(2024, 1, 1, tzinfo=UTC)
        assert canonical_json(moment) != canonical_json({"__d": moment.isoformat()})
