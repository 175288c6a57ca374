"""Identity record of a health passport and its canonical payload."""
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from healthpass.services.errors import InvalidRecord

STATES = ("active", "inactive", "expired", "demo")

# Payload key -> record attribute. The order is part of the payload format.
PAYLOAD_FIELDS = (
    ("passport_id", "identifier"),
    ("name", "display_name"),
    ("blood_type", "category"),
    ("status", "state"),
    ("expiry", "expiry"),
    ("user_id", "owner_id"),
    ("url", "reference_url"),
)

REQUIRED_FIELDS = tuple(attr for _key, attr in PAYLOAD_FIELDS if attr != "expiry")

# Serialized in place of an absent expiry.
ABSENT = None


@dataclass(frozen=True)
class IdentityRecord:
    identifier: str
    display_name: str
    category: str
    state: str
    owner_id: int
    reference_url: str
    expiry: Optional[str] = None

    @classmethod
    def from_payload_dict(cls, data: Mapping[str, Any]) -> "IdentityRecord":
        """Build a record from a mapping keyed by payload field names."""
        values = {}
        for key, attr in PAYLOAD_FIELDS:
            if key not in data:
                if attr == "expiry":
                    continue
                raise InvalidRecord(attr)
            values[attr] = data[key]
        return cls(**values)

    def to_payload_dict(self) -> Dict[str, Any]:
        return {key: getattr(self, attr) for key, attr in PAYLOAD_FIELDS}


def parse_expiry(value: str) -> datetime:
    """Parse an ISO-8601 date or datetime; a trailing 'Z' means UTC."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def validate(record: IdentityRecord) -> None:
    for attr in REQUIRED_FIELDS:
        value = getattr(record, attr, None)
        if value is None:
            raise InvalidRecord(attr)
        if attr == "owner_id":
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidRecord(attr, "must be an integer")
        elif not isinstance(value, str):
            raise InvalidRecord(attr, "must be a string")
        elif not value.strip():
            raise InvalidRecord(attr)

    if record.state not in STATES:
        raise InvalidRecord("state", f"must be one of {', '.join(STATES)}")

    if record.expiry is not None:
        if not isinstance(record.expiry, str):
            raise InvalidRecord("expiry", "must be an ISO-8601 string")
        try:
            parse_expiry(record.expiry)
        except ValueError:
            raise InvalidRecord("expiry", "is not an ISO-8601 date/time") from None


def _encode(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


def serialize(record: IdentityRecord) -> str:
    """Serialize a record into its canonical payload string.

    The payload is a compact JSON object whose keys follow PAYLOAD_FIELDS, e.g.
    {"passport_id":"DC-0001","name":"Test User",...,"url":"https://..."}.
    Every key and value is JSON-encoded on its own, so separators inside a
    field are always escaped and two records share a payload only when all
    their fields are equal. An absent expiry is written as null.
    """
    validate(record)
    parts = []
    for key, attr in PAYLOAD_FIELDS:
        value = getattr(record, attr)
        if attr == "expiry" and value is None:
            value = ABSENT
        parts.append(f"{_encode(key)}:{_encode(value)}")
    return "{" + ",".join(parts) + "}"
