"""JSON export, import and share links for identity records."""
import json
from typing import Dict
from urllib.parse import quote

from healthpass.core.config import PUBLIC_BASE_URL
from healthpass.services.errors import InvalidRecord
from healthpass.services.record import IdentityRecord, validate

SHARE_TITLE = "Health Passport"


def reference_url(identifier: str, base_url: str = PUBLIC_BASE_URL) -> str:
    return f"{base_url.rstrip('/')}/health-passport/{quote(identifier, safe='')}"


def export_record(record: IdentityRecord) -> str:
    """Pretty-printed JSON document of ``record`` using the payload field names."""
    validate(record)
    return json.dumps(record.to_payload_dict(), indent=2, ensure_ascii=False)


def export_filename(record: IdentityRecord) -> str:
    return f"health-passport-{record.identifier}.json"


def import_record(text: str) -> IdentityRecord:
    """Inverse of ``export_record``."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise InvalidRecord("document", f"is not valid JSON ({exc.msg})") from exc
    if not isinstance(data, dict):
        raise InvalidRecord("document", "must be a JSON object")
    record = IdentityRecord.from_payload_dict(data)
    validate(record)
    return record


def share_message(record: IdentityRecord) -> Dict[str, str]:
    return {
        "title": SHARE_TITLE,
        "text": f"{SHARE_TITLE}: {record.display_name} ({record.category})",
        "url": record.reference_url,
    }
