"""Decoded QR payloads.

The camera layer hands over the raw string embedded in the QR code; user
QR codes carry a JSON object such as::

    {"type": "user_profile", "userId": "...", "email": "...", "version": "1.0"}
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Union

from core.constants import ScanType
from core.exceptions import ScanPayloadError


def _text(data: Mapping[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = data.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


@dataclass(frozen=True)
class ScanPayload:
    type: ScanType
    user_id: Optional[str] = None
    email: Optional[str] = None
    version: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    event_id: Optional[str] = None
    event_title: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def is_user_profile(self) -> bool:
        return self.type is ScanType.USER_PROFILE

    @property
    def identifies_user(self) -> bool:
        return self.is_user_profile and bool(self.user_id or self.email)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ScanPayload":
        return cls(
            type=ScanType.normalize(data.get("type")),
            user_id=_text(data, "userId", "user_id"),
            email=_text(data, "email"),
            version=_text(data, "version"),
            first_name=_text(data, "firstName", "first_name"),
            last_name=_text(data, "lastName", "last_name"),
            phone=_text(data, "phone"),
            event_id=_text(data, "eventId", "event_id"),
            event_title=_text(data, "eventTitle", "event_title"),
            raw=dict(data),
        )


def parse_scan_payload(data: Union[str, bytes, Mapping[str, Any], ScanPayload]) -> ScanPayload:
    """Parse a decoded QR string into a :class:`ScanPayload`.

    Well-formed JSON objects of an unrecognized type parse as
    ``ScanType.UNKNOWN``.

    Raises:
        ScanPayloadError: If the data is not a JSON object
    """
    if isinstance(data, ScanPayload):
        return data
    if isinstance(data, Mapping):
        return ScanPayload.from_mapping(data)

    if isinstance(data, bytes):
        try:
            data = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ScanPayloadError("QR payload is not valid UTF-8") from e

    text = (data or "").strip()
    if not text:
        raise ScanPayloadError("QR payload is empty")
    try:
        decoded = json.loads(text)
    except json.JSONDecodeError as e:
        raise ScanPayloadError("QR payload is not valid JSON") from e
    if not isinstance(decoded, dict):
        raise ScanPayloadError("QR payload must be a JSON object")
    return ScanPayload.from_mapping(decoded)
