"""Email access used by invoice lookup.

:class:`EmailSource` is the narrow read-only surface the pipeline needs.
:class:`GmailEmailSource` implements it over an already-authorized Gmail API
service object (``googleapiclient.discovery.build("gmail", "v1", ...)``);
acquiring that object (OAuth, token refresh) is the host application's job
and the service is passed in, never built here.
"""

from __future__ import annotations

import base64
import binascii
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol

from ..logging_setup import get_logger

logger = get_logger("backoffice.mail.sources")


@dataclass(frozen=True, slots=True)
class EmailMessage:
    id: str
    subject: str
    sender: str
    html_body: str
    internal_date: datetime | None = None


class EmailSource(Protocol):
    def get_message(self, message_id: str) -> EmailMessage: ...

    def list_messages(self, query: str, max_results: int) -> list[str]:
        """Message ids matching ``query``, newest first."""
        ...


def decode_body_data(data: str | None) -> str:
    """Decode Gmail's base64url body data (padding optional) to text."""

    if not data:
        return ""
    padded = data + "=" * (-len(data) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
    except (binascii.Error, ValueError, UnicodeEncodeError):
        logger.warning("Undecodable message body (%d chars)", len(data))
        return ""
    return raw.decode("utf-8", errors="replace")


def _find_part(parts: Sequence[Mapping[str, Any]], mime_type: str) -> Mapping[str, Any] | None:
    for part in parts:
        if part.get("mimeType") == mime_type and (part.get("body") or {}).get("data"):
            return part
        nested = _find_part(part.get("parts") or [], mime_type)
        if nested is not None:
            return nested
    return None


def extract_html_body(payload: Mapping[str, Any]) -> str:
    """Pick the HTML part of a Gmail payload, falling back to the first part/body."""

    parts = payload.get("parts") or []
    chosen = _find_part(parts, "text/html")
    if chosen is None and parts:
        chosen = parts[0]
    data = (chosen or {}).get("body", {}).get("data") if chosen else None
    if not data:
        data = (payload.get("body") or {}).get("data")
    return decode_body_data(data)


def _header(payload: Mapping[str, Any], name: str) -> str:
    for h in payload.get("headers") or []:
        if str(h.get("name", "")).lower() == name.lower():
            return str(h.get("value") or "")
    return ""


class GmailEmailSource:
    """:class:`EmailSource` over an injected Gmail API ``service``."""

    def __init__(self, service: Any, *, user_id: str = "me") -> None:
        self._service = service
        self._user_id = user_id

    def list_messages(self, query: str, max_results: int) -> list[str]:
        response = (
            self._service.users()
            .messages()
            .list(userId=self._user_id, q=query, maxResults=max_results)
            .execute()
        )
        return [m["id"] for m in response.get("messages") or [] if m.get("id")]

    def get_message(self, message_id: str) -> EmailMessage:
        message = (
            self._service.users()
            .messages()
            .get(userId=self._user_id, id=message_id, format="full")
            .execute()
        )
        payload = message.get("payload") or {}
        internal_date = None
        if message.get("internalDate"):
            internal_date = datetime.fromtimestamp(int(message["internalDate"]) / 1000, tz=UTC)
        return EmailMessage(
            id=str(message.get("id") or message_id),
            subject=_header(payload, "Subject"),
            sender=_header(payload, "From"),
            html_body=extract_html_body(payload),
            internal_date=internal_date,
        )


__all__ = [
    "EmailMessage",
    "EmailSource",
    "GmailEmailSource",
    "decode_body_data",
    "extract_html_body",
]
