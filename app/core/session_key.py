"""Counterparty key handling: JIDs from the gateway and operator-decorated session ids."""

from __future__ import annotations

import re
from typing import NamedTuple, Optional

from app.constants.messages import DEFAULT_CONTACT_NAME

_LEADING_PHONE = re.compile(r"^\d{10,15}$")
_ANY_PHONE = re.compile(r"(\d{10,15})")


class SessionKeyParts(NamedTuple):
    phone: str
    name: Optional[str]


def strip_jid(remote_jid: str) -> str:
    """'5599999999999@s.whatsapp.net' -> '5599999999999'; device suffix ':12' dropped too."""
    local = (remote_jid or "").strip().split("@", 1)[0]
    return local.split(":", 1)[0]


def parse_session_key(session_id: str) -> SessionKeyParts:
    """
    Split '<phone>-<display name>' into its parts.

    Keys without a leading 10-15 digit phone fall back to the first digit run
    in the key, then to the key itself; the name is None when absent.
    """
    key = (session_id or "").strip()
    if not key:
        return SessionKeyParts(phone="", name=None)
    head, sep, tail = key.partition("-")
    if sep and _LEADING_PHONE.match(head):
        return SessionKeyParts(phone=head, name=tail.strip() or None)
    match = _ANY_PHONE.search(key)
    return SessionKeyParts(phone=match.group(1) if match else key, name=None)


def contact_name_for(session_id: str, push_name: Optional[str] = None) -> str:
    """Name appended to the session key wins over the provider's push name."""
    parts = parse_session_key(session_id)
    if parts.name:
        return parts.name
    if push_name and push_name.strip():
        return push_name.strip()
    return DEFAULT_CONTACT_NAME
