"""
flowengine/engine/messages.py
─────────────────────────────
Helpers over the inbound message shape emitted by the transport:

    {
      "key":     {"remoteJid": "5511999990000@s.whatsapp.net", "fromMe": False, "id": "..."},
      "message": {"conversation": "hi"}                      # plain text
             or  {"extendedTextMessage": {"text": "hi"}}     # text with preview/quote
    }
"""

from __future__ import annotations
from typing import Any

BROADCAST_SUFFIX = "@broadcast"


def extract_text(message: dict[str, Any] | None) -> str:
    """Plain text of a message, or '' for media / unsupported shapes."""
    content = (message or {}).get("message") or {}
    text = content.get("conversation")
    if text:
        return text
    extended = content.get("extendedTextMessage") or {}
    return extended.get("text") or ""


def remote_address(message: dict[str, Any]) -> str | None:
    return (message.get("key") or {}).get("remoteJid")


def is_broadcast(address: str | None) -> bool:
    return bool(address) and address.endswith(BROADCAST_SUFFIX)


def should_process(message: dict[str, Any]) -> bool:
    """Inbound, addressed to us directly, and carrying content."""
    key = message.get("key") or {}
    if not message.get("message") or key.get("fromMe"):
        return False
    address = key.get("remoteJid")
    return bool(address) and not is_broadcast(address)
