"""Keep room passkeys out of logs.

Passkeys show up in three places: request payloads sent to the store, the
command line (``--passkey``), and console lines such as ``/room vault abc``.
"""

from __future__ import annotations

import re
from typing import Any, Sequence

MASK = "[REDACTED]"
PASSKEY_FIELDS = frozenset({"passkey", "passkey_digest"})

_INLINE_RE = re.compile(r"(passkey(?:_digest)?[\"']?\s*[:=]\s*[\"']?)([^\"'\s,}&]+)", flags=re.IGNORECASE)
_ROOM_COMMAND_RE = re.compile(r"^(\s*/room\s+\S+\s+)(\S+)")


def redact_text(text: str) -> str:
    """Mask ``passkey=...`` style fragments and the passkey of a ``/room`` command."""
    rendered = _ROOM_COMMAND_RE.sub(rf"\1{MASK}", str(text))
    return _INLINE_RE.sub(rf"\1{MASK}", rendered)


def redact_argv(argv: Sequence[str]) -> list[str]:
    masked: list[str] = []
    hide_next = False
    for arg in argv:
        if hide_next:
            masked.append(MASK)
            hide_next = False
        elif arg == "--passkey":
            masked.append(arg)
            hide_next = True
        elif arg.startswith("--passkey="):
            masked.append(f"--passkey={MASK}")
        else:
            masked.append(arg)
    return masked


def redact_mapping(obj: dict[str, Any]) -> dict[str, Any]:
    """Copy ``obj`` with passkey fields masked at any depth. Absent passkeys stay ``None``."""

    def scrub(value: Any) -> Any:
        if isinstance(value, dict):
            return redact_mapping(value)
        if isinstance(value, list):
            return [scrub(item) for item in value]
        return value

    return {
        key: (MASK if value is not None else None) if str(key).lower() in PASSKEY_FIELDS else scrub(value)
        for key, value in obj.items()
    }
