from __future__ import annotations

from typing import Any, Dict

REDACT_KEYS = {
    "passphrase",
    "password",
    "secret",
    "token",
    "api_key",
    "key",
    "authorization",
    "email",
    "display_name",
    "identity_id",
}


def _redact(obj: Any) -> Any:
    if isinstance(obj, dict):
        out: Dict[str, Any] = {}
        for k, v in obj.items():
            if str(k).lower() in REDACT_KEYS:
                out[k] = "***REDACTED***"
            else:
                out[k] = _redact(v)
        return out
    if isinstance(obj, (list, tuple)):
        return [_redact(x) for x in obj]
    return obj


def redact(obj: Any) -> Any:
    return _redact(obj)


def mask_email(email: str) -> str:
    """
    Keep only the domain part for logs; the local part identifies a person.
    """
    s = str(email or "").strip().lower()
    if "@" not in s:
        return "<invalid>"
    return "***@" + s.rsplit("@", 1)[1]
