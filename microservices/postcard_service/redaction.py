"""PII redaction for vendor audit log payloads"""

from typing import Any, Dict, Optional


REDACTED = "[REDACTED]"

_ADDRESS_PII_FIELDS = ("name", "company", "address_line1", "address_line2")
_ZIP_FIELDS = ("address_zip", "zip_code")


def redact_zip(value: Optional[str]) -> Optional[str]:
    if not value:
        return value
    return f"{str(value)[:3]}**"


def redact_address(address: Any) -> Any:
    if not isinstance(address, dict):
        return REDACTED if address else address
    redacted = dict(address)
    for field in _ADDRESS_PII_FIELDS:
        if redacted.get(field):
            redacted[field] = REDACTED
    for field in _ZIP_FIELDS:
        if field in redacted:
            redacted[field] = redact_zip(redacted[field])
    return redacted


def redact_artwork(value: Any) -> Any:
    """Keep URLs (they identify the asset); replace inline HTML with its size"""
    if isinstance(value, str) and not value.startswith(("http://", "https://")):
        return f"[HTML content: {len(value)} chars]"
    return value


def redact_request(payload: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Redact an outbound vendor request body"""
    if payload is None:
        return None
    redacted = dict(payload)
    if "to" in redacted:
        redacted["to"] = redact_address(redacted["to"])
    if "from" in redacted:
        redacted["from"] = REDACTED
    for side in ("front", "back"):
        if side in redacted:
            redacted[side] = redact_artwork(redacted[side])
    if isinstance(redacted.get("merge_variables"), dict):
        redacted["merge_variables"] = sorted(redacted["merge_variables"].keys())
    if "description" in redacted:
        redacted["description"] = REDACTED
    for field in ("primary_line", "secondary_line"):
        if redacted.get(field):
            redacted[field] = REDACTED
    if "zip_code" in redacted:
        redacted["zip_code"] = redact_zip(redacted["zip_code"])
    return redacted


def redact_response(body: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Redact a vendor response body; vendors echo the addresses back"""
    if body is None:
        return None
    redacted = redact_request(body)
    for field in ("thumbnails", "front_template_version_id", "back_template_version_id"):
        redacted.pop(field, None)
    if isinstance(redacted.get("components"), dict):
        redacted["components"] = REDACTED
    for field in ("primary_line", "secondary_line", "last_line"):
        if redacted.get(field):
            redacted[field] = REDACTED
    return redacted


__all__ = [
    "REDACTED",
    "redact_zip",
    "redact_address",
    "redact_artwork",
    "redact_request",
    "redact_response",
]
