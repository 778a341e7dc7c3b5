"""Secret redaction for agent payloads before they are persisted."""

import re
from typing import Any, List, Pattern

REDACTED = "[REDACTED]"

SECRET_PATTERNS: List[Pattern[str]] = [
    # API keys
    re.compile(r"\b(sk|pk)[-_][a-zA-Z0-9]{20,}\b"),
    # AWS
    re.compile(r"\bAKIA[0-9A-Z]{16}\b"),
    re.compile(r"aws[-_]?secret[-_]?access[-_]?key\s*[=:]\s*[\"']?[^\"'\s]+[\"']?", re.I),
    # GitHub
    re.compile(r"\bgh[ps]_[a-zA-Z0-9]{36,}\b"),
    re.compile(r"github[-_]?token\s*[=:]\s*[\"']?[^\"'\s]+[\"']?", re.I),
    # Generic assignments
    re.compile(r"\bpassword\s*[=:]\s*[\"']?[^\"'\s]+[\"']?", re.I),
    re.compile(r"\bapi[-_]?key\s*[=:]\s*[\"']?[^\"'\s]+[\"']?", re.I),
    re.compile(r"\bsecret[-_]?key\s*[=:]\s*[\"']?[^\"'\s]+[\"']?", re.I),
    re.compile(r"\baccess[-_]?token\s*[=:]\s*[\"']?[^\"'\s]+[\"']?", re.I),
    # Database URLs with credentials
    re.compile(r"\b(postgres|mysql|mongodb)://[^:\s]+:[^@\s]+@", re.I),
]


def redact_text(text: str) -> str:
    """
    Replace every secret-looking substring.

    Args:
        text: Text to scan

    Returns:
        Text with secrets replaced by ``[REDACTED]``
    """
    for pattern in SECRET_PATTERNS:
        text = pattern.sub(REDACTED, text)
    return text


def redact_secrets(data: Any) -> Any:
    """
    Redact secrets from every string inside a JSON-like structure.

    Dict keys are kept as-is; only values are scanned.

    Args:
        data: Dict, list, string or scalar

    Returns:
        New structure with secrets redacted
    """
    if isinstance(data, str):
        return redact_text(data)
    if isinstance(data, dict):
        return {key: redact_secrets(value) for key, value in data.items()}
    if isinstance(data, (list, tuple)):
        return [redact_secrets(item) for item in data]
    return data
