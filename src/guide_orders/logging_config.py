"""Structured logging setup - no secrets, patient/clinical redaction."""

from __future__ import annotations

import logging
import re
import sys

# Redact secrets
REDACT_FIELDS = frozenset({"password", "secret", "token", "api_key", "authorization", "otp"})
# Clinical and contact data: log only IDs and case numbers
PII_REDACT_KEYS = frozenset(
    {
        "patient_ref",
        "clinical_notes",
        "special_instructions",
        "email",
        "phone",
        "whatsapp",
    }
)
PII_KEY_PATTERN = re.compile(
    r"(\b" + "|".join(re.escape(k) for k in PII_REDACT_KEYS | REDACT_FIELDS) + r")[\s=:]+[^\s,\)\]]+",
    re.IGNORECASE,
)


def _redact_message(msg: str) -> str:
    """Replace PII key=value or key: value in message with [REDACTED]."""
    if not isinstance(msg, str):
        return str(msg)
    return PII_KEY_PATTERN.sub(r"\1=[REDACTED]", msg)


class PIIRedactionFilter(logging.Filter):
    """Filter that redacts PII from log records (message and args)."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = _redact_message(record.msg)
        if isinstance(record.args, dict):
            record.args = {
                k: "[REDACTED]" if any(p in k.lower() for p in PII_REDACT_KEYS | REDACT_FIELDS) else v
                for k, v in record.args.items()
            }
        elif record.args:
            record.args = tuple(
                _redact_message(a) if isinstance(a, str) else a for a in record.args
            )
        return True


def setup_logging(log_level: str = "INFO") -> None:
    """Configure root logger: stdout, PII redaction filter, no secrets."""
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%SZ",
        stream=sys.stdout,
        force=True,
    )
    for handler in logging.getLogger().handlers:
        handler.addFilter(PIIRedactionFilter())
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
