"""
Redaction utilities to keep secrets passed on command lines out of logs.
"""
from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Dict

from dotenv import dotenv_values

COMMON_SECRET_KEYS = {
    "API_KEY", "API_TOKEN", "SECRET", "PASSWORD", "PASS", "TOKEN",
}

# Simple patterns for common token formats (best-effort)
TOKEN_PATTERNS = [
    re.compile(r"sk-[A-Za-z0-9]{20,}"),  # generic secret-like
    re.compile(r"ghp_[A-Za-z0-9]{30,}"),  # GitHub PAT
    re.compile(r"(?i)(--?(?:password|token|secret)[= ])[^\s\"']+"),
]


def load_env_secrets() -> Dict[str, str]:
    """Load secrets from current environment and .env file without printing them."""
    secrets: Dict[str, str] = {}
    for k, v in os.environ.items():
        if any(key in k.upper() for key in COMMON_SECRET_KEYS):
            secrets[k] = v
    env_path = Path.cwd() / ".env"
    if env_path.exists():
        try:
            vals = dotenv_values(str(env_path))
        except (OSError, UnicodeDecodeError):
            vals = {}
        for k, v in (vals or {}).items():
            if v and any(key in k.upper() for key in COMMON_SECRET_KEYS):
                secrets[k] = v
    return secrets


def redact_text(text: str) -> str:
    """Redact secret-like values from text using env/.env values and regex patterns."""
    if not text:
        return text
    redacted = text
    for k, v in load_env_secrets().items():
        if v and len(v) >= 4:
            redacted = redacted.replace(v, f"{{{{REDACTED_{k}}}}}")
    for pat in TOKEN_PATTERNS:
        if pat.groups:
            redacted = pat.sub(r"\1{REDACTED_TOKEN}", redacted)
        else:
            redacted = pat.sub("{REDACTED_TOKEN}", redacted)
    return redacted
