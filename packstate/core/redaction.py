# packstate/core/redaction.py
from __future__ import annotations

import re

__all__ = ["redactText"]



# User profile directories leak account names into logs and traces.
_SENSITIVE_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    # Windows profiles: C:\Users\<name>\...
    (re.compile(r"(?iu)([A-Z]:[\\/]+Users[\\/]+)[^\\/\s'\"]+"), r"\1***"),
    # POSIX homes: /home/<name>/..., /Users/<name>/...
    (re.compile(r"(?u)(/home/|/Users/)[^/\s'\"]+"), r"\1***"),
    # Credential-like query pairs from external destination URLs
    (re.compile(r"(?iu)((?:token|key|password)=)[^&\s]+"), r"\1***"),
]



def redactText(text: str) -> str:
    """Return text with user directories and credential-like values replaced by ***."""
    if not text:
        return text
    out = text
    for pattern, repl in _SENSITIVE_PATTERNS:
        try:
            out = pattern.sub(repl, out)
        except re.error:
            continue # Never crash logging on regex errors
    return out
