from __future__ import annotations
import re

_INJECTION_PATTERNS = [
    r"(?i)ignore (all|any|previous) instructions",
    r"(?i)system prompt",
    r"(?i)developer message",
    r"(?i)exfiltrate",
]


def sanitize_display_text(s: str, max_chars: int = 200) -> str:
    """Model-produced text shown on a confirmation card: clipped, injection lines dropped."""
    s = (s or "").strip()
    out_lines = []
    for line in s.splitlines():
        if any(re.search(p, line) for p in _INJECTION_PATTERNS):
            continue
        out_lines.append(line)
    s = "\n".join(out_lines).strip()
    if len(s) > max_chars:
        s = s[:max_chars].rstrip() + "..."
    return s
