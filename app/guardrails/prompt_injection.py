from typing import Tuple

# Phrasing aimed at the model rather than at a reader of the code; words like "token" or
# "password" are left out because source files mention them all the time.
INJECTION_PATTERNS = [
    "ignore previous instructions",
    "ignore all previous instructions",
    "disregard the above",
    "reveal your system prompt",
    "developer message",
    "you are chatgpt",
    "exfiltrate",
]


def detect_prompt_injection(text: str) -> Tuple[bool, str]:
    """Lightweight heuristic detector: returns (True, pattern) if text contains typical injection phrasing (e.g. 'ignore previous instructions'). Repository files and transcripts are untrusted; we still allow retrieval but prepend a security note to context.
    Why available: Reduces risk of prompt injection via indexed repository content; used by pack_context."""
    t = (text or "").lower()
    for p in INJECTION_PATTERNS:
        if p in t:
            return True, p
    return False, ""
