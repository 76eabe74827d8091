"""Input screening and log hygiene for the browser layer."""

from .security import (
    SecurityFinding,
    Verdict,
    check_script,
    detect_prompt_injection,
    detect_xss,
    validate_command,
    validate_url,
)

__all__ = [
    "SecurityFinding",
    "Verdict",
    "check_script",
    "detect_prompt_injection",
    "detect_xss",
    "validate_command",
    "validate_url",
]
