"""
Sanitize free text (rejection reasons, resolution notes, stock adjustment
reasons) before it is written to the audit log, so a value cannot forge extra
log lines.

Usage:
    from procurement.log_sanitizer import sanitize_for_log

    logger.info("frb_rejected reason=%s", sanitize_for_log(reason))
"""

import re
from typing import Any

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def sanitize_for_log(value: Any, max_length: int = 300) -> str:
    """
    >>> sanitize_for_log("line1\\nline2")
    'line1[LF]line2'
    >>> sanitize_for_log(None)
    '[None]'
    """
    if value is None:
        return "[None]"

    text = str(value)
    text = text.replace("\r\n", "[CRLF]").replace("\n", "[LF]").replace("\r", "[CR]")
    text = text.replace("\t", "[TAB]")
    text = _CONTROL_CHARS.sub("[CTRL]", text)

    if len(text) > max_length:
        text = text[:max_length] + "...(truncated)"
    return text
