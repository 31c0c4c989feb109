"""Log hygiene for values that come from callers or from the runtime.

Container names, image references and daemon error messages all end up in log
lines. Anything that did not originate in this process goes through
``sanitize_log_message`` first so it cannot forge extra log records.
"""

import re
from typing import Union

# Newlines, tabs and the C0/C1 control ranges (including ESC for ANSI codes)
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f-\x9f]")


def sanitize_log_message(msg: Union[str, bytes, int, float, None]) -> str:
    """Strip control characters from a value before logging it.

    Args:
        msg: Value to sanitize (converted with ``str()``)

    Returns:
        Single-line text; empty string for None

    Examples:
        >>> sanitize_log_message("web\\n[ERROR] forged")
        'web[ERROR] forged'
    """
    if msg is None:
        return ""
    return _CONTROL_CHARS.sub("", str(msg))
