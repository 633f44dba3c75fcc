from __future__ import annotations

import logging
import re
import sys
from typing import Any, Dict, Optional

import structlog

from wchic.core.config import settings

# Event keys that carry client phone numbers.
PHONE_KEYS = frozenset({"phone", "phone_e164", "to", "sender", "whatsapp_phone"})

_DIGITS = re.compile(r"\d")


def mask_phone(value: Any) -> Any:
    """``+5519999998888`` -> ``+55*******8888``."""
    if not isinstance(value, str):
        return value
    digits = _DIGITS.findall(value)
    if len(digits) <= 6:
        return value
    keep_head, keep_tail = 2, 4
    seen = 0
    out = []
    for ch in value:
        if ch.isdigit():
            seen += 1
            if keep_head < seen <= len(digits) - keep_tail:
                ch = "*"
        out.append(ch)
    return "".join(out)


def mask_phone_numbers(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    for key in PHONE_KEYS.intersection(event_dict):
        event_dict[key] = mask_phone(event_dict[key])
    return event_dict


def configure_structlog() -> None:
    timestamper = structlog.processors.TimeStamper(fmt="iso")
    renderer = (
        structlog.dev.ConsoleRenderer()
        if settings.log_format == "console"
        else structlog.processors.JSONRenderer()
    )
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        timestamper,
        mask_phone_numbers,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        renderer,
    ]

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        stream=sys.stdout,
    )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_structlog_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def set_request_id(request_id: Optional[str] = None) -> None:
    """Set request ID in structlog context."""
    if request_id:
        structlog.contextvars.bind_contextvars(request_id=request_id)
    else:
        structlog.contextvars.clear_contextvars()
