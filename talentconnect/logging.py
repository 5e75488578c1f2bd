from __future__ import annotations

import logging
import os
import re
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

# Per-request correlation id, echoed back in the X-Request-ID header
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Values under these keys never reach a log sink
_CREDENTIAL_KEYS = frozenset(
    {
        "password",
        "password_hash",
        "token",
        "access_token",
        "refresh_token",
        "authorization",
        "jwt_secret",
        "secret",
    }
)
# Contact details are masked but keep enough shape to correlate entries
_CONTACT_KEYS = frozenset({"email", "ip_address", "user_agent", "client"})


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Use the client's request id when given, otherwise mint one."""
    cid = (correlation_id or "").strip()[:128] or str(uuid.uuid4())
    correlation_id_var.set(cid)
    return cid


def bind_request_context(**fields: Any) -> None:
    """Attach request-scoped fields (method, path, ...) to every entry."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**fields)


def _add_correlation_id(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    cid = get_correlation_id()
    if cid:
        event_dict.setdefault("request_id", cid)
    return event_dict


def _mask(value: str) -> str:
    if "@" in value:
        local, _, domain = value.partition("@")
        return f"{local[:1]}***@{domain}"
    if len(value) <= 4:
        return "***"
    return f"{value[:2]}***{value[-2:]}"


def _redact_sensitive(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    for key, value in list(event_dict.items()):
        lowered = key.lower()
        if lowered in _CREDENTIAL_KEYS or lowered.endswith("_token"):
            event_dict[key] = "[redacted]"
        elif lowered in _CONTACT_KEYS and isinstance(value, str):
            event_dict[key] = _mask(value)
    return event_dict


def configure_logging(
    level: str = "INFO", *, json_output: bool = True, dev_mode: bool = False
) -> None:
    """Install the structlog pipeline.

    JSON lines by default; ``dev_mode`` or ``json_output=False`` switches to
    the coloured console renderer.
    """
    resolved = logging.getLevelName(level.upper())
    min_level = resolved if isinstance(resolved, int) else logging.INFO
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _add_correlation_id,
        _redact_sensitive,
        structlog.processors.StackInfoRenderer(),
    ]
    if dev_mode or not json_output:
        processors.append(structlog.dev.ConsoleRenderer(colors=dev_mode))
    else:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes", "on"}


configure_logging(
    os.getenv("LOG_LEVEL", "INFO"),
    json_output=_env_flag("LOG_JSON", "true"),
    dev_mode=_env_flag("LOG_DEV_MODE", "false"),
)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


# Fragments of driver errors that must not reach a client
_LEAKY_FRAGMENTS = [
    re.compile(r"(?i)\b(?:postgres(?:ql)?|redis|rediss)://\S+"),
    re.compile(r"(?i)\b(?:select|insert\s+into|update|delete\s+from)\b.{0,80}"),
    re.compile(r'(?i)relation\s+"[^"]+"'),
    re.compile(r"(?i)(?:password|secret|token)\s*[:=]\s*\S+"),
    re.compile(r"(?:/[\w.-]+){2,}"),
]


def sanitize_error_message(error: str, *, replacement: str = "[redacted]") -> str:
    """Strip connection strings, SQL, secrets and paths from an error message."""
    if not error or not isinstance(error, str):
        return "An error occurred"
    result = error
    for pattern in _LEAKY_FRAGMENTS:
        result = pattern.sub(replacement, result)
    if len(result) > 300:
        result = result[:297] + "..."
    return result
