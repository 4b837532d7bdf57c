"""
Structured logging for the TicketMesh dashboard backend.

Every event is rendered as JSON and carries the service name, the request
id and, once known, the Discord user and guild the request acts for.
Discord OAuth tokens and the bot API secret pass through this process on
every request; ``redact_secrets`` masks them before anything is rendered.
"""

import logging
import re
import sys
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar("user_id", default=None)
guild_id_var: ContextVar[Optional[str]] = ContextVar("guild_id", default=None)

REDACTED = "[redacted]"
SENSITIVE_KEYS = frozenset({
    "access_token",
    "refresh_token",
    "authorization",
    "token",
    "api_secret",
    "bot_api_secret",
    "client_secret",
})
_BEARER_PATTERN = re.compile(r"(?i)\bbearer\s+[^\s,;\"']+")

# httpx logs every request line at INFO
NOISY_LOGGERS = ("httpx", "httpcore")


def configure_logging(service_name: str, log_level: str = "info") -> None:
    """Configure structlog and the stdlib root logger for ``service_name``."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_service_context,
            add_correlation_context,
            redact_secrets,
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def add_service_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    # "dashboard.store" -> service "dashboard"
    logger_name = event_dict.get("logger", "")
    if "." in logger_name:
        event_dict.setdefault("service", logger_name.split(".")[0])
    return event_dict


def add_correlation_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Attach request, user and guild ids from the current context."""
    for key, var in (("request_id", request_id_var), ("user_id", user_id_var), ("guild_id", guild_id_var)):
        value = var.get()
        if value and key not in event_dict:
            event_dict[key] = value
    return event_dict


def redact_secrets(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Mask credential fields and inline bearer tokens."""
    for key, value in list(event_dict.items()):
        if key.lower() in SENSITIVE_KEYS and value:
            event_dict[key] = REDACTED
        elif isinstance(value, str):
            event_dict[key] = _BEARER_PATTERN.sub(f"Bearer {REDACTED}", value)
    return event_dict


def set_request_id(request_id: Optional[str] = None) -> str:
    """Set the request id for this context, generating one if absent."""
    if not request_id:
        request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


def set_user_context(user_id: Optional[str] = None, guild_id: Optional[str] = None):
    if user_id:
        user_id_var.set(user_id)
    if guild_id:
        guild_id_var.set(guild_id)


def clear_context():
    """Reset all correlation ids; called at the end of every request."""
    request_id_var.set(None)
    user_id_var.set(None)
    guild_id_var.set(None)


def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)
