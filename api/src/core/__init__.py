# Core infrastructure
from src.core.context import (
    clear_context,
    get_context,
    get_request_id,
    set_request_id,
    set_user_id,
)
from src.core.effects import SideEffectResult, run_side_effect
from src.core.logging import configure_structlog, get_logger
from src.core.middleware import RequestContextMiddleware


__all__ = [
    "RequestContextMiddleware",
    "SideEffectResult",
    "clear_context",
    "configure_structlog",
    "get_context",
    "get_logger",
    "get_request_id",
    "run_side_effect",
    "set_request_id",
    "set_user_id",
]
