"""Request context management using contextvars.

Each request gets a unique ID and optional user/trace information that the
logging processors read from anywhere in the call stack.
"""

from contextvars import ContextVar
from typing import Any
from uuid import UUID, uuid4


request_id_var: ContextVar[str] = ContextVar("request_id", default="")
user_id_var: ContextVar[str | None] = ContextVar("user_id", default=None)
trace_id_var: ContextVar[str | None] = ContextVar("trace_id", default=None)
correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def generate_request_id() -> str:
    """Generate a new unique request ID."""
    return str(uuid4())


def get_request_id() -> str:
    """Get the current request ID."""
    return request_id_var.get()


def set_request_id(request_id: str | None = None) -> str:
    """Set the request ID for the current context.

    Args:
        request_id: Optional request ID. If not provided, generates a new one.

    Returns:
        The request ID that was set.
    """
    rid = request_id or generate_request_id()
    request_id_var.set(rid)
    return rid


def get_user_id() -> str | None:
    """Get the current user ID."""
    return user_id_var.get()


def set_user_id(user_id: str | UUID | None) -> None:
    """Set the user ID for the current context."""
    user_id_var.set(str(user_id) if user_id is not None else None)


def set_trace_id(trace_id: str | None) -> None:
    """Set the distributed trace ID for the current context."""
    trace_id_var.set(trace_id)


def set_correlation_id(correlation_id: str | None) -> None:
    """Set the correlation ID for the current context."""
    correlation_id_var.set(correlation_id)


def get_context() -> dict[str, Any]:
    """Get all non-empty context variables as a dictionary."""
    values = {
        "request_id": request_id_var.get(),
        "user_id": user_id_var.get(),
        "trace_id": trace_id_var.get(),
        "correlation_id": correlation_id_var.get(),
    }
    return {key: value for key, value in values.items() if value}


def clear_context() -> None:
    """Clear all context variables.

    Called at the end of each request so values never leak between requests.
    """
    request_id_var.set("")
    user_id_var.set(None)
    trace_id_var.set(None)
    correlation_id_var.set(None)
