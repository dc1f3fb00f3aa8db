"""Span decorator for service operations."""

import functools
import inspect
from collections.abc import Callable
from typing import Any, TypeVar

from opentelemetry import trace

F = TypeVar("F", bound=Callable[..., Any])

# Error attributes copied onto the span when present, so a failed checkout
# can be found by its correlation or escalation id.
ERROR_CONTEXT_ATTRIBUTES = (
    "correlation_id",
    "escalation_id",
    "transaction_id",
    "field",
    "state",
)


def _record_failure(span: trace.Span, error: Exception) -> None:
    span.set_attribute("success", False)
    span.set_attribute("error.type", type(error).__name__)
    span.set_attribute("error.message", str(error))
    for attribute in ERROR_CONTEXT_ATTRIBUTES:
        value = getattr(error, attribute, None)
        if value is not None:
            span.set_attribute(f"error.{attribute}", str(value))
    span.record_exception(error)


def traced(span_name: str | None = None, service_name: str = "table-svc") -> Callable[[F], F]:
    """Run the decorated function inside a span.

    The span is marked successful or failed; failures carry the exception type,
    message and any correlation/escalation/transaction id the error holds.
    Works for both plain and async functions.

    Args:
        span_name: Span name, defaults to the function name
        service_name: Tracer name and `service.name` span attribute

    Example:
        @traced("checkout.submit_order_with_payment")
        async def submit_order_with_payment(self, cart, payment_info):
            ...
    """

    def decorator(func: F) -> F:
        name = span_name or func.__name__
        tracer = trace.get_tracer(service_name)

        def _start(span: trace.Span) -> None:
            span.set_attribute("service.name", service_name)
            span.set_attribute("code.function", func.__qualname__)

        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                with tracer.start_as_current_span(name) as span:
                    _start(span)
                    try:
                        result = await func(*args, **kwargs)
                    except Exception as e:
                        _record_failure(span, e)
                        raise
                    span.set_attribute("success", True)
                    return result

            return async_wrapper  # type: ignore

        @functools.wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            with tracer.start_as_current_span(name) as span:
                _start(span)
                try:
                    result = func(*args, **kwargs)
                except Exception as e:
                    _record_failure(span, e)
                    raise
                span.set_attribute("success", True)
                return result

        return sync_wrapper  # type: ignore

    return decorator
