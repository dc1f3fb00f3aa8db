"""FastAPI dependencies guarding the staff routes of the console API."""

from collections.abc import Callable
from typing import Annotated

from fastapi import Header, HTTPException

from restaurant_table_service.auth.api_key_validator import APIKeyValidator


def get_api_key_from_header(
    x_api_key: Annotated[str | None, Header()] = None,
    validator: APIKeyValidator | None = None,
) -> str:
    """Extract and check the X-API-Key header.

    Args:
        x_api_key: Value of the X-API-Key header
        validator: Validator holding the accepted keys

    Returns:
        str: The accepted API key

    Raises:
        HTTPException: 401 if the key is missing or not accepted
    """
    if not x_api_key:
        raise HTTPException(status_code=401, detail="Missing API key")

    if validator is not None and not validator.validate(x_api_key):
        raise HTTPException(status_code=401, detail="Invalid API key")

    return x_api_key


def require_staff_key(validator: APIKeyValidator) -> Callable[..., str]:
    """Build a route dependency bound to one validator."""

    def dependency(x_api_key: Annotated[str | None, Header()] = None) -> str:
        return get_api_key_from_header(x_api_key=x_api_key, validator=validator)

    return dependency
