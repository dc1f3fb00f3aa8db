"""API key validation for staff endpoints.

Keys come from configuration (comma separated) and are compared in constant
time. There is no key rotation or per-key scope: any configured key grants
access to every staff route.
"""

import hmac


class APIKeyValidator:
    """Validates X-API-Key values against the configured staff keys."""

    def __init__(self, api_keys: list[str]) -> None:
        """Initialize validator with the accepted keys.

        Args:
            api_keys: Accepted API key strings; blank entries are ignored

        Raises:
            ValueError: If no usable key is given
        """
        keys = [key.strip() for key in api_keys if key and key.strip()]
        if not keys:
            raise ValueError("At least one API key must be provided")

        self.api_keys = tuple(dict.fromkeys(keys))

    def validate(self, api_key: str) -> bool:
        """Check a presented key.

        Args:
            api_key: Key taken from the request header

        Returns:
            bool: True if it matches a configured key, False otherwise
        """
        presented = api_key.encode()
        return any(hmac.compare_digest(presented, key.encode()) for key in self.api_keys)
