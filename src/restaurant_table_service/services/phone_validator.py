"""Phone number rules for mobile-money payments.

Only the Ugandan numbering plan is supported. MTN numbers start with 77, 78
or 76 and Airtel numbers with 75, 70 or 74, optionally prefixed by the 256
country code or a national trunk 0.
"""

import re

from restaurant_table_service.models.order_models import PaymentMethod

UGANDA_PATTERN = re.compile(r"^(256|0)?(77|78|76|75|70|74)[0-9]{7}$")
MTN_PREFIX = re.compile(r"^(256|0)?(77|78|76)")
AIRTEL_PREFIX = re.compile(r"^(256|0)?(75|70|74)")
UGANDA_COUNTRY_CODE = "256"


def _clean(phone_number: str) -> str:
    return re.sub(r"\s+", "", phone_number)


class PhoneNumberValidator:
    """Validates and normalizes payer phone numbers for a country."""

    def __init__(self, country: str = "UG") -> None:
        """Initialize the validator.

        Args:
            country: ISO country code of the numbering plan
        """
        self.country = country

    def validate(self, phone_number: str) -> bool:
        """Check a phone number against the country's mobile numbering plan.

        Args:
            phone_number: Raw number as typed by the customer

        Returns:
            bool: True if valid, False otherwise (always False for unsupported countries)
        """
        if self.country != "UG":
            return False
        return UGANDA_PATTERN.match(_clean(phone_number)) is not None

    def detect_payment_method(self, phone_number: str) -> PaymentMethod | None:
        """Guess the mobile-money provider from the number prefix."""
        cleaned = _clean(phone_number)
        if MTN_PREFIX.match(cleaned):
            return PaymentMethod.MTN_MOMO
        if AIRTEL_PREFIX.match(cleaned):
            return PaymentMethod.AIRTEL_MONEY
        return None

    def format(self, phone_number: str) -> str:
        """Normalize to the international form expected by payment APIs (256XXXXXXXXX)."""
        cleaned = _clean(phone_number)
        if cleaned.startswith(UGANDA_COUNTRY_CODE):
            return cleaned
        if cleaned.startswith("0"):
            return UGANDA_COUNTRY_CODE + cleaned[1:]
        return UGANDA_COUNTRY_CODE + cleaned
