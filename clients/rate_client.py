"""
Exchange rate suggestion client.

Fetches a current market rate over HTTP so a user can pre-fill an invoice's
rate map. Rates returned here are advisory only: stored invoices keep the
rates entered at the time, and recalculation never calls this client.
"""

import json
import logging
from decimal import Decimal, InvalidOperation

import requests

logger = logging.getLogger(__name__)

_RATE_PLACES = Decimal("0.000001")


class RateServiceError(Exception):
    """Raised when the rate service request fails."""


class RateSuggestionClient:
    """Look up indicative exchange rates from an HTTP rate service."""

    def __init__(self, base_url: str, api_key: str, timeout: float = 10):
        """
        Initialize with rate service credentials.

        Args:
            base_url: Rate service root, e.g. https://rates.example.com/v1
            api_key: API key for X-API-Key header
            timeout: Request timeout in seconds

        Raises:
            ValueError: If any credential is empty
        """
        if not base_url:
            raise ValueError("base_url is required")
        if not api_key:
            raise ValueError("api_key is required")

        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def get_rate(self, source: str, target: str) -> Decimal:
        """
        Rate that converts one unit of source into target.

        Args:
            source: ISO code of the currency being converted
            target: ISO code of the invoice currency

        Returns:
            Rate rounded to 6 decimal places.

        Raises:
            RateServiceError: On connection failure, bad response or missing rate
        """
        try:
            response = requests.get(
                f"{self.base_url}/latest",
                params={"base": source, "symbols": target},
                headers={"X-API-Key": self.api_key},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Rate service connection failed: {e}")
            raise RateServiceError(f"Connection failed: {e}")

        try:
            data = response.json()
        except (json.JSONDecodeError, ValueError):
            logger.error(f"Rate service returned invalid JSON: {response.text}")
            raise RateServiceError("Invalid response from rate service")

        if not isinstance(data, dict):
            logger.error(f"Rate service returned unexpected payload: {response.text}")
            raise RateServiceError("Invalid response from rate service")

        if response.status_code != 200 or not data.get("success", False):
            error_msg = data.get("message", "Unknown error")
            logger.error(f"Rate service error: {error_msg}")
            raise RateServiceError(f"Rate service error: {error_msg}")

        rates = data.get("rates")
        raw = rates.get(target) if isinstance(rates, dict) else None
        if raw is None:
            raise RateServiceError(f"No rate for {source} to {target}")

        try:
            rate = Decimal(str(raw)).quantize(_RATE_PLACES)
        except InvalidOperation:
            raise RateServiceError(f"Unreadable rate for {source} to {target}: {raw!r}")

        if rate <= 0:
            raise RateServiceError(f"Non-positive rate for {source} to {target}: {rate}")

        logger.info(f"Fetched rate {source}->{target}: {rate}")
        return rate
