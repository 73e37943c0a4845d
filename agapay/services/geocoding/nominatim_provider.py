import logging
from typing import Any, List, Optional, Tuple

import requests

from agapay.core.settings import settings
from .base import GeocodingProvider

logger = logging.getLogger(__name__)


class NominatimProvider(GeocodingProvider):
    """
    OpenStreetMap Nominatim forward-geocoding provider.

    - No API key required.
    - Results restricted to GEOCODING_COUNTRY_CODE.
    - Includes a User-Agent header as required by Nominatim usage policy.
    - Never raises upstream exceptions; returns None on failure.
    """

    BASE_URL = "https://nominatim.openstreetmap.org/search"
    name = "nominatim"

    def __init__(self, user_agent: Optional[str] = None, country_code: Optional[str] = None,
                 timeout: Optional[float] = None):
        self.user_agent = user_agent or settings.NOMINATIM_USER_AGENT
        self.country_code = (country_code or settings.GEOCODING_COUNTRY_CODE or "").lower()
        self.timeout = timeout or settings.GEOCODING_TIMEOUT_SECONDS

    def lookup(self, query: str) -> Optional[Tuple[float, float]]:
        try:
            params = {
                "q": query,
                "format": "json",
                "limit": 1,
            }
            if self.country_code:
                params["countrycodes"] = self.country_code
            headers = {
                "User-Agent": self.user_agent,
            }
            resp = requests.get(self.BASE_URL, params=params, headers=headers, timeout=self.timeout)
            if resp.status_code != 200:
                logger.warning(f"Nominatim geocode failed with status {resp.status_code}")
                return None

            data: List[Any] = resp.json()
            if not data:
                return None

            first = data[0]
            return float(first["lon"]), float(first["lat"])
        except (requests.RequestException, ValueError, KeyError, TypeError) as e:
            # Fail gracefully - the caller decides whether this aborts the request
            logger.warning(f"Nominatim geocode error: {e}")
            return None
