import logging
from typing import Any, Dict, Optional, Tuple

import requests

from agapay.core.settings import settings
from .base import GeocodingProvider

logger = logging.getLogger(__name__)


class GoogleMapsProvider(GeocodingProvider):
    """
    Google Maps forward-geocoding provider.

    - Used only when GEOCODING_PROVIDER=google AND GOOGLE_MAPS_API_KEY is set.
    - Results biased to GEOCODING_COUNTRY_CODE.
    - Fails gracefully and never raises upstream exceptions.
    """

    BASE_URL = "https://maps.googleapis.com/maps/api/geocode/json"
    name = "google"

    def __init__(self, api_key: Optional[str], timeout: Optional[float] = None):
        self.api_key = api_key
        self.timeout = timeout or settings.GEOCODING_TIMEOUT_SECONDS

    def lookup(self, query: str) -> Optional[Tuple[float, float]]:
        if not self.api_key:
            logger.info("GoogleMapsProvider called without API key; returning no result.")
            return None

        try:
            params = {
                "address": query,
                "key": self.api_key,
            }
            if settings.GEOCODING_COUNTRY_CODE:
                params["components"] = f"country:{settings.GEOCODING_COUNTRY_CODE}"
            resp = requests.get(self.BASE_URL, params=params, timeout=self.timeout)
            if resp.status_code != 200:
                logger.warning(f"Google Maps geocode failed with status {resp.status_code}")
                return None

            data: Dict[str, Any] = resp.json()
            if data.get("status") not in (None, "OK"):
                logger.info(f"Google Maps geocode status {data.get('status')} for '{query}'")
                return None
            results = data.get("results") or []
            if not results:
                return None

            location = (results[0].get("geometry") or {}).get("location") or {}
            if "lat" not in location or "lng" not in location:
                return None
            return float(location["lng"]), float(location["lat"])
        except (requests.RequestException, ValueError, TypeError) as e:
            logger.warning(f"Google Maps geocode error: {e}")
            return None
