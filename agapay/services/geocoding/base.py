from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
import logging

logger = logging.getLogger(__name__)


@dataclass
class GeocodeResult:
    success: bool
    coordinates: Optional[List[float]] = None  # [longitude, latitude]
    query: Optional[str] = None
    message: Optional[str] = None
    provider: str = ""


def address_queries(address: Dict[str, str]) -> List[str]:
    """
    Address strings to try, most specific first:
    full address, without street, barangay + city, city only.
    """
    street = (address.get("street_address") or "").strip()
    barangay = (address.get("barangay") or "").strip()
    city = (address.get("city") or "").strip()
    zip_code = (address.get("zip_code") or "").strip()

    candidates = [
        [street, barangay, city, zip_code],
        [barangay, city, zip_code],
        [barangay, city],
        [city],
    ]
    queries = []
    for parts in candidates:
        query = ", ".join(p for p in parts if p)
        if query and query not in queries:
            queries.append(query)
    return queries


class GeocodingProvider(ABC):
    """
    Abstract forward-geocoding provider.

    Contract:
    - Input: structured address {street_address, barangay, city, zip_code}
    - Output: GeocodeResult with coordinates [lon, lat] on success,
      or success=False with a message.
    - MUST NEVER raise upstream exceptions.
    - Implementations enforce a network timeout (GEOCODING_TIMEOUT_SECONDS).
    """

    name = "base"

    @abstractmethod
    def lookup(self, query: str) -> Optional[Tuple[float, float]]:
        """Resolve one address string to (lon, lat), or None."""
        raise NotImplementedError

    def geocode(self, address: Dict[str, str]) -> GeocodeResult:
        queries = address_queries(address)
        if not queries:
            return GeocodeResult(success=False, message="Address is empty", provider=self.name)

        for query in queries:
            point = self.lookup(query)
            if point is not None:
                lon, lat = point
                logger.info(f"Geocoded '{query}' -> [{lon}, {lat}] via {self.name}")
                return GeocodeResult(success=True, coordinates=[lon, lat], query=query, provider=self.name)
            logger.info(f"No geocoding result for '{query}' via {self.name}")

        return GeocodeResult(
            success=False,
            message="Could not find coordinates for the provided address",
            provider=self.name,
        )
