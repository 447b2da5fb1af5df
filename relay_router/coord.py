import asyncio
import logging
import math
from dataclasses import dataclass

import aiohttp

from .errors import LocationError

logger = logging.getLogger(__name__)

LOCATION_URL = "https://am.i.mullvad.net/json"
EARTH_RADIUS_KM = 6371.0  # mean radius


@dataclass(frozen=True)
class Coord:
    latitude: float
    longitude: float

    def distance_to(self, other: "Coord") -> float:
        """Great-circle distance in kilometres (haversine formula)."""
        phi1 = math.radians(self.latitude)
        phi2 = math.radians(other.latitude)
        d_phi = phi2 - phi1
        d_lam = math.radians(other.longitude - self.longitude)

        hav = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lam / 2) ** 2
        # Guard against rounding pushing hav just past 1.0 for antipodal points
        return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(min(1.0, hav)))


async def fetch_location(url: str = LOCATION_URL, timeout: float = 10.0) -> Coord:
    """
    Look up the caller's approximate coordinates from their public IP.

    Raises:
        LocationError: If the request fails or the response has no coordinates.
    """
    try:
        async with aiohttp.ClientSession() as session:
            async with session.get(url, timeout=aiohttp.ClientTimeout(total=timeout)) as response:
                response.raise_for_status()
                data = await response.json(content_type=None)
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise LocationError(f"Failed to fetch coordinates: {e}") from e
    except ValueError as e:
        raise LocationError(f"Failed to parse response: {e}") from e

    if not isinstance(data, dict):
        raise LocationError("Failed to get latitude and longitude from the response")

    latitude = data.get("latitude")
    longitude = data.get("longitude")
    if not isinstance(latitude, (int, float)) or not isinstance(longitude, (int, float)):
        raise LocationError("Failed to get latitude and longitude from the response")

    logger.info("Resolved location %.4f, %.4f", latitude, longitude)
    return Coord(float(latitude), float(longitude))
