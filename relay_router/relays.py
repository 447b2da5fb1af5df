import asyncio
import enum
import json
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable

import aiohttp

from .coord import Coord
from .errors import RelaysError

logger = logging.getLogger(__name__)

# Relays answer on port 80 across the fleet; the connect handshake is all we need
DEFAULT_PORT = 80

RELAYS_API_URL = "https://api.mullvad.net/app/v1/relays"

RELAYS_PATHS = {
    "linux": "/var/cache/mullvad-vpn/relays.json",
    "darwin": "/Library/Caches/mullvad-vpn/relays.json",
    "win32": "C:/ProgramData/Mullvad VPN/cache/relays.json",
}


class Protocol(str, enum.Enum):
    OPENVPN = "openvpn"
    WIREGUARD = "wireguard"

    def __str__(self) -> str:
        return "OpenVPN" if self is Protocol.OPENVPN else "WireGuard"


EndpointKey = tuple[str, int, Protocol]


@dataclass(frozen=True)
class Endpoint:
    host: str            # IPv4 address or resolvable name
    port: int
    protocol: Protocol
    country: str
    city: str
    distance_km: float   # from the caller's location
    hostname: str = field(default="", compare=False)

    @property
    def key(self) -> EndpointKey:
        return (self.host, self.port, self.protocol)

    def __str__(self) -> str:
        return f"{self.hostname or self.host} ({self.host}:{self.port}, {self.protocol})"


EndpointFilter = Callable[[Endpoint], bool]


def resolve_relays_path(platform: str | None = None) -> Path:
    """Return where the Mullvad app caches its relay list on this system."""
    platform = platform or sys.platform
    for prefix, path in RELAYS_PATHS.items():
        if platform.startswith(prefix):
            return Path(path)
    raise RelaysError(f"Unsupported system: {platform}")


def resolve_protocol(endpoint_data: Any) -> Protocol | None:
    """
    Parse the protocol stored in a cached relay's ``endpoint_data`` field.

    The field is either the string ``"openvpn"``, the string ``"bridge"`` or an
    object such as ``{"wireguard": {"public_key": "..."}}``. Bridges and
    anything unrecognised yield None and are skipped by the loaders.
    """
    if isinstance(endpoint_data, str):
        return Protocol.OPENVPN if endpoint_data == "openvpn" else None
    if isinstance(endpoint_data, dict) and "wireguard" in endpoint_data:
        return Protocol.WIREGUARD
    return None


def _get(data: Any, name: str, kind: type) -> Any:
    value = data.get(name) if isinstance(data, dict) else None
    # bool is an int subclass, keep them apart
    if kind is float and isinstance(value, int) and not isinstance(value, bool):
        value = float(value)
    if not isinstance(value, kind) or (kind is not bool and isinstance(value, bool)):
        raise RelaysError(f"Failed to parse the field {name}: it's either missing or malformed")
    return value


def _accept(endpoint: Endpoint, filters: Iterable[EndpointFilter]) -> bool:
    return all(f(endpoint) for f in filters)


def parse_relays_file(data: Any, location: Coord, port: int = DEFAULT_PORT,
                      filters: Iterable[EndpointFilter] = ()) -> list[Endpoint]:
    """Build endpoints from the app's cached ``countries/cities/relays`` tree."""
    filters = list(filters)
    endpoints = []

    for country in _get(data, "countries", list):
        country_name = _get(country, "name", str)
        for city in _get(country, "cities", list):
            city_name = _get(city, "name", str)
            coord = Coord(_get(city, "latitude", float), _get(city, "longitude", float))
            distance = location.distance_to(coord)

            for relay in _get(city, "relays", list):
                protocol = resolve_protocol(relay.get("endpoint_data") if isinstance(relay, dict) else None)
                if protocol is None:
                    continue
                if not _get(relay, "active", bool):
                    continue

                endpoint = Endpoint(
                    host=_get(relay, "ipv4_addr_in", str),
                    port=port,
                    protocol=protocol,
                    country=country_name,
                    city=city_name,
                    distance_km=distance,
                    hostname=relay.get("hostname", ""),
                )
                if _accept(endpoint, filters):
                    endpoints.append(endpoint)

    return endpoints


def load_relays_file(path: Path, location: Coord, port: int = DEFAULT_PORT,
                     filters: Iterable[EndpointFilter] = ()) -> list[Endpoint]:
    """
    Load endpoints from a relay list file.

    Raises:
        RelaysError: If the file cannot be read or is not a valid relay list.
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise RelaysError(f"Failed to read the relay file: {path}") from e

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise RelaysError(f"Failed to parse the relay file: {e}") from e

    endpoints = parse_relays_file(data, location, port, filters)
    logger.info("Loaded %d relays from %s", len(endpoints), path)
    return endpoints


def parse_relays_api(data: Any, location: Coord, port: int = DEFAULT_PORT,
                     filters: Iterable[EndpointFilter] = ()) -> list[Endpoint]:
    """Build endpoints from the public API payload (``locations`` plus per-protocol lists)."""
    filters = list(filters)
    locations = _get(data, "locations", dict)
    endpoints = []

    for protocol in Protocol:
        section = data.get(protocol.value)
        if not isinstance(section, dict):
            continue
        for relay in _get(section, "relays", list):
            if not _get(relay, "active", bool):
                continue
            code = _get(relay, "location", str)
            place = locations.get(code)
            if place is None:
                logger.warning("Relay %s references unknown location %s", relay.get("hostname"), code)
                continue

            coord = Coord(_get(place, "latitude", float), _get(place, "longitude", float))
            endpoint = Endpoint(
                host=_get(relay, "ipv4_addr_in", str),
                port=port,
                protocol=protocol,
                country=_get(place, "country", str),
                city=_get(place, "city", str),
                distance_km=location.distance_to(coord),
                hostname=relay.get("hostname", ""),
            )
            if _accept(endpoint, filters):
                endpoints.append(endpoint)

    return endpoints


async def fetch_relays(location: Coord, port: int = DEFAULT_PORT,
                       filters: Iterable[EndpointFilter] = (),
                       url: str = RELAYS_API_URL, timeout: float = 30.0) -> list[Endpoint]:
    """
    Fetch the relay list from the public API.

    Raises:
        RelaysError: If the request fails or the payload is malformed.
    """
    try:
        async with aiohttp.ClientSession() as session:
            async with session.get(url, timeout=aiohttp.ClientTimeout(total=timeout)) as response:
                response.raise_for_status()
                data = await response.json(content_type=None)
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise RelaysError(f"Failed to fetch the relay list: {e}") from e
    except ValueError as e:
        raise RelaysError(f"Failed to parse the relay list: {e}") from e

    endpoints = parse_relays_api(data, location, port, filters)
    logger.info("Fetched %d relays from %s", len(endpoints), url)
    return endpoints
