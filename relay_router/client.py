import asyncio
import logging
from pathlib import Path

from .config import ProbeConfig
from .coord import Coord, fetch_location
from .errors import RelaysError
from .filters import by_distance, by_protocol
from .relays import DEFAULT_PORT, Endpoint, Protocol, fetch_relays, load_relays_file, resolve_relays_path
from .router import RunResult, probe_endpoints

logger = logging.getLogger(__name__)


class RelaySmartClient:
    def __init__(
        self,
        latitude: float | None = None,
        longitude: float | None = None,
        relays_path: Path | None = None,
        use_api: bool = False,
        port: int = DEFAULT_PORT,
        config: ProbeConfig | None = None,
    ):
        if (latitude is None) != (longitude is None):
            raise ValueError("Latitude and longitude must be given together")
        self.location = Coord(latitude, longitude) if latitude is not None else None
        self.relays_path = relays_path
        self.use_api = use_api
        self.port = port
        self.config = config or ProbeConfig()

    async def resolve_location(self) -> Coord:
        if self.location is None:
            self.location = await fetch_location()
        return self.location

    async def load_endpoints(
        self,
        protocol: Protocol | None = None,
        max_distance_km: float | None = None,
    ) -> list[Endpoint]:
        """
        Load candidate relays near the caller.

        Reads the relay list from the API when ``use_api`` is set, otherwise
        from ``relays_path`` or the app's cache file for this platform.

        Raises:
            RelaysError: If the list cannot be loaded or no relay matches.
            LocationError: If the caller's location cannot be determined.
        """
        location = await self.resolve_location()
        filters = [by_distance(max_distance_km), by_protocol(protocol)]

        if self.use_api:
            endpoints = await fetch_relays(location, self.port, filters)
        else:
            path = self.relays_path or resolve_relays_path()
            endpoints = load_relays_file(path, location, self.port, filters)

        if not endpoints:
            raise RelaysError("Couldn't find any relays")
        logger.info("Loaded %d candidate relays", len(endpoints))
        return endpoints

    async def probe(
        self,
        endpoints: list[Endpoint],
        cancel_event: asyncio.Event | None = None,
    ) -> RunResult:
        return await probe_endpoints(endpoints, self.config, cancel_event=cancel_event)
