import asyncio
import signal
import sys
from contextlib import contextmanager
from pathlib import Path

import typer

from .client import RelaySmartClient
from .config import ProbeConfig
from .errors import LocationError, RelaysError
from .filters import SortBy, rank
from .logging_config import configure_logging
from .relays import Protocol
from .reporter import report
from .router import RunResult, pick_fastest

app = typer.Typer(help="Find the fastest nearby VPN relay by TCP latency")

PROTOCOL_OPT = typer.Option(None, "--protocol", "-p", help="Only relays using this protocol")
DISTANCE_OPT = typer.Option(500.0, "--distance", "-d", envvar="RELAY_ROUTER_DISTANCE",
                            help="Maximum distance to a relay (km)")
RTT_OPT = typer.Option(None, "--rtt", "-r", help="Maximum median RTT (ms)")
COUNT_OPT = typer.Option(4, "--count", "-c", envvar="RELAY_ROUTER_COUNT",
                         help="Pings per relay")
TIMEOUT_OPT = typer.Option(750.0, "--timeout", envvar="RELAY_ROUTER_TIMEOUT",
                           help="Ping timeout (ms)")
INTERVAL_OPT = typer.Option(50.0, "--interval", envvar="RELAY_ROUTER_INTERVAL",
                            help="Pause between pings to the same relay (ms)")
CONCURRENCY_OPT = typer.Option(64, "--concurrency", envvar="RELAY_ROUTER_CONCURRENCY",
                               help="Relays probed at the same time")
DEADLINE_OPT = typer.Option(None, "--deadline", help="Stop probing after this many seconds")
LATITUDE_OPT = typer.Option(None, "--latitude", help="Your latitude (skips IP geolocation)")
LONGITUDE_OPT = typer.Option(None, "--longitude", help="Your longitude (skips IP geolocation)")
RELAYS_FILE_OPT = typer.Option(None, "--relays-file", envvar="RELAY_ROUTER_RELAYS_FILE",
                               help="Relay list to read instead of the app cache")
API_OPT = typer.Option(False, "--api", help="Fetch the relay list from the API")
VERBOSE_OPT = typer.Option(False, "--verbose", "-v", help="Log every probe round")


@contextmanager
def _interrupt_sets(event: asyncio.Event):
    """Route Ctrl-C to ``event`` so a run stops with partial results."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, event.set)
        installed = True
    except (NotImplementedError, RuntimeError, ValueError):
        # Not available on this platform or outside the main thread
        installed = False
    try:
        yield
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


def _build_client(count, timeout, interval, concurrency, deadline, latitude, longitude,
                  relays_file, api) -> RelaySmartClient:
    config = ProbeConfig.from_millis(
        rounds=count,
        timeout_ms=timeout,
        interval_ms=interval,
        max_concurrency=concurrency,
        deadline=deadline,
    )
    return RelaySmartClient(
        latitude=latitude,
        longitude=longitude,
        relays_path=relays_file,
        use_api=api,
        config=config,
    )


async def _load_and_probe(client: RelaySmartClient, protocol: Protocol | None,
                          distance: float) -> RunResult:
    endpoints = await client.load_endpoints(protocol, distance)
    cancel_event = asyncio.Event()
    # Ctrl-C only stops probing; while loading it aborts as usual
    with _interrupt_sets(cancel_event):
        return await client.probe(endpoints, cancel_event)


def _fail(message: str) -> None:
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(code=1)


def list_relays(
    protocol: Protocol | None = PROTOCOL_OPT,
    distance: float = DISTANCE_OPT,
    rtt: float | None = RTT_OPT,
    count: int = COUNT_OPT,
    timeout: float = TIMEOUT_OPT,
    interval: float = INTERVAL_OPT,
    concurrency: int = CONCURRENCY_OPT,
    deadline: float | None = DEADLINE_OPT,
    latitude: float | None = LATITUDE_OPT,
    longitude: float | None = LONGITUDE_OPT,
    relays_file: Path | None = RELAYS_FILE_OPT,
    api: bool = API_OPT,
    sort_by: SortBy = typer.Option(SortBy.MEDIAN, "--sort-by", "-s", help="Column to sort by"),
    verbose: bool = VERBOSE_OPT,
):
    """Ping nearby relays and print them as a table."""
    configure_logging(verbose)

    async def run():
        client = _build_client(count, timeout, interval, concurrency, deadline,
                               latitude, longitude, relays_file, api)
        return await _load_and_probe(client, protocol, distance)

    try:
        result = asyncio.run(run())
    except (RelaysError, LocationError, ValueError) as e:
        _fail(str(e))

    report(rank(result.values(), rtt, sort_by), sort_by)
    if result.cancelled:
        print(f"Run interrupted: partial results, {len(result.skipped)} relays not probed",
              file=sys.stderr)


def fastest(
    protocol: Protocol | None = PROTOCOL_OPT,
    distance: float = DISTANCE_OPT,
    rtt: float | None = RTT_OPT,
    count: int = COUNT_OPT,
    timeout: float = TIMEOUT_OPT,
    interval: float = INTERVAL_OPT,
    concurrency: int = CONCURRENCY_OPT,
    deadline: float | None = DEADLINE_OPT,
    latitude: float | None = LATITUDE_OPT,
    longitude: float | None = LONGITUDE_OPT,
    relays_file: Path | None = RELAYS_FILE_OPT,
    api: bool = API_OPT,
    verbose: bool = VERBOSE_OPT,
):
    """Print the relay with the lowest median RTT."""
    configure_logging(verbose)

    async def run():
        client = _build_client(count, timeout, interval, concurrency, deadline,
                               latitude, longitude, relays_file, api)
        return await _load_and_probe(client, protocol, distance)

    try:
        result = asyncio.run(run())
    except (RelaysError, LocationError, ValueError) as e:
        _fail(str(e))

    best = pick_fastest(rank(result.values(), rtt))
    if best is None:
        _fail("No relay answered")

    endpoint = best.endpoint
    print(f"★ {endpoint.hostname or endpoint.host}  {endpoint.host}  {endpoint.protocol}  "
          f"{endpoint.city}, {endpoint.country}  median={best.median_ms:.2f} ms  "
          f"mean={best.mean_ms:.2f} ms  ~{round(endpoint.distance_km)} km")


app.command()(list_relays)
app.command()(fastest)

if __name__ == "__main__":
    app()
