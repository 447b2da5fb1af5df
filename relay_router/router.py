import asyncio
import logging
import time
from collections.abc import Mapping
from types import MappingProxyType
from typing import Iterable, Iterator

from .config import ProbeConfig
from .errors import ProbeConfigError
from .latency import Probe, RelaySampler, tcp_ping_once
from .relays import Endpoint, EndpointKey
from .stats import EndpointStats, finalize

logger = logging.getLogger(__name__)


class RunResult(Mapping):
    """
    Read-only mapping of endpoint key to finalized stats for one probe run.

    ``cancelled`` is set when the run stopped before every sampler finished;
    ``skipped`` lists endpoints that were cut off before recording a sample.
    """

    def __init__(self, stats: dict[EndpointKey, EndpointStats], cancelled: bool = False,
                 skipped: Iterable[Endpoint] = ()):
        self._stats = MappingProxyType(dict(stats))
        self.cancelled = cancelled
        self.skipped = tuple(skipped)

    def __getitem__(self, key: EndpointKey) -> EndpointStats:
        return self._stats[key]

    def __iter__(self) -> Iterator[EndpointKey]:
        return iter(self._stats)

    def __len__(self) -> int:
        return len(self._stats)

    def __repr__(self) -> str:
        return f"RunResult({len(self)} endpoints, cancelled={self.cancelled}, skipped={len(self.skipped)})"

    def reachable(self) -> list[EndpointStats]:
        return [s for s in self._stats.values() if s.reachable]

    def unreachable(self) -> list[EndpointStats]:
        return [s for s in self._stats.values() if not s.reachable]


def _unique(endpoints: Iterable[Endpoint]) -> list[Endpoint]:
    seen = {}
    for endpoint in endpoints:
        if endpoint.key in seen:
            logger.warning("Skipping duplicate endpoint %s", endpoint)
            continue
        seen[endpoint.key] = endpoint
    return list(seen.values())


async def probe_endpoints(
    endpoints: Iterable[Endpoint],
    config: ProbeConfig | None = None,
    *,
    probe: Probe = tcp_ping_once,
    cancel_event: asyncio.Event | None = None,
) -> RunResult:
    """
    Sample every endpoint concurrently and aggregate the results.

    At most ``config.max_concurrency`` samplers run at once; the others wait
    for a free slot. A failing endpoint only produces unreachable stats. If
    ``cancel_event`` is set or ``config.deadline`` expires first, in-flight
    probes are cancelled, endpoints without a single sample are skipped and
    whatever was sampled so far is returned. Relays whose name never resolved
    are logged as warnings since that points at the relay list, not the network.

    Raises:
        ProbeConfigError: If there is nothing to probe.
    """
    config = config or ProbeConfig()
    endpoints = _unique(endpoints)
    if not endpoints:
        raise ProbeConfigError("No endpoints to probe")

    if cancel_event is not None and cancel_event.is_set():
        logger.info("Cancellation requested before probing, nothing scheduled")
        return RunResult({}, cancelled=True, skipped=endpoints)

    semaphore = asyncio.Semaphore(config.max_concurrency)
    samplers = {
        e.key: RelaySampler(e, config.rounds, config.timeout, config.interval, probe)
        for e in endpoints
    }
    started: set[EndpointKey] = set()
    stopped = False

    async def run_sampler(sampler: RelaySampler) -> None:
        async with semaphore:
            started.add(sampler.endpoint.key)
            await sampler.run()

    logger.info("Probing %d endpoints (rounds=%d, timeout=%.3fs, concurrency=%d)",
                len(endpoints), config.rounds, config.timeout, config.max_concurrency)
    run_started = time.monotonic()

    tasks = {key: asyncio.create_task(run_sampler(s)) for key, s in samplers.items()}

    async def watchdog() -> None:
        nonlocal stopped
        if cancel_event is None:
            await asyncio.sleep(config.deadline)
            logger.info("Run deadline of %.1fs reached", config.deadline)
        else:
            try:
                await asyncio.wait_for(cancel_event.wait(), config.deadline)
                logger.info("Cancellation requested, stopping probe run")
            except asyncio.TimeoutError:
                logger.info("Run deadline of %.1fs reached", config.deadline)
        stopped = True
        for task in tasks.values():
            task.cancel()

    watcher = None
    if cancel_event is not None or config.deadline is not None:
        watcher = asyncio.create_task(watchdog())

    try:
        outcomes = await asyncio.gather(*tasks.values(), return_exceptions=True)
    except asyncio.CancelledError:
        # Our own caller was cancelled: tear everything down and propagate
        for task in tasks.values():
            task.cancel()
        await asyncio.gather(*tasks.values(), return_exceptions=True)
        raise
    finally:
        if watcher is not None:
            watcher.cancel()
            await asyncio.gather(watcher, return_exceptions=True)

    stats = {}
    skipped = []
    for (key, sampler), outcome in zip(samplers.items(), outcomes):
        cancelled_early = isinstance(outcome, asyncio.CancelledError) and not sampler.samples
        if key not in started or cancelled_early:
            skipped.append(sampler.endpoint)
            continue
        if isinstance(outcome, Exception):
            logger.error("Sampler for %s crashed", sampler.endpoint, exc_info=outcome)

        result = finalize(sampler.endpoint, sampler.samples, config.rounds)
        stats[key] = result
        logger.debug("%s: %d/%d ok, median=%s, failures=%s", sampler.endpoint,
                     result.success_count, len(result.samples), result.median_ms,
                     dict(result.failures_by_status()))
        if result.resolution_failed:
            logger.warning("%s: name did not resolve in any round, check the relay list",
                           sampler.endpoint)

    run = RunResult(stats, cancelled=stopped and bool(skipped or any(not s.complete for s in stats.values())),
                    skipped=skipped)
    elapsed = time.monotonic() - run_started
    if run.cancelled:
        logger.info("Probe run cancelled after %.2fs: %d partial, %d skipped",
                    elapsed, len(run), len(run.skipped))
    else:
        logger.info("Probe run finished in %.2fs: %d reachable, %d unreachable",
                    elapsed, len(run.reachable()), len(run.unreachable()))

    return run


def pick_fastest(stats: Iterable[EndpointStats]) -> EndpointStats | None:
    """Return the reachable endpoint with the lowest median RTT, if any."""
    reachable = [s for s in stats if s.reachable]
    if not reachable:
        return None
    return min(reachable, key=lambda s: (s.median_ms, s.mean_ms, s.endpoint.distance_km))
