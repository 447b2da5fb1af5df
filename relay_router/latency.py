import asyncio
import enum
import logging
import socket
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

from .relays import Endpoint

logger = logging.getLogger(__name__)


class ProbeStatus(str, enum.Enum):
    SUCCESS = "success"
    TIMEOUT = "timeout"
    CONNECTION_REFUSED = "connection_refused"
    RESOLUTION_FAILED = "resolution_failed"
    OTHER_IO_ERROR = "other_io_error"


@dataclass(frozen=True)
class ProbeOutcome:
    status: ProbeStatus
    duration_ms: float | None = None  # set only on success
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is ProbeStatus.SUCCESS

    @classmethod
    def success(cls, duration_ms: float) -> "ProbeOutcome":
        return cls(ProbeStatus.SUCCESS, duration_ms=duration_ms)

    @classmethod
    def failure(cls, status: ProbeStatus, detail: str | None = None) -> "ProbeOutcome":
        if status is ProbeStatus.SUCCESS:
            raise ValueError("A failure outcome needs a failure status")
        return cls(status, detail=detail)


@dataclass(frozen=True)
class ProbeSample:
    endpoint: Endpoint
    round_index: int
    outcome: ProbeOutcome


Probe = Callable[[Endpoint, float], Awaitable[ProbeOutcome]]


async def _close(writer: asyncio.StreamWriter) -> None:
    writer.close()
    try:
        await writer.wait_closed()
    except OSError as e:
        # The timestamp is already taken; a reset on close changes nothing
        logger.debug("Error while closing probe socket: %s", e)


async def _connect(host: str, port: int) -> asyncio.StreamWriter:
    """
    Open a connection to the first address of ``host`` that accepts one.

    Addresses are tried in resolver order. When every address refuses, the
    refusal is raised; any other failure takes precedence over refusals.
    """
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, port, type=socket.SOCK_STREAM)
    if not infos:
        raise socket.gaierror(socket.EAI_NONAME, f"No addresses for {host}")

    refused = None
    other = None
    for *_, address in infos:
        try:
            _, writer = await asyncio.open_connection(address[0], address[1])
            return writer
        except ConnectionRefusedError as e:
            refused = e
        except OSError as e:
            other = e
    raise other or refused


async def tcp_ping_once(endpoint: Endpoint, timeout: float) -> ProbeOutcome:
    """
    Measure one TCP handshake against ``endpoint``.

    The elapsed time runs from the connection attempt to establishment; the
    socket is closed right after without sending anything. Failures come back
    as outcomes, never as exceptions. Cancelling the caller aborts the attempt
    and closes the socket.
    """
    start = time.perf_counter()
    try:
        writer = await asyncio.wait_for(_connect(endpoint.host, endpoint.port), timeout)
    except asyncio.TimeoutError:
        return ProbeOutcome.failure(ProbeStatus.TIMEOUT, f"no connection within {timeout:.3f}s")
    except socket.gaierror as e:
        return ProbeOutcome.failure(ProbeStatus.RESOLUTION_FAILED, str(e))
    except ConnectionRefusedError as e:
        return ProbeOutcome.failure(ProbeStatus.CONNECTION_REFUSED, str(e))
    except TimeoutError as e:
        # Kernel-level ETIMEDOUT before our own bound expired
        return ProbeOutcome.failure(ProbeStatus.TIMEOUT, str(e))
    except OSError as e:
        return ProbeOutcome.failure(ProbeStatus.OTHER_IO_ERROR, str(e))

    elapsed_ms = (time.perf_counter() - start) * 1000.0
    await _close(writer)
    return ProbeOutcome.success(elapsed_ms)


class RelaySampler:
    """
    Runs a fixed number of sequential probe rounds against one endpoint.

    Rounds never overlap: each starts after the previous one finished and the
    interval elapsed. Failed rounds are recorded and sampling carries on.
    ``samples`` belongs to this sampler alone and stays readable if the task
    running it gets cancelled, so partial results can still be aggregated.
    """

    def __init__(self, endpoint: Endpoint, rounds: int, timeout: float,
                 interval: float = 0.0, probe: Probe = tcp_ping_once):
        self.endpoint = endpoint
        self.rounds = rounds
        self.timeout = timeout
        self.interval = interval
        self.probe = probe
        self.samples: list[ProbeSample] = []

    async def run(self) -> list[ProbeSample]:
        for round_index in range(len(self.samples), self.rounds):
            if round_index:
                await asyncio.sleep(self.interval)

            outcome = await self.probe(self.endpoint, self.timeout)
            self.samples.append(ProbeSample(self.endpoint, round_index, outcome))

            if outcome.ok:
                logger.debug("%s round %d: %.2f ms", self.endpoint, round_index, outcome.duration_ms)
            else:
                logger.debug("%s round %d: %s (%s)", self.endpoint, round_index,
                             outcome.status.value, outcome.detail)

        return self.samples
