import pytest
import logging
import os
import sys
from pathlib import Path

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from relay_router.relays import Endpoint, Protocol

# Environment variables for testing
os.environ.setdefault("RELAY_ROUTER_LOG_LEVEL", "DEBUG")


@pytest.fixture(autouse=True)
def reset_logging():
    """Drop handlers installed by CLI runs so later tests never log to a closed stream."""
    yield
    logger = logging.getLogger("relay_router")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = True


def make_endpoint(index: int = 0, protocol: Protocol = Protocol.WIREGUARD,
                  distance_km: float = 100.0, country: str = "Sweden",
                  city: str = "Gothenburg", port: int = 80,
                  host: str = None) -> Endpoint:
    return Endpoint(
        host=host or f"10.0.{index // 256}.{index % 256}",
        port=port,
        protocol=protocol,
        country=country,
        city=city,
        distance_km=distance_km,
        hostname=f"se-got-wg-{index:03d}",
    )


@pytest.fixture
def endpoint():
    return make_endpoint()


@pytest.fixture
def endpoints():
    return [make_endpoint(i, distance_km=10.0 * i) for i in range(10)]
