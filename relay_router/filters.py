import enum
from typing import Callable, Iterable

from .relays import Endpoint, EndpointFilter, Protocol
from .stats import EndpointStats

StatsFilter = Callable[[EndpointStats], bool]


class SortBy(str, enum.Enum):
    COUNTRY = "country"
    CITY = "city"
    MEAN = "mean"
    MEDIAN = "median"
    DISTANCE = "distance"


def by_distance(max_km: float | None) -> EndpointFilter:
    """Keep relays strictly closer than ``max_km``."""
    def matches(endpoint: Endpoint) -> bool:
        return max_km is None or endpoint.distance_km < max_km
    return matches


def by_protocol(protocol: Protocol | None) -> EndpointFilter:
    def matches(endpoint: Endpoint) -> bool:
        return protocol is None or endpoint.protocol == protocol
    return matches


def by_rtt(max_ms: float | None) -> StatsFilter:
    """
    Keep relays whose median RTT is at most ``max_ms``.

    Unreachable relays pass so the report can still show them as failed.
    """
    def matches(stats: EndpointStats) -> bool:
        if max_ms is None or not stats.reachable:
            return True
        return stats.median_ms <= max_ms
    return matches


def apply_filters(stats: Iterable[EndpointStats], filters: Iterable[StatsFilter]) -> list[EndpointStats]:
    filters = list(filters)
    return [s for s in stats if all(f(s) for f in filters)]


def _rtt_key(value: float | None):
    # Unreachable relays sort after every measured one
    return (value is None, value or 0.0)


def sort_stats(stats: Iterable[EndpointStats], sort_by: SortBy = SortBy.MEDIAN) -> list[EndpointStats]:
    if sort_by is SortBy.COUNTRY:
        key = lambda s: (s.endpoint.country, s.endpoint.city, _rtt_key(s.median_ms))
    elif sort_by is SortBy.CITY:
        key = lambda s: (s.endpoint.city, s.endpoint.country, _rtt_key(s.median_ms))
    elif sort_by is SortBy.MEAN:
        key = lambda s: (_rtt_key(s.mean_ms), s.endpoint.distance_km)
    elif sort_by is SortBy.DISTANCE:
        key = lambda s: (s.endpoint.distance_km, _rtt_key(s.median_ms))
    else:
        key = lambda s: (_rtt_key(s.median_ms), s.endpoint.distance_km)
    return sorted(stats, key=key)


def rank(stats: Iterable[EndpointStats], max_rtt_ms: float | None = None,
         sort_by: SortBy = SortBy.MEDIAN) -> list[EndpointStats]:
    """Drop relays slower than ``max_rtt_ms`` and order the rest for display."""
    return sort_stats(apply_filters(stats, [by_rtt(max_rtt_ms)]), sort_by)
