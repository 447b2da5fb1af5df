from typing import Sequence

from .filters import SortBy
from .stats import EndpointStats

COLUMNS = [
    ("#", None),
    ("IP", None),
    ("Protocol", None),
    ("Country", SortBy.COUNTRY),
    ("City", SortBy.CITY),
    ("Distance", SortBy.DISTANCE),
    ("RTT median", SortBy.MEDIAN),
    ("RTT mean", SortBy.MEAN),
    ("Loss", None),
]

# Distance onwards is numeric and right aligned
RIGHT_ALIGNED_FROM = 5


def _ms(value: float | None) -> str:
    return "n/a" if value is None else f"{value:.2f} ms"


def _loss(stats: EndpointStats) -> str:
    loss = f"{stats.failure_count}/{len(stats.samples)}"
    # A name that never resolves is a broken relay entry, not packet loss
    return f"{loss} unresolved" if stats.resolution_failed else loss


def header(sort_by: SortBy) -> list[str]:
    """Column titles, with the active sort column marked."""
    return [f"{name} *" if key is sort_by else name for name, key in COLUMNS]


def row(index: int, stats: EndpointStats) -> list[str]:
    endpoint = stats.endpoint
    return [
        str(index),
        endpoint.host,
        str(endpoint.protocol),
        endpoint.country,
        endpoint.city,
        f"~{round(endpoint.distance_km)} km",
        _ms(stats.median_ms),
        _ms(stats.mean_ms),
        _loss(stats),
    ]


def render(stats: Sequence[EndpointStats], sort_by: SortBy = SortBy.MEDIAN) -> str:
    rows = [header(sort_by)] + [row(i, s) for i, s in enumerate(stats, start=1)]
    widths = [max(len(r[col]) for r in rows) for col in range(len(COLUMNS))]

    lines = []
    for line_no, cells in enumerate(rows):
        parts = []
        for col, cell in enumerate(cells):
            if line_no and col >= RIGHT_ALIGNED_FROM:
                parts.append(cell.rjust(widths[col]))
            else:
                parts.append(cell.ljust(widths[col]))
        lines.append("  ".join(parts).rstrip())
        if line_no == 0:
            lines.append("  ".join("-" * w for w in widths))
    return "\n".join(lines)


def report(stats: Sequence[EndpointStats], sort_by: SortBy = SortBy.MEDIAN) -> None:
    print(render(stats, sort_by))
