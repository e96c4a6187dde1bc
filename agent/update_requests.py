"""
Update requests: one ``POST /update/{kind}/{name}/{value}`` per metric.

Builds outbound requests from a store snapshot and parses update paths
back into metric updates on the collector side.
"""
import math
import re
from dataclasses import dataclass, field
from typing import Dict, Mapping, Union
from urllib.parse import quote, unquote

from loguru import logger

from agent.store import MetricKind, MetricSnapshot

UPDATE_PREFIX = "update"
CONTENT_TYPE = "text/plain"

GAUGE_VALUE_PATTERN = re.compile(r"-?[0-9]+(?:\.[0-9]+)?")
COUNTER_VALUE_PATTERN = re.compile(r"-?[0-9]+")


class MetricFormatError(ValueError):
    """Raised when a metric value cannot be written into an update path."""


class UpdatePathError(ValueError):
    """Raised when an update path cannot be parsed.

    ``status`` is the HTTP status the collector should answer with.
    """

    def __init__(self, message: str, status: int = 400):
        super().__init__(message)
        self.status = status


@dataclass(frozen=True)
class MetricUpdate:
    """A (name, kind, value) triple destined for, or received by, the collector."""
    name: str
    kind: MetricKind
    value: Union[float, int]


@dataclass(frozen=True)
class UpdateRequest:
    """A fully formed outbound update request."""
    name: str
    kind: MetricKind
    value: Union[float, int]
    path: str
    url: str
    method: str = "POST"
    headers: Mapping[str, str] = field(default_factory=lambda: {"Content-Type": CONTENT_TYPE})


def normalize_base_url(address: str) -> str:
    """Turn ``host:port`` or a URL into a base URL without a trailing slash."""
    address = address.strip()
    if "://" not in address:
        address = f"http://{address}"
    return address.rstrip("/")


def format_metric_value(kind: MetricKind, value: Union[float, int]) -> str:
    """Format a value the way the update protocol expects.

    Gauges are fixed-point decimals with six fractional digits, counters
    are decimal integers.

    Raises:
        MetricFormatError: If the value cannot be represented
    """
    if isinstance(value, bool):
        raise MetricFormatError(f"Boolean is not a valid {kind.value} value: {value!r}")

    if kind is MetricKind.GAUGE:
        try:
            number = float(value)
        except (TypeError, ValueError) as e:
            raise MetricFormatError(f"Invalid gauge value {value!r}: {e}") from e
        if not math.isfinite(number):
            raise MetricFormatError(f"Gauge value must be finite, got {number}")
        return f"{number:f}"

    if isinstance(value, float):
        if not value.is_integer():
            raise MetricFormatError(f"Counter value must be integral, got {value}")
        value = int(value)
    if not isinstance(value, int):
        raise MetricFormatError(f"Invalid counter value {value!r}")
    return str(value)


def build_update_path(kind: MetricKind, name: str, value: Union[float, int]) -> str:
    """Build the update path for one metric. Raises MetricFormatError."""
    if not name:
        raise MetricFormatError("Metric name must not be empty")
    formatted = format_metric_value(kind, value)
    return f"/{UPDATE_PREFIX}/{kind.value}/{quote(name, safe='')}/{formatted}"


def build_update_requests(snapshot: MetricSnapshot, base_url: str) -> Dict[str, UpdateRequest]:
    """Build one update request per metric in the snapshot.

    Entries whose value cannot be formatted are dropped with a warning;
    the rest of the batch is still built.

    Args:
        snapshot: Store snapshot to serialize
        base_url: Collector base URL, e.g. ``http://127.0.0.1:8080``

    Returns:
        Mapping of metric name to its update request
    """
    base_url = normalize_base_url(base_url)
    requests = {}

    for name, metric in snapshot:
        try:
            path = build_update_path(metric.kind, name, metric.value)
        except MetricFormatError as e:
            logger.warning(f"Dropping {metric.kind.value} '{name}' from report: {e}")
            continue

        requests[name] = UpdateRequest(
            name=name,
            kind=metric.kind,
            value=metric.value,
            path=path,
            url=f"{base_url}{path}",
        )

    return requests


def parse_update_path(path: str) -> MetricUpdate:
    """Parse ``/update/{kind}/{name}/{value}`` into a MetricUpdate.

    Raises:
        UpdatePathError: 404 for a wrong shape or missing name,
            400 for an unknown kind or a malformed value
    """
    parts = path.strip("/").split("/")
    if not parts or parts[0] != UPDATE_PREFIX:
        raise UpdatePathError(f"Not an update path: {path}", status=404)
    if len(parts) != 4 or not parts[2]:
        raise UpdatePathError(f"Expected /{UPDATE_PREFIX}/{{kind}}/{{name}}/{{value}}, got {path}",
                              status=404)

    _, raw_kind, raw_name, raw_value = parts

    try:
        kind = MetricKind(raw_kind)
    except ValueError:
        raise UpdatePathError(f"Unknown metric kind: {raw_kind}", status=400) from None

    if kind is MetricKind.GAUGE:
        if not GAUGE_VALUE_PATTERN.fullmatch(raw_value):
            raise UpdatePathError(f"Invalid gauge value: {raw_value}", status=400)
        value = float(raw_value)
        if not math.isfinite(value):
            raise UpdatePathError(f"Gauge value must be finite: {raw_value}", status=400)
    else:
        if not COUNTER_VALUE_PATTERN.fullmatch(raw_value):
            raise UpdatePathError(f"Invalid counter value: {raw_value}", status=400)
        try:
            value = int(raw_value)
        except ValueError:
            raise UpdatePathError(f"Counter value too long: {len(raw_value)} digits", status=400) from None

    return MetricUpdate(name=unquote(raw_name), kind=kind, value=value)
