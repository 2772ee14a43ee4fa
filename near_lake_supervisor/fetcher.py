"""
Block height retrieval from the indexer's metrics endpoints.

The Prometheus-style query API is tried first; any failure there falls back to
scanning the plain-text /metrics exposition.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

from near_lake_supervisor.config import MonitorConfig


class FetchError(Exception):
    def __init__(self, message: str, query_error: Optional[str] = None):
        super().__init__(message)
        self.query_error = query_error


@dataclass(frozen=True)
class MetricSample:
    height: int
    fetched_at: float
    source: str


@dataclass(frozen=True)
class QueryResult:
    metric: Dict[str, str] = field(default_factory=dict)
    value: Optional[Tuple[Any, Any]] = None

    @classmethod
    def from_dict(cls, raw: Any) -> "QueryResult":
        if not isinstance(raw, dict):
            return cls()
        metric = raw.get("metric")
        if not isinstance(metric, dict):
            metric = {}
        value = raw.get("value")
        if isinstance(value, list) and len(value) >= 2:
            value = (value[0], value[1])
        else:
            value = None
        return cls(metric={str(k): str(v) for k, v in metric.items()}, value=value)

    @property
    def value_text(self) -> Optional[str]:
        """The sample value, only if it was sent as a string."""
        if self.value is None or not isinstance(self.value[1], str):
            return None
        return self.value[1]


@dataclass(frozen=True)
class QueryResponse:
    status: Optional[str] = None
    result_type: Optional[str] = None
    result: List[QueryResult] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: Any) -> "QueryResponse":
        if not isinstance(raw, dict):
            return cls()
        status = raw.get("status")
        data = raw.get("data")
        if not isinstance(data, dict):
            data = {}
        result_type = data.get("resultType")
        results = data.get("result")
        if not isinstance(results, list):
            results = []
        return cls(
            status=status if isinstance(status, str) else None,
            result_type=result_type if isinstance(result_type, str) else None,
            result=[QueryResult.from_dict(r) for r in results],
        )


def parse_height(text: str) -> int:
    """
    Parses a decimal float string and truncates it to an integer block height.
    Raises ValueError for anything that is not a finite number.
    """
    value = float(text)
    if not math.isfinite(value):
        raise ValueError(f"non-finite value: {text}")
    return int(value)


def height_from_exposition(body: str, metric_name: str) -> int:
    """
    Returns the height from the first parsable `metric_name value` line of a text exposition.
    Lines for other metrics sharing the same prefix (e.g. metric_name_total) are ignored.
    """
    for line in body.splitlines():
        if not line.startswith(metric_name):
            continue
        rest = line[len(metric_name):]
        if rest and not (rest[0].isspace() or rest[0] == "{"):
            continue
        parts = line.split()
        if len(parts) < 2:
            continue
        try:
            return parse_height(parts[1])
        except ValueError:
            continue
    raise FetchError(f"metric {metric_name} not found in response")


class MetricFetcher:
    def __init__(
        self,
        timeout: float = 10.0,
        log: Optional[Callable[[str], None]] = None,
        verbose: bool = False,
    ):
        self.timeout = timeout
        self.log = log
        self.verbose = verbose

    def _debug(self, message: str) -> None:
        if self.verbose and self.log:
            self.log(message)

    def query_height(self, config: MonitorConfig) -> int:
        """Reads the height from the structured query API. Raises FetchError on any failure."""
        url = f"{config.indexer_url}/api/v1/query"
        try:
            r = requests.get(url, params={"query": config.metric_name}, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise FetchError(f"query request failed: {e}") from e

        if not 200 <= r.status_code < 300:
            raise FetchError(f"query endpoint returned status {r.status_code}")

        try:
            response = QueryResponse.from_dict(r.json())
        except ValueError as e:
            raise FetchError(f"failed to decode query response: {e}") from e

        if response.status != "success":
            raise FetchError(f"query status is {response.status!r}, expected 'success'")
        if not response.result:
            raise FetchError(f"query returned no result for {config.metric_name}")

        value_text = response.result[0].value_text
        if value_text is None:
            raise FetchError("query result has no string sample value")
        try:
            return parse_height(value_text)
        except ValueError as e:
            raise FetchError(f"cannot parse query value {value_text!r}: {e}") from e

    def text_height(self, config: MonitorConfig) -> int:
        """Reads the height from the plain-text /metrics endpoint. Raises FetchError on any failure."""
        url = f"{config.indexer_url}/metrics"
        try:
            r = requests.get(url, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise FetchError(f"failed to fetch metrics: {e}") from e

        if not 200 <= r.status_code < 300:
            raise FetchError(f"metrics endpoint returned status {r.status_code}")

        return height_from_exposition(r.text, config.metric_name)

    def fetch(self, config: MonitorConfig) -> MetricSample:
        try:
            height = self.query_height(config)
            return MetricSample(height=height, fetched_at=time.time(), source="query")
        except FetchError as e:
            query_error = str(e)
            self._debug(f"Query API unavailable ({query_error}), falling back to {config.indexer_url}/metrics")

        try:
            height = self.text_height(config)
        except FetchError as e:
            raise FetchError(str(e), query_error=query_error) from e
        return MetricSample(height=height, fetched_at=time.time(), source="text")
