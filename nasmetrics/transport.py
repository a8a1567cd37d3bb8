"""Signed GetMetricStatistics client for the NIFCLOUD NAS API."""
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
from urllib.parse import urlencode
import logging
import time
import xml.etree.ElementTree as ET

import httpx
from botocore.auth import SigV4Auth
from botocore.awsrequest import AWSRequest
from botocore.credentials import Credentials
from botocore.exceptions import BotoCoreError

from nasmetrics.config import endpoint_for_region
from nasmetrics.errors import TransportError
from nasmetrics.series import DataPoint, MetricQuery, MetricSeries

logger = logging.getLogger(__name__)

API_VERSION = "2016-02-24"
SERVICE_NAME = "nas"
TIME_LAYOUT = "%Y-%m-%d %H:%M:%S"
DIMENSION_NAME = "NASInstanceIdentifier"
RESULT_ELEMENTS = ("NiftyGetMetricStatisticsResult", "GetMetricStatisticsResult")


def make_query(
    metric_name: str,
    identifier: str,
    lookback_s: int = 180,
    now: Optional[datetime] = None,
) -> MetricQuery:
    """Build a query for the last ``lookback_s`` seconds of one metric."""
    end = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return MetricQuery(
        metric_name=metric_name,
        dimension=(DIMENSION_NAME, identifier),
        start=end - timedelta(seconds=lookback_s),
        end=end,
    )


def query_params(query: MetricQuery) -> Dict[str, str]:
    """Encode a query as GetMetricStatistics form parameters."""
    name, value = query.dimension
    return {
        "Action": "GetMetricStatistics",
        "Version": API_VERSION,
        "MetricName": query.metric_name,
        "Dimensions.member.1.Name": name,
        "Dimensions.member.1.Value": value,
        "StartTime": query.start.astimezone(timezone.utc).strftime(TIME_LAYOUT),
        "EndTime": query.end.astimezone(timezone.utc).strftime(TIME_LAYOUT),
    }


def _local(tag: str) -> str:
    """Strip the XML namespace from a tag."""
    return tag.rsplit("}", 1)[-1]


def _child_text(element: ET.Element, name: str) -> Optional[str]:
    for child in element:
        if _local(child.tag) == name:
            return (child.text or "").strip()
    return None


def parse_timestamp(text: str) -> datetime:
    """Parse an ISO 8601 timestamp; naive values are taken as UTC."""
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    ts = datetime.fromisoformat(text)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _parse_sum(raw: str) -> float:
    try:
        return float(raw)
    except ValueError:
        raise TransportError(f"invalid Sum {raw!r}")


def _parse_sample_count(raw: str) -> int:
    """Parse a non-negative integral count; "3" and "3.0" are both accepted."""
    try:
        count = float(raw)
    except ValueError:
        raise TransportError(f"invalid SampleCount {raw!r}")
    if not count.is_integer() or count < 0:
        raise TransportError(f"invalid SampleCount {raw!r}")
    return int(count)


def _parse_member(member: ET.Element) -> DataPoint:
    raw_ts = _child_text(member, "Timestamp")
    if not raw_ts:
        raise TransportError("datapoint without Timestamp")
    try:
        timestamp = parse_timestamp(raw_ts)
    except ValueError:
        raise TransportError(f"invalid Timestamp {raw_ts!r}")

    raw_sum = _child_text(member, "Sum")
    raw_count = _child_text(member, "SampleCount")
    if raw_sum is not None and raw_count is not None:
        return DataPoint(
            timestamp=timestamp,
            sum=_parse_sum(raw_sum),
            sample_count=_parse_sample_count(raw_count),
        )

    # Alternate shape: pre-divided value, parsed by the reducer
    return DataPoint(timestamp=timestamp, value=_child_text(member, "Value"))


def parse_response(body: bytes) -> MetricSeries:
    """
    Decode a GetMetricStatistics XML response into datapoints.

    Raises:
        TransportError: The body is not XML or has no result element
    """
    try:
        root = ET.fromstring(body)
    except ET.ParseError as e:
        raise TransportError(f"failed to decode response: {e}")

    result = None
    for element in root.iter():
        if _local(element.tag) in RESULT_ELEMENTS:
            result = element
            break
    if result is None:
        raise TransportError(f"unexpected response element <{_local(root.tag)}>")

    points: List[DataPoint] = []
    for container in result:
        if _local(container.tag) != "Datapoints":
            continue
        for member in container:
            if _local(member.tag) == "member":
                points.append(_parse_member(member))
    return tuple(points)


def _error_message(body: bytes) -> str:
    """Extract Code/Message from an API error body when present."""
    fallback = body[:200].decode("utf-8", errors="replace")
    try:
        root = ET.fromstring(body)
    except ET.ParseError:
        return fallback
    code = message = None
    for element in root.iter():
        name = _local(element.tag)
        if name == "Code" and code is None:
            code = (element.text or "").strip()
        elif name == "Message" and message is None:
            message = (element.text or "").strip()
    if code or message:
        return f"{code}: {message}"
    return fallback


class NasClient:
    """Sends signed metric queries to one regional NAS endpoint."""

    def __init__(
        self,
        region: str,
        access_key_id: str,
        secret_access_key: str,
        timeout_s: float = 30.0,
        http_client: Optional[httpx.Client] = None,
    ):
        self.region = region
        self.endpoint = endpoint_for_region(region)
        self.timeout_s = timeout_s
        self._signer = SigV4Auth(
            Credentials(access_key_id, secret_access_key),
            SERVICE_NAME,
            region,
        )
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client()

    def close(self):
        if self._owns_client:
            self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _sign(self, params: Dict[str, str]) -> AWSRequest:
        request = AWSRequest(
            method="POST",
            url=self.endpoint,
            data=urlencode(params).encode("utf-8"),
            headers={"Content-Type": "application/x-www-form-urlencoded; charset=utf-8"},
        )
        try:
            self._signer.add_auth(request)
        except BotoCoreError as e:
            raise TransportError(f"failed to sign request: {e}")
        return request

    def request(self, params: Dict[str, str], timeout: Optional[float] = None) -> bytes:
        """Send one signed API call and return the raw response body.

        ``timeout`` bounds the whole call, including a body that arrives
        slowly; httpx alone only bounds each connect/read/write step.
        """
        limit = timeout if timeout is not None else self.timeout_s
        deadline = time.monotonic() + limit
        signed = self._sign(params)
        try:
            with self._client.stream(
                "POST",
                signed.url,
                content=signed.body,
                headers=dict(signed.headers.items()),
                timeout=limit,
            ) as response:
                chunks = []
                for chunk in response.iter_bytes():
                    chunks.append(chunk)
                    if time.monotonic() > deadline:
                        raise TransportError(f"response not complete within {limit:.1f}s")
                body = b"".join(chunks)
        except httpx.HTTPError as e:
            raise TransportError(f"request failed: {e}")

        if not response.is_success:
            raise TransportError(
                f"HTTP {response.status_code}: {_error_message(body)}"
            )
        return body

    def fetch(self, query: MetricQuery, timeout: Optional[float] = None) -> MetricSeries:
        """Fetch the datapoints for one query."""
        body = self.request(query_params(query), timeout=timeout)
        logger.debug(f"{query.metric_name}: {body!r}")
        return parse_response(body)
