"""
Consensus-layer REST client for blob sidecars.

Only the `GET /eth/v1/beacon/blob_sidecars/{slot}` route is used. A
non-2xx status or a transport failure raises TransientNetworkError; a
response without the expected shape raises MalformedResponseError.
"""

from typing import Any, List, Optional

import requests

from .errors import MalformedResponseError, TransientNetworkError
from .logger import get_logger
from .models import Sidecar
from .retry import should_retry_http_status

logger = get_logger()

SIDECAR_FIELDS = ("blob", "kzg_commitment", "kzg_proof")


def parse_sidecars(body: Any) -> List[Sidecar]:
    """
    Validate a blob_sidecars response body and return its sidecars.

    Hex fields are returned as received; normalization is left to the
    consumer.
    """
    if not isinstance(body, dict):
        raise MalformedResponseError("Sidecar response is not a JSON object")
    if "version" not in body:
        raise MalformedResponseError("Sidecar response is missing 'version'")
    data = body.get("data")
    if not isinstance(data, list):
        raise MalformedResponseError("Sidecar response 'data' is not an array")

    sidecars = []
    for position, item in enumerate(data):
        if not isinstance(item, dict):
            raise MalformedResponseError(f"Sidecar {position} is not an object")
        missing = [f for f in SIDECAR_FIELDS if not isinstance(item.get(f), str)]
        if missing:
            raise MalformedResponseError(
                f"Sidecar {position} is missing fields: {', '.join(missing)}"
            )
        index = item.get("index")
        try:
            index = int(index) if index is not None else None
        except (TypeError, ValueError):
            raise MalformedResponseError(f"Sidecar {position} has invalid index {index!r}")
        sidecars.append(Sidecar(
            index=index,
            blob=item["blob"],
            kzg_commitment=item["kzg_commitment"],
            kzg_proof=item["kzg_proof"],
        ))
    return sidecars


class BeaconClient:
    """Typed wrapper over a beacon node's REST API."""

    def __init__(self, base_url: str, timeout: float = 15.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def sidecars_url(self, slot: int) -> str:
        return f"{self.base_url}/eth/v1/beacon/blob_sidecars/{slot}"

    def get_blob_sidecars(self, slot: int) -> List[Sidecar]:
        url = self.sidecars_url(slot)
        try:
            resp = self.session.get(url, timeout=self.timeout, headers={"Accept": "application/json"})
            resp.raise_for_status()
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else "HTTPError"
            if isinstance(status, int) and not should_retry_http_status(status):
                logger.warning("Beacon node returned non-retryable status", url=url, status=status)
            raise TransientNetworkError(f"Beacon request failed ({status}): {url}") from e
        except requests.exceptions.Timeout as e:
            raise TransientNetworkError(f"Beacon request timed out: {url}") from e
        except requests.exceptions.RequestException as e:
            raise TransientNetworkError(f"Beacon request error: {e}") from e

        try:
            body = resp.json()
        except ValueError as e:
            raise MalformedResponseError(f"Beacon response is not JSON: {url}") from e
        return parse_sidecars(body)
