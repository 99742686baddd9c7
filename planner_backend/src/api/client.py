from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from .errors import (
    DuplicateKeyError,
    NotFoundError,
    PlannerError,
    StorageUnavailableError,
    ValidationError,
)
from .models import SnapshotEntity, SnapshotMetaEntity

logger = logging.getLogger(__name__)

_STATUS_ERRORS = {
    400: ValidationError,
    404: NotFoundError,
    409: DuplicateKeyError,
    422: ValidationError,
}


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


# PUBLIC_INTERFACE
class HttpSnapshotClient:
    """
    Snapshot store backed by the service's /api/v1/snapshots endpoints.

    Exposes the same operations as the local stores so a StateController can
    persist to a remote service. HTTP failures are mapped back onto the
    domain errors; transport failures become StorageUnavailableError.

    Args:
        base_url: Service root, e.g. 'http://localhost:8000'.
        client: Pre-configured httpx.Client (for instance FastAPI's TestClient).
            When given, base_url is ignored.
        timeout: Request timeout in seconds for the client created here.
    """

    prefix = "/api/v1/snapshots"

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        client: Optional[httpx.Client] = None,
        timeout: float = 10.0,
    ) -> None:
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout)
        self._owns_client = client is None

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def _request(self, method: str, path: str = "", **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(method, f"{self.prefix}{path}", **kwargs)
        except httpx.TransportError as e:
            raise StorageUnavailableError(f"Snapshot service unreachable: {e}") from e
        if response.is_success:
            return response

        try:
            detail = response.json().get("detail", response.text)
        except ValueError:
            detail = response.text
        if response.status_code >= 500:
            raise StorageUnavailableError(f"Snapshot service error {response.status_code}: {detail}")
        error_cls = _STATUS_ERRORS.get(response.status_code, PlannerError)
        raise error_cls(str(detail))

    def _to_meta(self, body: Dict[str, Any]) -> SnapshotMetaEntity:
        return {
            "id": body["id"],
            "created_at": _parse_dt(body["created_at"]),  # type: ignore
            "description": body.get("description"),
        }

    def _to_entity(self, body: Dict[str, Any]) -> SnapshotEntity:
        return {
            "id": body.get("id"),
            "created_at": _parse_dt(body.get("created_at")),
            "description": body.get("description"),
            "data": body.get("data") or [],
        }

    def create(
        self,
        snapshot_id: Optional[str],
        description: Optional[str],
        data: List[Dict[str, Any]],
    ) -> SnapshotMetaEntity:
        payload: Dict[str, Any] = {"description": description, "data": data}
        if snapshot_id:
            payload["id"] = snapshot_id
        response = self._request("POST", "/", json=payload)
        return self._to_meta(response.json())

    def list(self) -> List[SnapshotMetaEntity]:
        return [self._to_meta(item) for item in self._request("GET", "/").json()]

    def get(self, snapshot_id: str) -> SnapshotEntity:
        return self._to_entity(self._request("GET", f"/{quote(snapshot_id, safe='')}").json())

    def get_latest(self) -> SnapshotEntity:
        return self._to_entity(self._request("GET", "/latest").json())

    def delete(self, snapshot_id: str) -> None:
        self._request("DELETE", f"/{quote(snapshot_id, safe='')}")
