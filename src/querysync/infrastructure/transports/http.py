"""HTTP resource transport backed by httpx."""

import logging
from typing import Any

import httpx

from querysync.core.errors import NetworkError, ServerError

logger = logging.getLogger(__name__)


class HttpResourceTransport:
    """REST transport for one resource of the project-management API.

    Responses use the backend's ``{"success": ..., "data": ...}`` envelope;
    the transport returns ``data``. Timeouts and connection failures raise
    NetworkError, non-success responses raise ServerError. Request timeouts
    are configured on the ``httpx.AsyncClient``.

    Example:
        async with httpx.AsyncClient(base_url="https://pm.example.com/api") as http:
            milestones = HttpResourceTransport(
                http,
                "/milestones",
                scoped_path="/projects/{parent_id}/milestones",
            )
            rows = await milestones.list("p1")
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        path: str,
        scoped_path: str | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            client: Shared httpx client (base URL, headers, timeout).
            path: Collection path, e.g. ``"/milestones"``.
            scoped_path: Path of the collection under a parent, with a
                ``{parent_id}`` placeholder.
        """
        self._client = client
        self._path = path.rstrip("/")
        self._scoped_path = scoped_path

    async def list(self, parent_id: str | None = None, **params: Any) -> Any:
        """GET the collection, scoped to ``parent_id`` when given."""
        if parent_id is not None and self._scoped_path is not None:
            path = self._scoped_path.format(parent_id=parent_id)
        else:
            path = self._path
        return await self._request("GET", path, params=params or None)

    async def get_one(self, id: str) -> Any:
        return await self._request("GET", f"{self._path}/{id}")

    async def create(self, payload: dict[str, Any]) -> Any:
        return await self._request("POST", self._path, json=payload)

    async def update(self, id: str, payload: dict[str, Any]) -> Any:
        return await self._request("PUT", f"{self._path}/{id}", json=payload)

    async def remove(self, id: str) -> Any:
        return await self._request("DELETE", f"{self._path}/{id}")

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        logger.debug("API request: %s %s", method, path)
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise NetworkError(f"{method} {path} timed out") from e
        except httpx.TransportError as e:
            raise NetworkError(f"{method} {path} failed: {e}") from e

        if response.is_error:
            raise ServerError(
                f"API request failed: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
                body=_safe_body(response),
            )

        if response.status_code == 204 or not response.content:
            return None
        try:
            payload = response.json()
        except ValueError as e:
            raise ServerError(
                f"{method} {path} returned invalid JSON",
                status_code=response.status_code,
                body=response.text,
            ) from e

        if isinstance(payload, dict) and "success" in payload:
            if not payload["success"]:
                raise ServerError(
                    str(payload.get("error") or f"{method} {path} was not successful"),
                    status_code=response.status_code,
                    body=payload,
                )
            return payload.get("data")
        return payload


def _safe_body(response: httpx.Response) -> Any:
    """Parse an error body as JSON, falling back to text."""
    try:
        return response.json()
    except ValueError:
        return response.text
