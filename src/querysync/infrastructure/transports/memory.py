"""In-memory resource transport implementation."""

import asyncio
import copy
import itertools
from collections import Counter
from typing import Any

from querysync.core.errors import ServerError


class InMemoryTransport:
    """Dict-backed transport for tests, demos and offline development.

    Rows belong to a parent through ``parent_field`` (e.g. ``projectId``),
    so ``list("p1")`` returns the rows of project ``p1``. Every call is
    counted in ``calls``; ``latency`` delays each call and ``fail_with``
    makes the next calls raise.
    """

    def __init__(
        self,
        rows: list[dict[str, Any]] | None = None,
        parent_field: str | None = None,
        id_field: str = "id",
        id_prefix: str = "",
        latency: float = 0.0,
    ) -> None:
        """Initialize the transport.

        Args:
            rows: Initial rows; each must carry ``id_field``.
            parent_field: Field linking a row to its parent resource.
            id_field: Name of the identifier field.
            id_prefix: Prefix of generated identifiers.
            latency: Seconds each call sleeps before answering.
        """
        self._parent_field = parent_field
        self._id_field = id_field
        self._id_prefix = id_prefix
        self._ids = itertools.count(1)
        self._rows: dict[str, dict[str, Any]] = {}
        for row in rows or []:
            self._rows[str(row[id_field])] = copy.deepcopy(row)
        self.latency = latency
        self.fail_with: BaseException | None = None
        self.calls: Counter[str] = Counter()

    def __len__(self) -> int:
        return len(self._rows)

    async def list(self, parent_id: str | None = None, **params: Any) -> list[dict[str, Any]]:
        """List rows, optionally filtered by parent and field equality."""
        await self._call("list")
        rows = list(self._rows.values())
        if parent_id is not None and self._parent_field is not None:
            rows = [r for r in rows if str(r.get(self._parent_field)) == parent_id]
        for name, value in params.items():
            rows = [r for r in rows if r.get(name) == value]
        return copy.deepcopy(rows)

    async def get_one(self, id: str) -> dict[str, Any]:
        """Return one row.

        Raises:
            ServerError: 404 if the row does not exist.
        """
        await self._call("get_one")
        return copy.deepcopy(self._require(id))

    async def create(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Insert a row, generating an id when the payload has none."""
        await self._call("create")
        row = copy.deepcopy(payload)
        if row.get(self._id_field) is None:
            row[self._id_field] = self._next_id()
        self._rows[str(row[self._id_field])] = row
        return copy.deepcopy(row)

    async def update(self, id: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Merge ``payload`` into an existing row."""
        await self._call("update")
        row = self._require(id)
        original_id = row[self._id_field]
        row.update(copy.deepcopy(payload))
        row[self._id_field] = original_id
        return copy.deepcopy(row)

    async def remove(self, id: str) -> dict[str, Any]:
        """Delete a row and return it."""
        await self._call("remove")
        self._require(id)
        return self._rows.pop(str(id))

    async def _call(self, operation: str) -> None:
        self.calls[operation] += 1
        if self.latency:
            await asyncio.sleep(self.latency)
        if self.fail_with is not None:
            raise self.fail_with

    def _next_id(self) -> str:
        while True:
            candidate = f"{self._id_prefix}{next(self._ids)}"
            if candidate not in self._rows:
                return candidate

    def _require(self, id: str) -> dict[str, Any]:
        try:
            return self._rows[str(id)]
        except KeyError:
            raise ServerError(
                f"Resource {id!r} not found",
                status_code=404,
                body={"success": False, "error": "Not found"},
            ) from None

