"""Key registry - known keys and the invalidation hierarchy."""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from cachetools import LRUCache  # type: ignore[import-untyped]

from querysync.core.entities.cache_key import (
    KeyLike,
    KeyPattern,
    QueryKey,
    as_pattern,
    make_key,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HierarchyEdge:
    """Declared parent -> child relationship between two key patterns.

    With ``bind=True``, wildcards that appear at the same position in both
    patterns are tied together when the edge is walked.
    """

    child: KeyPattern
    parent: KeyPattern
    bind: bool = True

    def children_of(self, key: QueryKey) -> KeyPattern | None:
        """Child pattern reached from ``key``, or None if ``key`` is not a parent."""
        if not self.parent.matches(key):
            return None
        return self.child.bind(self.parent, key) if self.bind else self.child

    def parents_of(self, key: QueryKey) -> KeyPattern | None:
        """Parent pattern reached from ``key``, or None if ``key`` is not a child."""
        if not self.child.matches(key):
            return None
        return self.parent.bind(self.child, key) if self.bind else self.parent


class KeyRegistry:
    """Registry of currently-known keys and their hierarchy graph.

    The hierarchy is declared once with ``register_hierarchy`` and used to
    derive invalidation cascades generically, instead of every write
    listing the keys it touches.
    """

    def __init__(self, expand_cache_size: int = 512) -> None:
        """Initialize the registry.

        Args:
            expand_cache_size: Number of pattern expansions memoized between
                changes of the known-key set.
        """
        self._known: dict[QueryKey, None] = {}
        self._edges: list[HierarchyEdge] = []
        self._expand_cache: LRUCache[KeyPattern, tuple[QueryKey, ...]] = LRUCache(
            maxsize=expand_cache_size
        )

    @property
    def edges(self) -> tuple[HierarchyEdge, ...]:
        return tuple(self._edges)

    def make_key(
        self,
        resource_type: str,
        scope_id: Any | None = None,
        sub_resource: str | None = None,
        params: dict[str, Any] | None = None,
    ) -> QueryKey:
        """Build a deterministic key and record it as known."""
        key = make_key(resource_type, scope_id, sub_resource, params)
        self.track(key)
        return key

    def track(self, key: QueryKey) -> None:
        """Record ``key`` as currently known."""
        if key not in self._known:
            self._known[key] = None
            self._expand_cache.clear()

    def forget(self, key: QueryKey) -> None:
        """Drop ``key`` from the known set."""
        if key in self._known:
            del self._known[key]
            self._expand_cache.clear()

    def is_known(self, key: QueryKey) -> bool:
        return key in self._known

    def known_keys(self) -> list[QueryKey]:
        return list(self._known)

    def register_hierarchy(
        self,
        child: KeyLike,
        parent: KeyLike,
        bind: bool = True,
    ) -> HierarchyEdge:
        """Declare that invalidating ``parent`` must also invalidate ``child``.

        The reverse is not implied: invalidating a child never reaches its
        parent through ``descendants``.

        Args:
            child: Pattern (or key) of the dependent keys.
            parent: Pattern (or key) of the owning keys.
            bind: Tie wildcards shared by both patterns, so that
                ``projects/*`` only reaches its own ``projects/*/milestones``.

        Returns:
            The registered edge.
        """
        edge = HierarchyEdge(child=as_pattern(child), parent=as_pattern(parent), bind=bind)
        self._edges.append(edge)
        logger.debug("Registered hierarchy %s -> %s", edge.parent, edge.child)
        return edge

    def expand(self, key_or_pattern: KeyLike) -> list[QueryKey]:
        """Resolve a key or pattern into the currently-known keys it matches.

        Args:
            key_or_pattern: An exact key or a possibly wildcarded pattern.

        Returns:
            Matching known keys, in registration order.
        """
        if isinstance(key_or_pattern, QueryKey):
            return [key_or_pattern] if key_or_pattern in self._known else []
        cached = self._expand_cache.get(key_or_pattern)
        if cached is None:
            cached = tuple(k for k in self._known if key_or_pattern.matches(k))
            self._expand_cache[key_or_pattern] = cached
        return list(cached)

    def descendants(self, keys: Iterable[QueryKey]) -> list[QueryKey]:
        """Return every key transitively reachable downward from ``keys``.

        The starting keys themselves are not included.
        """
        return self._walk(keys, upward=False)

    def ancestors(self, keys: Iterable[QueryKey]) -> list[QueryKey]:
        """Return every key transitively reachable upward from ``keys``."""
        return self._walk(keys, upward=True)

    def cascade(
        self,
        keys_or_patterns: Iterable[KeyLike],
        include_ancestors: bool = False,
    ) -> list[QueryKey]:
        """Compute the full invalidation set for a directive.

        Args:
            keys_or_patterns: Exact keys or patterns to invalidate. Exact
                keys are kept even if not (yet) known.
            include_ancestors: Also add the ancestors of the directly
                matched keys (but not the ancestors' other descendants).

        Returns:
            De-duplicated keys, roots first.
        """
        roots: dict[QueryKey, None] = {}
        for item in keys_or_patterns:
            if isinstance(item, QueryKey):
                roots[item] = None
            else:
                roots.update(dict.fromkeys(self.expand(item)))

        result = dict(roots)
        result.update(dict.fromkeys(self.descendants(roots)))
        if include_ancestors:
            result.update(dict.fromkeys(self.ancestors(roots)))
        return list(result)

    def _walk(self, keys: Iterable[QueryKey], upward: bool) -> list[QueryKey]:
        start = list(keys)
        seen: dict[QueryKey, None] = dict.fromkeys(start)
        found: dict[QueryKey, None] = {}
        frontier = start
        while frontier:
            next_frontier: list[QueryKey] = []
            for key in frontier:
                for edge in self._edges:
                    pattern = edge.parents_of(key) if upward else edge.children_of(key)
                    if pattern is None:
                        continue
                    for related in self.expand(pattern):
                        if related in seen:
                            continue
                        seen[related] = None
                        found[related] = None
                        next_frontier.append(related)
            frontier = next_frontier
        return list(found)
