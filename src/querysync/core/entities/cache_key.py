"""Query key and key pattern value objects."""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Union

from querysync.utils.hashing import freeze


class _Wildcard:
    """Placeholder matching any non-empty key component."""

    _instance: "_Wildcard | None" = None

    def __new__(cls) -> "_Wildcard":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ANY"

    def __copy__(self) -> "_Wildcard":
        return self

    def __deepcopy__(self, memo: dict[int, Any]) -> "_Wildcard":
        return self


ANY: Any = _Wildcard()


@dataclass(frozen=True)
class QueryKey:
    """Immutable, structurally comparable key of a cached resource.

    A key is the tuple ``(resource_type, scope_id, sub_resource, params)``.
    ``params`` holds the query parameters frozen into sorted pairs, so two
    keys built from the same parameter map compare equal whatever the
    insertion order was.
    """

    resource_type: str
    scope_id: str | None = None
    sub_resource: str | None = None
    params: tuple[tuple[str, Any], ...] = ()

    def __str__(self) -> str:
        """Return a readable path such as ``projects/p1/milestones?status=open``."""
        parts = [self.resource_type]
        if self.scope_id is not None:
            parts.append(self.scope_id)
        if self.sub_resource is not None:
            parts.append(self.sub_resource)
        path = "/".join(parts)
        if self.params:
            query = "&".join(f"{name}={value}" for name, value in self.params)
            path = f"{path}?{query}"
        return path

    @property
    def params_dict(self) -> dict[str, Any]:
        """Return the query parameters as a plain dict."""
        return dict(self.params)

    def components(self) -> tuple[Any, ...]:
        """Return the four key components in hierarchy order."""
        return (self.resource_type, self.scope_id, self.sub_resource, self.params)

    def as_pattern(self) -> "KeyPattern":
        """Pattern matching exactly this key."""
        return KeyPattern(self.components(), exact=True)

    def as_prefix(self) -> "KeyPattern":
        """Pattern matching this key and every key nested below it."""
        parts = list(self.components())
        while parts and parts[-1] in (None, ()):
            parts.pop()
        return KeyPattern(tuple(parts))

    @classmethod
    def create(
        cls,
        resource_type: str,
        scope_id: Any | None = None,
        sub_resource: str | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> "QueryKey":
        """Create a QueryKey from raw components.

        Args:
            resource_type: Top-level resource name, e.g. ``"projects"``.
            scope_id: Optional identifier; coerced to ``str``.
            sub_resource: Optional nested collection, e.g. ``"milestones"``.
            params: Optional query parameters. ``None`` values are dropped.

        Returns:
            A new QueryKey instance.

        Raises:
            ValueError: If ``resource_type`` is empty.
        """
        if not resource_type:
            raise ValueError("Query key requires a resource type")
        cleaned = {k: v for k, v in (params or {}).items() if v is not None}
        return cls(
            resource_type=resource_type,
            scope_id=str(scope_id) if scope_id is not None else None,
            sub_resource=sub_resource,
            params=freeze(cleaned) if cleaned else (),
        )


@dataclass(frozen=True)
class KeyPattern:
    """Possibly wildcarded selector over query keys.

    ``parts`` lists components in hierarchy order. ``ANY`` matches any
    non-empty component. A non-exact pattern only constrains the
    components it lists, so ``KeyPattern.of("projects", "p1")`` selects
    project ``p1`` together with all of its sub-resources.
    """

    parts: tuple[Any, ...]
    exact: bool = False

    def __post_init__(self) -> None:
        if not self.parts:
            raise ValueError("Key pattern requires at least a resource type")
        if len(self.parts) > 4:
            raise ValueError("Key pattern has at most four components")

    def __str__(self) -> str:
        rendered = "/".join("*" if p is ANY else str(p) for p in self.parts)
        return rendered if self.exact else f"{rendered}/**"

    @property
    def resource_type(self) -> Any:
        return self.parts[0]

    @property
    def has_wildcards(self) -> bool:
        return any(part is ANY for part in self.parts)

    def _padded(self) -> tuple[Any, ...]:
        defaults: tuple[Any, ...] = (None, None, None, ())
        return self.parts + defaults[len(self.parts):]

    def matches(self, key: QueryKey) -> bool:
        """Check whether ``key`` is selected by this pattern."""
        parts = self._padded() if self.exact else self.parts
        for expected, actual in zip(parts, key.components()):
            if expected is ANY:
                if actual is None:
                    return False
            elif expected != actual:
                return False
        return True

    def bind(self, source: "KeyPattern", key: QueryKey) -> "KeyPattern":
        """Substitute wildcards shared with ``source`` by ``key``'s components.

        Used when walking a hierarchy edge: if the parent pattern
        ``projects/*`` matched ``projects/p1``, the child pattern
        ``projects/*/milestones`` binds to ``projects/p1/milestones``.

        Args:
            source: The pattern that matched ``key``.
            key: The concrete key that was matched.

        Returns:
            A new pattern with the shared wildcards bound.
        """
        components = key.components()
        bound = []
        for index, part in enumerate(self.parts):
            if (
                part is ANY
                and index < len(source.parts)
                and source.parts[index] is ANY
            ):
                bound.append(components[index])
            else:
                bound.append(part)
        return KeyPattern(tuple(bound), exact=self.exact)

    def to_key(self) -> QueryKey:
        """Convert a wildcard-free exact pattern back into a key.

        Raises:
            ValueError: If the pattern has wildcards or is a prefix.
        """
        if self.has_wildcards or not self.exact:
            raise ValueError(f"Pattern {self} does not denote a single key")
        return QueryKey(*self._padded())

    @classmethod
    def of(cls, *parts: Any) -> "KeyPattern":
        """Create a prefix pattern, e.g. ``KeyPattern.of("projects", ANY, "tickets")``."""
        return cls(tuple(parts))


KeyLike = Union[QueryKey, KeyPattern]


def make_key(
    resource_type: str,
    scope_id: Any | None = None,
    sub_resource: str | None = None,
    params: Mapping[str, Any] | None = None,
) -> QueryKey:
    """Build a deterministic query key; see ``QueryKey.create``."""
    return QueryKey.create(resource_type, scope_id, sub_resource, params)


def as_pattern(key_or_pattern: KeyLike) -> KeyPattern:
    """Normalize a key or pattern into a pattern."""
    if isinstance(key_or_pattern, QueryKey):
        return key_or_pattern.as_pattern()
    return key_or_pattern
