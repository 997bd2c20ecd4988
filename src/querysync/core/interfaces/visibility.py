"""Visibility signal interface."""

from collections.abc import Callable
from typing import Protocol

VisibilityListener = Callable[[bool], None]


class IVisibilitySignal(Protocol):
    """Foreground/background signal used to pause and resume polling."""

    def is_visible(self) -> bool:
        """Return True while the application is in the foreground."""
        ...

    def add_listener(self, listener: VisibilityListener) -> Callable[[], None]:
        """Register a callback invoked with the new visibility on change.

        Returns:
            A function that removes the listener.
        """
        ...
