"""
Minimal signal bus used to talk to the host application.

The chat client owns the real event loop; credkeep only needs named signals
with positional arguments. Handlers run synchronously in registration order
on the caller's thread.

Signals used by credkeep:
    "setup changed"       - a setting was edited (no arguments)
    "setup reread"        - credentials were unlocked, dependents should reload
    "chatnet read"        - (chatnet_name, node) after a network block is parsed
    "chatnet saved"       - (chatnet_name, node) before a network block is written
    "server setup saved"  - (address, node) before a server block is written
    "gui dialog"          - (kind, message) user-visible notice
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

SignalHandler = Callable[..., Any]


class SignalBus:
    """Named signals with ordered, synchronous handlers."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[SignalHandler]] = {}

    def add(self, name: str, handler: SignalHandler) -> None:
        """Register a handler for a signal."""
        self._handlers.setdefault(name, []).append(handler)

    def remove(self, name: str, handler: SignalHandler) -> None:
        """Unregister a handler. Unknown handlers are ignored."""
        handlers = self._handlers.get(name)
        if not handlers:
            return
        try:
            handlers.remove(handler)
        except ValueError:
            return
        if not handlers:
            del self._handlers[name]

    def emit(self, name: str, *args: Any) -> None:
        """Call every handler registered for ``name`` with ``args``."""
        # Copy so handlers may add/remove while the signal is in flight
        for handler in list(self._handlers.get(name, ())):
            handler(*args)

    def handlers(self, name: str) -> list[SignalHandler]:
        """Return a copy of the handlers registered for ``name``."""
        return list(self._handlers.get(name, ()))

    def has_handlers(self, name: str) -> bool:
        return bool(self._handlers.get(name))
