"""Cooperative cancellation tokens.

A token is a flag with "cancelled" semantics plus a list of callbacks fired
once when the flag flips. Work checks the flag at well-defined points
(before each save batch, before/after each extraction attempt); nothing is
torn down preemptively.

Usage:
    token = CancellationToken()
    token.on_cancel(lambda: logger.info("cancel_requested"))

    # elsewhere
    token.cancel()

    # combined: cancelled when either input is
    combined = CancellationToken.any(user_token, timeout_token)
"""

from typing import Callable, List, Optional

import structlog

logger = structlog.get_logger()


class CancellationToken:
    """Boolean cancellation flag with cancel callbacks."""

    def __init__(self, name: str = "cancellation") -> None:
        self.name = name
        self._cancelled = False
        self._callbacks: List[Callable[[], None]] = []
        self._sources: List["CancellationToken"] = []

    def is_cancelled(self) -> bool:
        """Whether cancel() has been called."""
        return self._cancelled

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Flip the flag and fire registered callbacks (only the first time)."""
        if self._cancelled:
            return
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.error(
                    "cancel_callback_failed",
                    token=self.name,
                    error=str(e),
                    exc_info=True,
                )

    def on_cancel(self, callback: Callable[[], None]) -> None:
        """Register a callback; runs immediately if already cancelled."""
        if self._cancelled:
            callback()
            return
        self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[], None]) -> bool:
        """Unregister a callback. Returns False if it was not registered."""
        try:
            self._callbacks.remove(callback)
        except ValueError:
            return False
        return True

    @property
    def callback_count(self) -> int:
        return len(self._callbacks)

    @classmethod
    def any(
        cls, *tokens: Optional["CancellationToken"], name: str = "combined"
    ) -> "CancellationToken":
        """Combine tokens into one that cancels when any input cancels.

        ``None`` entries are ignored so an optional caller token can be
        passed through directly. Call ``detach()`` on the result once it is
        no longer needed so long-lived input tokens do not keep it alive.
        """
        combined = cls(name=name)
        for token in tokens:
            if token is None:
                continue
            token.on_cancel(combined.cancel)
            combined._sources.append(token)
        return combined

    def detach(self) -> None:
        """Unregister this token from the tokens it was combined from."""
        sources, self._sources = self._sources, []
        for token in sources:
            token.remove_callback(self.cancel)

    def __repr__(self) -> str:
        return f"CancellationToken(name={self.name!r}, cancelled={self._cancelled})"
