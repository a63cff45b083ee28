"""Debounced scheduling of ``check_and_update`` for live-typing callers.

Triggers arriving within ``debounce_window`` of each other collapse into one
trailing invocation carrying the most recent snapshot pair. Once the window
has elapsed and the check has started, a new trigger starts a new window
instead of cancelling the running check.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from nanocontext.generation.coordinator import ContextCoordinator, UpdateCallback
from nanocontext.models import ContextRecord, ModelRef
from nanocontext.observability.tracing import record_metric

logger = logging.getLogger(__name__)


class ContextDebouncer:
    """Trailing-edge debouncer in front of a ``ContextCoordinator``."""

    def __init__(self, coordinator: ContextCoordinator, window: Optional[float] = None) -> None:
        self._coordinator = coordinator
        self.window = coordinator.config.debounce_window if window is None else window
        self._pending: Optional[asyncio.Task] = None
        self._args: Optional[tuple] = None
        # Snapshot the next ``text_changed`` call is compared against.
        self.baseline = ""

    @property
    def pending(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def trigger(
        self,
        current_text: str,
        previous_text: str,
        model: Optional[ModelRef],
        on_update: Optional[UpdateCallback] = None,
    ) -> asyncio.Task:
        """Schedule a check; supersedes any check still waiting out its window.

        Must be called from a running event loop. The returned task resolves
        to the record (or ``None``); a superseded task is cancelled.
        """
        self.cancel()
        record_metric("debounced_trigger_count")
        self._args = (current_text, previous_text, model, on_update)
        self._pending = asyncio.ensure_future(self._fire_after_window())
        return self._pending

    def text_changed(
        self,
        text: str,
        model: Optional[ModelRef],
        on_update: Optional[UpdateCallback] = None,
    ) -> asyncio.Task:
        """Trigger against ``baseline``, which advances once the check runs."""
        return self.trigger(text, self.baseline, model, on_update)

    async def _fire_after_window(self) -> Optional[ContextRecord]:
        await asyncio.sleep(self.window)
        return await self._fire()

    async def _fire(self) -> Optional[ContextRecord]:
        args, self._args = self._args, None
        self._pending = None
        if args is None:
            return None
        current_text, previous_text, model, on_update = args
        try:
            return await self._coordinator.check_and_update(current_text, previous_text, model, on_update)
        except Exception:
            logger.exception("debounced context check failed")
            return None
        finally:
            self.baseline = current_text

    async def flush(self) -> Optional[ContextRecord]:
        """Run a waiting check immediately instead of at the end of its window."""
        if not self.pending:
            return None
        self._pending.cancel()
        return await self._fire()

    def cancel(self) -> None:
        """Drop the waiting check, if any."""
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None
        self._args = None
