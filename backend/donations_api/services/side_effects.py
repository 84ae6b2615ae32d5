"""Fire-and-forget side effects with retry and backoff.

Case recomputation and receipt emails run after a donation transition has
committed. Their failures are logged and never reach the webhook response or
the user-facing confirmation.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from donations_api.core.config import settings

logger = logging.getLogger(__name__)


class SideEffectDispatcher:
    def __init__(
        self,
        max_attempts: int | None = None,
        backoff_seconds: float | None = None,
    ) -> None:
        self.max_attempts = max_attempts or settings.SIDE_EFFECT_MAX_ATTEMPTS
        self.backoff_seconds = (
            backoff_seconds if backoff_seconds is not None else settings.SIDE_EFFECT_BACKOFF_SECONDS
        )
        self._tasks: set[asyncio.Task] = set()

    def dispatch(self, name: str, factory: Callable[[], Awaitable[object]]) -> asyncio.Task:
        """Schedule factory() in the background; a fresh awaitable is built per attempt."""
        task = asyncio.create_task(self._run(name, factory), name=f"side-effect:{name}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, name: str, factory: Callable[[], Awaitable[object]]) -> bool:
        for attempt in range(1, self.max_attempts + 1):
            try:
                await factory()
                return True
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if attempt == self.max_attempts:
                    logger.error(
                        "Side effect %s failed after %d attempts: %s",
                        name,
                        attempt,
                        exc,
                        exc_info=True,
                    )
                    return False
                delay = self.backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    "Side effect %s failed (attempt %d/%d), retrying in %.2fs: %s",
                    name,
                    attempt,
                    self.max_attempts,
                    delay,
                    exc,
                )
                await asyncio.sleep(delay)
        return False

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every scheduled side effect to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
