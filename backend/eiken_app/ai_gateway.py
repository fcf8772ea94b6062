from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from datetime import date
from typing import Awaitable, Callable, Optional, Protocol

import httpx

from .errors import (
    CredentialMissingOrInvalidError,
    GenerationExhaustedError,
    QuotaExceededError,
)

logger = logging.getLogger(__name__)


class TextGenerator(Protocol):
    async def generate(self, prompt: str) -> str:
        ...


@dataclass(frozen=True)
class QuotaSnapshot:
    count: int
    limit: int
    reset_date: date

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)


class DailyQuotaCounter:
    """Process-wide count of AI calls for the current calendar day.

    The counter resets lazily on the first access after the date changes.
    With ``enforce=False`` calls are still counted but never refused.
    """

    def __init__(self, limit: int, *, enforce: bool = True, today: Callable[[], date] = date.today) -> None:
        self.limit = limit
        self.enforce = enforce
        self._today = today
        self._lock = threading.Lock()
        self._count = 0
        self._reset_date = today()

    def _roll_over(self) -> None:
        current = self._today()
        if current != self._reset_date:
            logger.info("Daily quota counter reset (%s -> %s, %d calls)", self._reset_date, current, self._count)
            self._count = 0
            self._reset_date = current

    @property
    def count(self) -> int:
        with self._lock:
            self._roll_over()
            return self._count

    @property
    def reset_date(self) -> date:
        with self._lock:
            self._roll_over()
            return self._reset_date

    def reserve(self) -> int:
        with self._lock:
            self._roll_over()
            if self.enforce and self._count >= self.limit:
                raise QuotaExceededError(self.limit, self._count)
            self._count += 1
            return self._count

    def release(self) -> None:
        with self._lock:
            self._roll_over()
            if self._count > 0:
                self._count -= 1

    def snapshot(self) -> QuotaSnapshot:
        with self._lock:
            self._roll_over()
            return QuotaSnapshot(count=self._count, limit=self.limit, reset_date=self._reset_date)

    def reset(self) -> None:
        with self._lock:
            self._count = 0
            self._reset_date = self._today()


def is_rate_limited(exc: BaseException) -> bool:
    if isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code == 429:
        return True
    message = str(exc).lower()
    return "429" in message or "quota" in message


class AIGateway:
    def __init__(
        self,
        client: TextGenerator,
        quota: DailyQuotaCounter,
        *,
        max_retries: int = 3,
        base_delay: float = 5.0,
        deadline: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.quota = quota
        self.max_retries = max(1, max_retries)
        self.base_delay = base_delay
        self.deadline = deadline
        self._sleep = sleep

    async def generate(self, prompt: str) -> str:
        if self.deadline is None:
            return await self._generate_with_retries(prompt)
        try:
            return await asyncio.wait_for(self._generate_with_retries(prompt), timeout=self.deadline)
        except asyncio.TimeoutError as exc:
            raise GenerationExhaustedError(
                f"AI generation did not finish within {self.deadline:.0f} seconds", exc
            ) from exc

    async def _generate_with_retries(self, prompt: str) -> str:
        last_error: Optional[BaseException] = None
        rate_limited = False
        for attempt in range(1, self.max_retries + 1):
            used = self.quota.reserve()
            logger.info("AI call attempt %d/%d (daily count %d/%d)", attempt, self.max_retries, used, self.quota.limit)
            try:
                return await self.client.generate(prompt)
            except (CredentialMissingOrInvalidError, asyncio.CancelledError):
                self.quota.release()
                raise
            except Exception as exc:
                self.quota.release()
                last_error = exc
                rate_limited = is_rate_limited(exc)
                logger.warning(
                    "AI call attempt %d/%d failed (%s): %s",
                    attempt, self.max_retries, "rate limited" if rate_limited else "error", exc,
                )
            if attempt < self.max_retries:
                delay = self.base_delay * attempt if rate_limited else self.base_delay
                logger.info("Retrying AI call in %.1f seconds", delay)
                await self._sleep(delay)

        message = f"AI generation failed after {self.max_retries} attempts: {last_error}"
        raise GenerationExhaustedError(message, last_error, rate_limited=rate_limited)
