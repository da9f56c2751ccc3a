from __future__ import annotations

import time

from problem_import.services.errors import ImportTimeout


class Deadline:
    """Call-scoped wall-clock budget threaded through retries and backoff sleeps."""

    def __init__(self, seconds: float, *, clock=None, sleeper=None) -> None:
        self._clock = clock or time.monotonic
        self._sleeper = sleeper
        self.budget_seconds = float(seconds)
        self.expires_at = self._clock() + self.budget_seconds

    def remaining(self) -> float:
        return max(0.0, self.expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0

    def check(self, stage: str) -> None:
        if self.expired:
            raise ImportTimeout(f"Import exceeded its {self.budget_seconds:.0f}s budget during {stage}")

    def sleep(self, seconds: float, *, stage: str) -> None:
        if seconds <= 0:
            return
        if seconds >= self.remaining():
            raise ImportTimeout(
                f"Import budget of {self.budget_seconds:.0f}s does not allow a {seconds:.1f}s wait during {stage}"
            )
        if self._sleeper is not None:
            self._sleeper(seconds)
        else:
            time.sleep(seconds)

    def bounded_timeout(self, preferred: float) -> float:
        return max(0.1, min(preferred, self.remaining()))
