"""
熔断器 - 采集数据源共用的失败计数闸门

CLOSED -> (连续失败 >= threshold) -> OPEN -> (冷却结束) -> 放行下一次调用
成功一次即完全恢复 CLOSED, 失败立即重新打开。
状态仅存在于进程内存中, 重启即重置。
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from gram_trends.observability import metrics as obs

logger = logging.getLogger(__name__)


class CircuitOpenError(RuntimeError):
    pass


@dataclass
class CircuitState:
    is_open: bool = False
    failure_count: int = 0
    last_failure_time: float = 0.0
    next_attempt_time: float = 0.0


class CircuitBreaker:
    """Process-local breaker, one instance per acquisition source."""

    def __init__(
        self,
        name: str,
        threshold: int = 5,
        timeout_seconds: float = 300.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.name = name
        self._threshold = max(1, int(threshold))
        self._timeout = max(0.0, float(timeout_seconds))
        self._clock = clock or time.monotonic
        self._state = CircuitState()

    @property
    def threshold(self) -> int:
        return self._threshold

    @property
    def is_open(self) -> bool:
        return self._state.is_open

    @property
    def failure_count(self) -> int:
        return self._state.failure_count

    def can_execute(self) -> bool:
        state = self._state
        if not state.is_open:
            return True
        if self._clock() >= state.next_attempt_time:
            # Half-open: let the next call through, its outcome decides.
            state.is_open = False
            state.failure_count = self._threshold - 1
            logger.info("Circuit %s half-open, allowing trial call", self.name)
            return True
        return False

    def check(self) -> None:
        """Raise CircuitOpenError when the breaker refuses the call."""
        if not self.can_execute():
            raise CircuitOpenError(
                f"Circuit {self.name} open, retry in {self.get_state()['time_until_reset']}s"
            )

    def record_success(self) -> None:
        self._state.failure_count = 0
        self._state.is_open = False

    def record_failure(self) -> None:
        state = self._state
        now = self._clock()
        state.failure_count += 1
        state.last_failure_time = now
        if state.failure_count >= self._threshold:
            was_open = state.is_open
            state.is_open = True
            state.next_attempt_time = now + self._timeout
            if not was_open:
                obs.record_circuit_opened(self.name)
            logger.warning(
                "Circuit %s opened: failure_count=%d reset_in=%.0fs",
                self.name, state.failure_count, self._timeout,
            )

    def get_state(self) -> Dict:
        state = self._state
        time_until_reset = 0.0
        if state.is_open:
            time_until_reset = max(0.0, state.next_attempt_time - self._clock())
        return {
            "is_open": state.is_open,
            "failure_count": state.failure_count,
            "time_until_reset": round(time_until_reset, 3),
        }

    def reset(self) -> None:
        self._state = CircuitState()
