import asyncio
import inspect
import time
from typing import Callable, Any, Dict, Optional, Tuple, Type, Union
from enum import Enum

from app.obs.logger import log_event


class CircuitState(Enum):
    CLOSED = "closed"  # Normal operation
    OPEN = "open"      # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing if service recovered


class CircuitOpenError(Exception):
    """Raised instead of calling upstream while a breaker is open."""

    def __init__(self, name: str):
        super().__init__(f"Circuit breaker {name} is OPEN")
        self.name = name


class CircuitBreaker:
    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        expected_exception: Union[Type[BaseException], Tuple[Type[BaseException], ...]] = Exception
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception
        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = CircuitState.CLOSED

    async def async_call(self, func: Callable, *args, **kwargs) -> Any:
        if self.state == CircuitState.OPEN:
            if self._should_attempt_reset():
                self.state = CircuitState.HALF_OPEN
            else:
                raise CircuitOpenError(self.name)

        try:
            result = await func(*args, **kwargs)
        except self.expected_exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def reset(self) -> None:
        self._on_success()

    def _on_success(self):
        self.failure_count = 0
        self.state = CircuitState.CLOSED

    def _on_failure(self):
        self.failure_count += 1
        self.last_failure_time = time.time()
        if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            if self.state != CircuitState.OPEN:
                log_event("circuit_opened", level="WARNING", breaker=self.name,
                          failure_count=self.failure_count)
            self.state = CircuitState.OPEN

    def _should_attempt_reset(self) -> bool:
        return bool(
            self.last_failure_time and
            time.time() - self.last_failure_time >= self.recovery_timeout
        )

    def get_state(self) -> Dict:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "last_failure": self.last_failure_time
        }


class RetryPolicy:
    def __init__(
        self,
        max_attempts: int = 3,
        backoff_base: float = 2.0,
        max_delay: float = 60,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.max_attempts = max(1, max_attempts)
        self.backoff_base = backoff_base
        self.max_delay = max_delay
        self.retry_on = retry_on
        self._sleep = sleep

    def delay_for(self, attempt: int) -> float:
        return min(self.backoff_base ** attempt, self.max_delay)

    async def execute_with_retry(self, func: Callable, *args, **kwargs) -> Any:
        for attempt in range(self.max_attempts):
            try:
                result = func(*args, **kwargs)
                if inspect.isawaitable(result):
                    result = await result
                return result
            except self.retry_on as e:
                if attempt >= self.max_attempts - 1:
                    raise
                delay = self.delay_for(attempt)
                log_event("retrying", level="WARNING", attempt=attempt + 1,
                          delay_s=delay, error=f"{type(e).__name__}: {e}")
                await self._sleep(delay)
