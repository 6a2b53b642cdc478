# services/retry_coordinator.py
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from services.errors import ClockError, TransientFailureExhausted

logger = logging.getLogger(__name__)

# ClockError 以外で一時的な障害とみなす例外
TRANSIENT_ERRORS = (asyncio.TimeoutError, TimeoutError, ConnectionError, OSError)


@dataclass(frozen=True)
class RetryAttempt:
    """試行回数と次の試行までの待ち時間（線形: 1秒, 2秒, ...）"""

    attempt_number: int = 1
    max_attempts: int = 3
    base_delay: float = 1.0

    @property
    def delay(self) -> float:
        return self.attempt_number * self.base_delay

    @property
    def is_last(self) -> bool:
        return self.attempt_number >= self.max_attempts

    def next(self) -> "RetryAttempt":
        return RetryAttempt(self.attempt_number + 1, self.max_attempts, self.base_delay)


@dataclass
class AttemptResult:
    value: Any = None
    error: Optional[BaseException] = None
    retry: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


def is_transient(error: BaseException) -> bool:
    if isinstance(error, ClockError):
        return error.retryable
    return isinstance(error, TRANSIENT_ERRORS)


async def attempt(action: Callable[[int], Awaitable[Any]], current: RetryAttempt) -> AttemptResult:
    """1回分の試行を実行し、結果と再試行の要否を返す"""
    try:
        value = await action(current.attempt_number)
    except Exception as e:
        return AttemptResult(error=e, retry=is_transient(e) and not current.is_last)
    return AttemptResult(value=value)


class RetryCoordinator:
    """コマンド1件を最大 max_attempts 回まで実行し、結果で仮応答を確定させる"""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._sleep = sleep

    async def run(self, action: Callable[[int], Awaitable[Any]]) -> Any:
        """成功した値を返す。失敗時は最後の例外（一時的な障害なら TransientFailureExhausted）を送出"""
        current = RetryAttempt(1, self._max_attempts, self._base_delay)
        while True:
            result = await attempt(action, current)
            if result.ok:
                if current.attempt_number > 1:
                    logger.info("Succeeded on attempt %d", current.attempt_number)
                return result.value

            if not result.retry:
                if is_transient(result.error):
                    logger.error(
                        "Giving up after %d attempts: %s", current.attempt_number, result.error
                    )
                    raise TransientFailureExhausted(
                        result.error, current.attempt_number
                    ) from result.error
                raise result.error

            logger.warning(
                "Attempt %d/%d failed (%s), retrying in %.1fs",
                current.attempt_number,
                current.max_attempts,
                result.error,
                current.delay,
            )
            await self._sleep(current.delay)
            current = current.next()

    async def execute(
        self,
        responder,
        action: Callable[[int], Awaitable[Any]],
        render_success: Callable[[Any], str],
        render_error: Callable[[BaseException], str],
        private: bool = False,
    ) -> bool:
        """成功なら仮応答をその場で書き換え、失敗なら仮応答を消して本人にだけエラーを送る

        private の場合は成功時の書き換えも本人にだけ見せる。
        """
        try:
            value = await self.run(action)
        except ClockError as e:
            logger.info("Command rejected: %s (%s)", e.kind, e)
            await self._report_failure(responder, render_error(e))
            return False
        except Exception as e:
            logger.exception("Unexpected error while handling command")
            await self._report_failure(responder, render_error(e))
            return False

        try:
            await responder.replace(render_success(value), private=private)
        except Exception:
            logger.exception("Failed to deliver success message")
        return True

    async def _report_failure(self, responder, text: str) -> None:
        try:
            await responder.delete()
        except Exception:
            logger.exception("Failed to delete provisional acknowledgment")
        try:
            await responder.send_private(text)
        except Exception:
            logger.exception("Failed to deliver error message")
