from collections.abc import Callable
from concurrent.futures import Executor, Future, ThreadPoolExecutor
import logging
import time
import traceback

from mirrorsync.constants import TASK_BACKOFF_BASE_SEC, TASK_RETRIES, WORKER_COUNT
from mirrorsync.errors import AuthorizationError, SyncInProgressError, TransientTransportError

logger = logging.getLogger(__name__)


class SyncWorkerPool:
    """Runs sync work off the request path.

    Transient transport failures and scopes busy with another sync are retried
    with exponential backoff, or after the server-provided retry delay.
    """

    def __init__(
        self,
        executor: Executor | None = None,
        max_workers: int = WORKER_COUNT,
        retries: int = TASK_RETRIES,
        backoff_base_sec: float = TASK_BACKOFF_BASE_SEC,
        on_default_error: Callable[[str], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.executor = executor or ThreadPoolExecutor(max_workers=max(1, int(max_workers or 1)))
        self.retries = max(0, int(retries or 0))
        self.backoff_base_sec = max(0.0, float(backoff_base_sec or 0))
        self.on_default_error = on_default_error
        self.sleep = sleep

    def _run_with_retries(self, fn: Callable[[], object]) -> object:
        attempt = 0
        while True:
            try:
                return fn()
            except AuthorizationError:
                raise
            except (TransientTransportError, SyncInProgressError) as exc:
                if attempt >= self.retries:
                    raise
                attempt += 1
                retry_after = getattr(exc, "retry_after", None)
                delay = retry_after if retry_after is not None else self.backoff_base_sec * (2 ** (attempt - 1))
                logger.warning("Background task failed (%s); retry %d/%d in %.1fs", exc, attempt, self.retries, delay)
                self.sleep(delay)

    def submit(
        self,
        fn: Callable[[], object],
        on_result: Callable[[object], None] | None = None,
        on_error: Callable[[str], None] | None = None,
    ) -> Future:
        active_error_handler = on_error or self._on_worker_error

        def _task() -> object:
            try:
                payload = self._run_with_retries(fn)
            except Exception:
                active_error_handler(traceback.format_exc())
                return None
            if on_result is not None:
                try:
                    on_result(payload)
                except Exception:
                    active_error_handler(traceback.format_exc())
            return payload

        return self.executor.submit(_task)

    def _on_worker_error(self, trace_text: str) -> None:
        logger.error("Background sync task failed:\n%s", trace_text)
        if self.on_default_error is not None:
            self.on_default_error(trace_text)

    def shutdown(self, wait: bool = True) -> None:
        self.executor.shutdown(wait=wait)


__all__ = ["SyncWorkerPool"]
