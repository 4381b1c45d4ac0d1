from concurrent.futures import Future

from mirrorsync.errors import AuthorizationError, SyncInProgressError, TransientTransportError
from mirrorsync.services import worker_pool as worker_pool_module


class _InlineExecutor:
    def submit(self, fn):
        future = Future()
        future.set_result(fn())
        return future

    def shutdown(self, wait=True):
        pass


def _pool(**kwargs):
    sleeps = []
    pool = worker_pool_module.SyncWorkerPool(executor=_InlineExecutor(), sleep=sleeps.append, **kwargs)
    return pool, sleeps


def test_submit_routes_result_callback_exceptions_to_error_handler():
    pool, _ = _pool()
    errors = []

    def _on_result(_payload):
        raise RuntimeError("result callback failed")

    pool.submit(lambda: {"ok": True}, _on_result, errors.append)

    assert len(errors) == 1
    assert "RuntimeError" in errors[0]
    assert "result callback failed" in errors[0]


def test_transient_failures_are_retried_with_backoff():
    pool, sleeps = _pool(retries=2, backoff_base_sec=1)
    attempts = {"count": 0}
    results = []

    def _flaky():
        attempts["count"] += 1
        if attempts["count"] < 3:
            raise TransientTransportError("503")
        return "done"

    future = pool.submit(_flaky, results.append)

    assert future.result() == "done"
    assert results == ["done"]
    assert sleeps == [1, 2]


def test_retry_after_hint_overrides_backoff():
    pool, sleeps = _pool(retries=1, backoff_base_sec=1)
    attempts = {"count": 0}

    def _throttled():
        attempts["count"] += 1
        if attempts["count"] == 1:
            raise TransientTransportError("429", status_code=429, retry_after=7)
        return "ok"

    pool.submit(_throttled)

    assert sleeps == [7]


def test_exhausted_retries_reach_error_handler():
    pool, sleeps = _pool(retries=1, backoff_base_sec=0.5)
    errors = []

    def _always_down():
        raise TransientTransportError("still down")

    future = pool.submit(_always_down, on_error=errors.append)

    assert future.result() is None
    assert sleeps == [0.5]
    assert "still down" in errors[0]


def test_authorization_failures_are_not_retried():
    pool, sleeps = _pool(retries=3)
    attempts = {"count": 0}
    errors = []

    def _unauthorized():
        attempts["count"] += 1
        raise AuthorizationError("token rejected", status_code=401)

    pool.submit(_unauthorized, on_error=errors.append)

    assert attempts["count"] == 1
    assert sleeps == []
    assert "AuthorizationError" in errors[0]


def test_default_error_handler_is_used_without_callback():
    seen = []
    pool = worker_pool_module.SyncWorkerPool(executor=_InlineExecutor(), on_default_error=seen.append)

    pool.submit(lambda: 1 / 0)

    assert "ZeroDivisionError" in seen[0]


def test_busy_scope_is_retried():
    pool, sleeps = _pool(retries=1, backoff_base_sec=2)
    attempts = {"count": 0}

    def _busy_once():
        attempts["count"] += 1
        if attempts["count"] == 1:
            raise SyncInProgressError("calendar is already syncing")
        return "synced"

    assert pool.submit(_busy_once).result() == "synced"
    assert sleeps == [2]
