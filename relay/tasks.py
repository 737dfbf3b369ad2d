from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Optional

from relay.logging_config import get_logger
from relay.services.alert_service import report_exception

logger = get_logger("tasks")


class BackgroundTaskRunner:
    """Bounded pool for detached side effects (auto-tagging, handoff routing).

    Callers never wait on the returned future. A failing task is logged and
    reported; pending tasks are cancelled at shutdown.
    """

    def __init__(self, max_workers: int = 8):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="relay-task")
        self._closed = False

    def submit(self, name: str, fn: Callable[..., Any], *args, context: Optional[dict] = None, report: bool = True, **kwargs) -> Optional[Future]:
        if self._closed:
            logger.warning(f"Task {name} dropped: runner is shut down")
            return None
        future = self._executor.submit(fn, *args, **kwargs)
        future.add_done_callback(lambda f: self._on_done(name, f, context or {}, report))
        return future

    def _on_done(self, name: str, future: Future, context: dict, report: bool) -> None:
        if future.cancelled():
            logger.info(f"Task {name} cancelled", extra={"context": context})
            return
        exc = future.exception()
        if exc is None:
            return
        if report:
            report_exception(f"Background task {name} failed", exc, context)
        else:
            logger.warning(f"Background task {name} failed (non-fatal): {exc}", extra={"context": context})

    def shutdown(self, wait: bool = False) -> None:
        self._closed = True
        self._executor.shutdown(wait=wait, cancel_futures=True)

