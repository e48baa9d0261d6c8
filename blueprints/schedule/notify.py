# blueprints/schedule/notify.py
from __future__ import annotations
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

log = logging.getLogger(__name__)


@dataclass
class Notification:
    kind: str                      # schedule_updated | schedule_cancelled | schedule_transferred
    schedule_id: int
    payload: Dict[str, Any] = field(default_factory=dict)


def log_sender(note: Notification) -> None:
    log.info("notification %s for schedule %s", note.kind, note.schedule_id,
             extra={"event": "notification", "schedule_id": note.schedule_id})


class NotificationDispatcher:
    """Асинхронная отправка уведомлений «в фоне».

    Результат отправки никогда не влияет на ответ вызывающему: ошибки
    уходят в отдельный канал ``_report_failure`` (лог + on_error).
    """

    def __init__(self, app=None, *, sender: Optional[Callable[[Notification], None]] = None,
                 max_workers: int = 2, sync: bool = False,
                 on_error: Optional[Callable[[Notification, BaseException], None]] = None):
        self.app = app
        self.sender = sender or log_sender
        self.sync = sync
        self.on_error = on_error
        self.failures = 0
        self._executor = None if sync else ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="notify")

    def _run(self, note: Notification) -> None:
        if self.app is not None:
            with self.app.app_context():
                self.sender(note)
        else:
            self.sender(note)

    def _report_failure(self, note: Notification, exc: BaseException) -> None:
        self.failures += 1
        log.warning("notification %s for schedule %s failed: %s", note.kind, note.schedule_id, exc,
                    extra={"event": "notification_failed", "schedule_id": note.schedule_id})
        if self.on_error is not None:
            self.on_error(note, exc)

    def dispatch(self, note: Notification) -> Optional[Future]:
        if self.sync:
            try:
                self._run(note)
            except Exception as exc:
                self._report_failure(note, exc)
            return None

        fut = self._executor.submit(self._run, note)

        def _done(f: Future) -> None:
            exc = f.exception()
            if exc is not None:
                self._report_failure(note, exc)

        fut.add_done_callback(_done)
        return fut

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
