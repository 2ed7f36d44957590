"""Template-change events published after a biometric template is persisted."""

import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

import sentry_sdk

from adms_server.config import settings
from adms_server.database.connection import db_manager
from adms_server.shared.logger import get_logger


@dataclass(frozen=True)
class TemplateChanged:
    """A template row was created or its payload changed"""
    employee_code: str
    template_type: int
    template_no: int
    source_device: str


TemplateHandler = Callable[[TemplateChanged], None]


class TemplateEventDispatcher:
    """Delivers TemplateChanged events to handlers.

    With ``mode='thread'`` each delivery runs on a daemon thread so the upload
    response never waits for fan-out; ``'inline'`` runs handlers in the caller.
    Handler failures are logged and reported, never raised to the publisher.
    """

    def __init__(self, mode: Optional[str] = None, logger=None):
        self._handlers: List[TemplateHandler] = []
        self._lock = threading.Lock()
        self._mode = mode
        self.logger = logger or get_logger("sync")

    @property
    def mode(self) -> str:
        return self._mode or settings.FANOUT_MODE

    def subscribe(self, handler: TemplateHandler) -> None:
        with self._lock:
            if handler not in self._handlers:
                self._handlers.append(handler)

    def unsubscribe(self, handler: TemplateHandler) -> None:
        with self._lock:
            if handler in self._handlers:
                self._handlers.remove(handler)

    def publish(self, event: TemplateChanged) -> List[threading.Thread]:
        """Deliver ``event``; returns the worker threads started in thread mode"""
        with self._lock:
            handlers = list(self._handlers)

        workers = []
        for handler in handlers:
            if self.mode == "inline":
                self._deliver(handler, event)
                continue
            worker = threading.Thread(
                target=self._deliver_in_worker,
                args=(handler, event),
                name=f"template-sync-{event.employee_code}",
                daemon=True,
            )
            worker.start()
            workers.append(worker)
        return workers

    def _deliver_in_worker(self, handler: TemplateHandler, event: TemplateChanged) -> None:
        # Worker threads are short-lived; their thread-local connection goes with them
        try:
            self._deliver(handler, event)
        finally:
            db_manager.close_connection()

    def _deliver(self, handler: TemplateHandler, event: TemplateChanged) -> None:
        try:
            handler(event)
        except Exception as e:
            self.logger.error(
                f"[SYNC] Fan-out failed for PIN={event.employee_code} "
                f"type={event.template_type} no={event.template_no}: {e}",
                exc_info=True,
            )
            sentry_sdk.capture_exception(e)


# Global dispatcher; the template sync engine subscribes at import
template_events = TemplateEventDispatcher()
