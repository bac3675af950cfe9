"""
Interfaces of the collaborators the core calls out to, plus the defaults
wired in by the app factory.

Notifications and indexing are one-way: they are queued to run after the
triggering transaction commits and their failures are logged, never raised
back into the request.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional, Protocol

from cms_core.utils.transaction import after_commit


class Notifier(Protocol):
    def send(self, event: str, payload: Dict[str, Any]) -> None:
        ...


class SearchIndexer(Protocol):
    def index(self, document: Dict[str, Any]) -> None:
        ...

    def remove(self, document_id: str) -> None:
        ...


class NullNotifier:
    def send(self, event, payload):
        return None


class NullSearchIndexer:
    def index(self, document):
        return None

    def remove(self, document_id):
        return None


def log_delivery(logger: logging.Logger) -> Callable[[str, Dict[str, Any]], None]:
    def deliver(event, payload):
        logger.info("notification %s %s", event, payload)
    return deliver


class BackgroundNotifier:
    """
    Fire-and-forget dispatch on a small thread pool.

    `deliver` does the actual sending (webhook POST, queue publish, ...);
    its result is discarded and exceptions are only logged.
    """

    def __init__(
        self,
        deliver: Optional[Callable[[str, Dict[str, Any]], None]] = None,
        *,
        max_workers: int = 4,
        logger: Optional[logging.Logger] = None,
    ):
        self.logger = logger or logging.getLogger(__name__)
        self.deliver = deliver or log_delivery(self.logger)
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="cms-notify")

    def send(self, event, payload):
        future = self.executor.submit(self.deliver, event, dict(payload))
        future.add_done_callback(lambda f: self._report(event, f))

    def _report(self, event, future):
        exc = future.exception()
        if exc is not None:
            self.logger.error("Notification %s failed: %s", event, exc)

    def shutdown(self, wait: bool = True):
        self.executor.shutdown(wait=wait)


def notify_after_commit(session, notifier: Optional[Notifier], event: str, payload: Dict[str, Any]):
    if notifier is None:
        return
    after_commit(notifier.send, event, payload, session=session)


def index_after_commit(session, indexer: Optional[SearchIndexer], document_payload: Dict[str, Any]):
    if indexer is None:
        return
    after_commit(indexer.index, document_payload, session=session)


def unindex_after_commit(session, indexer: Optional[SearchIndexer], document_id: str):
    if indexer is None:
        return
    after_commit(indexer.remove, document_id, session=session)
