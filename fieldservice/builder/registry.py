"""Registry of open builder sessions, one per (job, document type)."""
import logging
import threading
from typing import Callable, Dict, Optional, Tuple

from fieldservice.exceptions import NotFoundError

logger = logging.getLogger(__name__)

SessionKey = Tuple[str, str]


class BuilderRegistry:
    """
    Holds open workflows between requests. Opening a key that is already
    open closes the previous session first, so its late results are dropped.
    """

    def __init__(self):
        self._sessions: Dict[SessionKey, object] = {}
        self._lock = threading.Lock()

    def open(self, job_id: str, document_type: str, factory: Callable[[], object]):
        key = (job_id, document_type)
        workflow = factory()
        with self._lock:
            previous = self._sessions.get(key)
            self._sessions[key] = workflow
        if previous is not None:
            previous.close()
            logger.info(f"[BUILDER] Replaced open {document_type} session for job {job_id}")
        workflow.on_close(lambda: self._forget(key, workflow))
        return workflow

    def get(self, job_id: str, document_type: str):
        with self._lock:
            workflow = self._sessions.get((job_id, document_type))
        if workflow is None:
            raise NotFoundError(f"No open {document_type} builder for job {job_id}.")
        return workflow

    def find(self, job_id: str, document_type: str) -> Optional[object]:
        with self._lock:
            return self._sessions.get((job_id, document_type))

    def close(self, job_id: str, document_type: str) -> bool:
        workflow = self.find(job_id, document_type)
        if workflow is None:
            return False
        workflow.close()
        return True

    def close_all(self) -> None:
        with self._lock:
            workflows = list(self._sessions.values())
        for workflow in workflows:
            workflow.close()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _forget(self, key: SessionKey, workflow) -> None:
        with self._lock:
            if self._sessions.get(key) is workflow:
                del self._sessions[key]
