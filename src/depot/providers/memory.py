"""In-memory collaborators for testing and embedded use."""

import threading
from typing import Any, Callable

from depot.core.errors import DepotError
from depot.core.scheduling import ScheduleTrigger
from depot.observability.logging import get_logger
from depot.providers.base import EndpointPublisher, Scheduler

logger = get_logger(__name__)


class InMemoryEndpointPublisher(EndpointPublisher):
    """Records publications instead of serving them."""

    def __init__(self) -> None:
        self.publications: dict[str, dict[str, Any]] = {}
        self.history: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def publish(self, path: str, config: dict[str, Any]) -> None:
        with self._lock:
            self.publications[path] = dict(config)
            self.history.append(("publish", path))

    def unpublish(self, path: str) -> None:
        with self._lock:
            self.publications.pop(path, None)
            self.history.append(("unpublish", path))


class InMemoryScheduler(Scheduler):
    """Thread-safe job registry; jobs only fire through run()."""

    def __init__(self) -> None:
        self.jobs: dict[str, tuple[ScheduleTrigger, Callable[[], Any]]] = {}
        self._lock = threading.Lock()

    def schedule(self, job_id: str, trigger: ScheduleTrigger, callback: Callable[[], Any]) -> None:
        with self._lock:
            if job_id in self.jobs:
                raise DepotError(f"Job {job_id} is already scheduled")
            self.jobs[job_id] = (trigger, callback)

    def unschedule(self, job_id: str) -> None:
        with self._lock:
            self.jobs.pop(job_id, None)

    def list_job_ids(self) -> list[str]:
        with self._lock:
            return list(self.jobs)

    def trigger(self, job_id: str) -> ScheduleTrigger:
        with self._lock:
            return self.jobs[job_id][0]

    def run(self, job_id: str) -> Any:
        """Fire a job now and return the callback's result.

        Raises:
            KeyError: If no job is registered under the id
        """
        with self._lock:
            _, callback = self.jobs[job_id]
        logger.debug("job_fired", job_id=job_id)
        return callback()
