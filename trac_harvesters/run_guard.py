"""Single-flight guard shared by scheduled and one-off sync runs."""

import logging
import threading
from contextlib import contextmanager
from typing import Callable, ContextManager, Iterator, Optional

logger = logging.getLogger(__name__)

LockProvider = Callable[[], ContextManager[bool]]


class RunGuard:
    """
    Lets at most one sync run proceed at a time.

    The in-process lock covers the two scheduler threads; the optional lock
    provider (a database advisory lock) extends that to other processes such
    as a one-off CLI run. With ``wait=True`` a run queues behind the other
    thread's run; a run that cannot get the cross-process lock is always
    skipped.
    """

    def __init__(self, lock_provider: Optional[LockProvider] = None):
        self._lock = threading.Lock()
        self._lock_provider = lock_provider
        self.active_run: Optional[str] = None

    @contextmanager
    def hold(self, run_name: str, wait: bool = False) -> Iterator[bool]:
        if not self._lock.acquire(blocking=False):
            if not wait:
                logger.warning(f"Skipping {run_name} run: {self.active_run} run still in progress")
                yield False
                return
            logger.info(f"Queueing {run_name} run behind the {self.active_run} run")
            self._lock.acquire()

        self.active_run = run_name
        try:
            if self._lock_provider is None:
                yield True
            else:
                with self._lock_provider() as acquired:
                    if not acquired:
                        logger.warning(f"Skipping {run_name} run: another process holds the sync lock")
                    yield acquired
        finally:
            self.active_run = None
            self._lock.release()
