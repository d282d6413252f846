"""
Per-case lock table.

Serialises timeline transitions of the same case inside one process while
letting different cases proceed in parallel. Entries are created on first
use and dropped when the last holder/waiter releases, so the table only
ever holds cases with a transition in flight.

Cross-process safety is the job of ``CaseTimeline.version``; this table only
spares same-process writers the rollback-and-retry round trip.
"""

import logging
import threading
from contextlib import contextmanager

from docket.core.exceptions import ConcurrentModificationError

logger = logging.getLogger(__name__)


class _Entry:
    __slots__ = ("lock", "refs")

    def __init__(self):
        self.lock = threading.Lock()
        self.refs = 0


class CaseLockTable:
    def __init__(self):
        self._entries: dict[int, _Entry] = {}
        self._guard = threading.Lock()

    def _checkout(self, case_id: int) -> _Entry:
        with self._guard:
            entry = self._entries.get(case_id)
            if entry is None:
                entry = self._entries[case_id] = _Entry()
            entry.refs += 1
            return entry

    def _checkin(self, case_id: int, entry: _Entry) -> None:
        with self._guard:
            entry.refs -= 1
            if entry.refs == 0:
                self._entries.pop(case_id, None)

    @contextmanager
    def hold(self, case_id: int, timeout: float | None = None):
        """
        Hold the lock for ``case_id`` for the duration of the block.

        Raises:
            ConcurrentModificationError: if the lock is not acquired within
                ``timeout`` seconds (``None`` waits forever).
        """
        entry = self._checkout(case_id)
        try:
            acquired = entry.lock.acquire(timeout=-1 if timeout is None else timeout)
            if not acquired:
                logger.warning("Timed out after %ss waiting for case lock", timeout,
                               extra={"case_id": case_id})
                raise ConcurrentModificationError(case_id)
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            self._checkin(case_id, entry)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    def __contains__(self, case_id: int) -> bool:
        with self._guard:
            return case_id in self._entries


# Process-wide table shared by every app in the process
case_locks = CaseLockTable()
