"""
Per-document mutual exclusion.

Every mutating operation holds the document's lock for its whole
read-validate-write-commit cycle. Locks are scoped to one document id; there
is no cross-document locking. Row locks (SELECT ... FOR UPDATE) cover the
multi-process case on databases that support them.
"""

import threading
import weakref
from contextlib import contextmanager


class _DocumentLock:
    __slots__ = ("lock", "__weakref__")

    def __init__(self):
        self.lock = threading.Lock()


class DocumentLockRegistry:
    """Lazily creates one lock per document id; unused locks are garbage collected."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = weakref.WeakValueDictionary()

    def _lock_for(self, document_id: str) -> _DocumentLock:
        with self._guard:
            entry = self._locks.get(document_id)
            if entry is None:
                entry = _DocumentLock()
                self._locks[document_id] = entry
            return entry

    @contextmanager
    def hold(self, document_id: str):
        entry = self._lock_for(document_id)
        with entry.lock:
            yield


document_locks = DocumentLockRegistry()
