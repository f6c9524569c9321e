"""
In-process fan-out of score snapshots.

The scoring session hands every snapshot to publish() and moves on; a single
daemon worker drains the queue, so subscribers see snapshots in exactly the
order commands were applied.  The newest snapshot per match is also cached for
clients that poll instead of subscribing.
"""

import logging
import queue
import threading
from collections import defaultdict

logger = logging.getLogger(__name__)

_STOP = object()


class SnapshotBroadcaster:
    def __init__(self, publish_sync=False):
        self.publish_sync = publish_sync
        self._subscribers = defaultdict(list)
        self._latest = {}
        self._lock = threading.Lock()
        self._queue = queue.Queue()
        self._worker = None

    def start(self):
        if self.publish_sync or (self._worker and self._worker.is_alive()):
            return
        self._worker = threading.Thread(target=self._run, name="snapshot-broadcaster", daemon=True)
        self._worker.start()
        logger.info("[Broadcast] worker started")

    def stop(self, timeout=5):
        if self._worker and self._worker.is_alive():
            self._queue.put(_STOP)
            self._worker.join(timeout)
        self._worker = None

    def subscribe(self, match_id, callback):
        with self._lock:
            self._subscribers[match_id].append(callback)

    def unsubscribe(self, match_id, callback=None):
        with self._lock:
            if callback is None:
                self._subscribers.pop(match_id, None)
            elif callback in self._subscribers.get(match_id, []):
                self._subscribers[match_id].remove(callback)

    def forget(self, match_id):
        """Drop subscribers and the cached snapshot of an evicted match."""
        with self._lock:
            self._subscribers.pop(match_id, None)
            self._latest.pop(match_id, None)

    def latest(self, match_id):
        with self._lock:
            return self._latest.get(match_id)

    def publish(self, match_id, snapshot):
        with self._lock:
            self._latest[match_id] = snapshot
        if self.publish_sync:
            self._deliver(match_id, snapshot)
            return
        if not (self._worker and self._worker.is_alive()):
            self.start()
        self._queue.put((match_id, snapshot))

    def listener_for(self, match_id):
        """Callable suitable for MatchScoringSession.subscribe()."""
        def _publish(snapshot):
            self.publish(match_id, snapshot)
        return _publish

    def _run(self):
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self._deliver(*item)
            finally:
                self._queue.task_done()

    def _deliver(self, match_id, snapshot):
        with self._lock:
            callbacks = list(self._subscribers.get(match_id, []))
        for callback in callbacks:
            try:
                callback(snapshot)
            except Exception as e:
                logger.error(f"[Broadcast] subscriber failed for match {match_id}: {e}", exc_info=True)

    def drain(self):
        """Block until every queued snapshot has been delivered."""
        if not self.publish_sync:
            self._queue.join()
