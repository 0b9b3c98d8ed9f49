"""
Debounced and periodic autosave for an editing session.

Edits publish the newest tree to a LatestSnapshot. Timers never capture a tree
when they are scheduled; every write reads the snapshot when it fires.
"""

import copy
import logging
import threading

logger = logging.getLogger(__name__)


class LatestSnapshot:
    """Thread-safe holder of the most recent state and its version"""

    def __init__(self, value=None):
        self._lock = threading.Lock()
        self._value = copy.deepcopy(value)
        self._version = 0 if value is None else 1

    def update(self, value):
        """Publish a new state; returns its version"""
        with self._lock:
            self._value = copy.deepcopy(value)
            self._version += 1
            return self._version

    def read(self):
        with self._lock:
            return copy.deepcopy(self._value)

    def capture(self):
        """Return (value, version) read together"""
        with self._lock:
            return copy.deepcopy(self._value), self._version

    @property
    def version(self):
        with self._lock:
            return self._version


class AutosaveScheduler:
    """
    Saves the latest snapshot after a short debounce and on a fixed interval.

    A new save request supersedes a pending debounce; the superseded timer
    never writes. Writes are serialized and a snapshot older than (or equal
    to) the last written one is not written again.

    Args:
        snapshot: LatestSnapshot to read at fire time
        save: Callable receiving the snapshot value
        debounce_seconds: Delay for request_save()
        interval_seconds: Period of the background timer started by start()
        timer_factory: threading.Timer compatible factory
    """

    def __init__(self, snapshot, save, debounce_seconds=1.5, interval_seconds=30,
                 timer_factory=threading.Timer):
        self.snapshot = snapshot
        self.save = save
        self.debounce_seconds = debounce_seconds
        self.interval_seconds = interval_seconds
        self.timer_factory = timer_factory

        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._generation = 0
        self._debounce_timer = None
        self._interval_timer = None
        self._running = False

        self.last_written_version = 0
        self.last_error = None

    def _make_timer(self, delay, callback, *args):
        timer = self.timer_factory(delay, callback, args=args)
        timer.daemon = True
        return timer

    def request_save(self):
        """Schedule a debounced save, cancelling any pending one"""
        with self._lock:
            self._generation += 1
            generation = self._generation
            if self._debounce_timer is not None:
                self._debounce_timer.cancel()
            self._debounce_timer = self._make_timer(self.debounce_seconds, self._debounce_fired, generation)
            timer = self._debounce_timer
        timer.start()
        return generation

    def _debounce_fired(self, generation):
        with self._lock:
            if generation != self._generation:
                logger.debug(f"Debounced save {generation} superseded by {self._generation}")
                return
            self._debounce_timer = None
        self._write_logged('debounce')

    def start(self):
        """Start the periodic save timer"""
        with self._lock:
            if self._running:
                return
            self._running = True
        self._schedule_interval()
        logger.info(f"Autosave started (debounce {self.debounce_seconds}s, interval {self.interval_seconds}s)")

    def _schedule_interval(self):
        with self._lock:
            if not self._running:
                return
            self._interval_timer = self._make_timer(self.interval_seconds, self._interval_fired)
            timer = self._interval_timer
        timer.start()

    def _interval_fired(self):
        self._write_logged('interval')
        self._schedule_interval()

    def stop(self):
        """Cancel all pending timers"""
        with self._lock:
            self._running = False
            self._generation += 1
            for timer in (self._debounce_timer, self._interval_timer):
                if timer is not None:
                    timer.cancel()
            self._debounce_timer = None
            self._interval_timer = None
        logger.info("Autosave stopped")

    def flush(self):
        """
        Write the latest snapshot now, cancelling a pending debounce.

        Returns:
            bool: True when a write happened; storage failures propagate
        """
        with self._lock:
            self._generation += 1
            if self._debounce_timer is not None:
                self._debounce_timer.cancel()
                self._debounce_timer = None
        return self._write('flush')

    def _write_logged(self, trigger):
        try:
            self._write(trigger)
        except Exception as e:
            self.last_error = e
            logger.error(f"Autosave ({trigger}) failed: {str(e)}")

    def _write(self, trigger):
        with self._write_lock:
            value, version = self.snapshot.capture()
            if version <= self.last_written_version:
                logger.debug(f"Autosave ({trigger}) skipped - version {version} already written")
                return False
            self.save(value)
            self.last_written_version = version
            self.last_error = None
            logger.debug(f"Autosave ({trigger}) wrote version {version}")
            return True
