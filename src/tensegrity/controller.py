"""Level-triggered controller loop driving :class:`ResourceReconciler`."""
from __future__ import annotations

import logging
import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Deque, Dict, List, Optional, Set, Tuple

from kubernetes.client import ApiException
from kubernetes.dynamic.exceptions import ResourceNotFoundError
from urllib3.exceptions import HTTPError

from .config import ControllerConfig
from .kube import TensegrityAPI
from .operations.pipeline import ResourceReconciler
from .resources.base import ObjectKey
from .resources.tensegrity import TENSEGRITY_KINDS, find_kind
from .retry import backoff_delay
from .tracker import Tracker

_LOG = logging.getLogger(__name__)

CORE_WATCH_KINDS: List[Tuple[str, str]] = [("v1", "ConfigMap"), ("v1", "Secret"), ("v1", "Namespace")]
CLUSTER_SCOPED_KINDS = {("v1", "Namespace")}
WATCH_TIMEOUT_SECONDS = 300


class WorkQueue:
    """De-duplicating work queue.

    A key is handed to at most one worker at a time; a key added while it is
    being processed is queued again once the worker calls :meth:`done`.
    """

    def __init__(self) -> None:
        self._condition = threading.Condition()
        self._queue: Deque[ObjectKey] = deque()
        self._queued: Set[ObjectKey] = set()
        self._processing: Set[ObjectKey] = set()
        self._dirty: Set[ObjectKey] = set()
        self._shutdown = False

    def add(self, key: ObjectKey) -> None:
        with self._condition:
            if self._shutdown:
                return
            if key in self._processing:
                self._dirty.add(key)
                return
            if key in self._queued:
                return
            self._queued.add(key)
            self._queue.append(key)
            self._condition.notify()

    def add_after(self, key: ObjectKey, delay: float) -> None:
        timer = threading.Timer(delay, self.add, args=(key,))
        timer.daemon = True
        timer.start()

    def get(self, timeout: Optional[float] = None) -> Optional[ObjectKey]:
        with self._condition:
            if not self._queue and not self._shutdown:
                self._condition.wait(timeout)
            if self._shutdown or not self._queue:
                return None
            key = self._queue.popleft()
            self._queued.discard(key)
            self._processing.add(key)
            return key

    def done(self, key: ObjectKey) -> None:
        with self._condition:
            self._processing.discard(key)
            if key in self._dirty:
                self._dirty.discard(key)
                self._queued.add(key)
                self._queue.append(key)
                self._condition.notify()

    def shutdown(self) -> None:
        with self._condition:
            self._shutdown = True
            self._condition.notify_all()

    def __len__(self) -> int:
        with self._condition:
            return len(self._queue)


class Controller:
    """Watch Tensegrity resources and their dependencies, reconcile on every change."""

    def __init__(
        self,
        api: TensegrityAPI,
        config: ControllerConfig,
        tracker: Optional[Tracker] = None,
        reconciler: Optional[ResourceReconciler] = None,
    ) -> None:
        self.api = api
        self.config = config
        self.tracker = tracker or Tracker()
        self.reconciler = reconciler or ResourceReconciler(api, config.engine, self.tracker)
        self.queue = WorkQueue()
        self._failures: Dict[ObjectKey, int] = {}
        self._failures_lock = threading.Lock()
        self._stopped = threading.Event()

    def watched_kinds(self) -> List[Tuple[str, str]]:
        kinds = [(kind.api_version, kind.kind) for kind in TENSEGRITY_KINDS]
        kinds.extend(CORE_WATCH_KINDS)
        for extra in self.config.watch_kinds:
            if (extra.api_version, extra.kind) not in kinds:
                kinds.append((extra.api_version, extra.kind))
        return kinds

    def handle_event(self, event: Dict[str, Any]) -> None:
        """Enqueue the resource an event is about and everything that read it."""

        obj = event.get("object") or {}
        key = ObjectKey.from_object(obj)
        if not key.name:
            return
        if find_kind(key.api_version, key.kind) is not None:
            self.queue.add(key)
        for dependent in self.tracker.lookup(key):
            _LOG.debug("%s changed (%s); enqueueing %s", key, event.get("type"), dependent)
            self.queue.add(dependent)

    def process_next(self, timeout: Optional[float] = None) -> bool:
        """Reconcile one queued key; return ``False`` when nothing was processed."""

        key = self.queue.get(timeout)
        if key is None:
            return False
        try:
            self.reconciler.reconcile(key)
        except Exception:  # noqa: BLE001 - any failure is retried with backoff
            with self._failures_lock:
                failures = self._failures.get(key, 0)
                self._failures[key] = failures + 1
            delay = backoff_delay(self.config.retry, failures)
            _LOG.exception("Reconciling %s failed; retrying in %.1fs", key, delay)
            self.queue.add_after(key, delay)
        else:
            with self._failures_lock:
                self._failures.pop(key, None)
        finally:
            self.queue.done(key)
        return True

    def run(self) -> None:
        """Start watches and workers; block until :meth:`stop` is called."""

        watchers = []
        for api_version, kind in self.watched_kinds():
            thread = threading.Thread(
                target=self._watch_loop,
                args=(api_version, kind),
                name=f"watch-{kind}",
                daemon=True,
            )
            thread.start()
            watchers.append(thread)

        _LOG.info("Controller started with %d workers watching %d kinds", self.config.workers, len(watchers))
        with ThreadPoolExecutor(max_workers=self.config.workers, thread_name_prefix="reconcile") as pool:
            for _ in range(self.config.workers):
                pool.submit(self._worker)
            self._stopped.wait()
            self.queue.shutdown()
        _LOG.info("Controller stopped")

    def stop(self) -> None:
        self._stopped.set()
        self.queue.shutdown()

    def _worker(self) -> None:
        while not self._stopped.is_set():
            self.process_next(timeout=1.0)

    def _watch_loop(self, api_version: str, kind: str) -> None:
        namespace = None if (api_version, kind) in CLUSTER_SCOPED_KINDS else self.config.cluster.namespace
        attempt = 0
        while not self._stopped.is_set():
            try:
                for event in self.api.watch(api_version, kind, namespace=namespace, timeout=WATCH_TIMEOUT_SECONDS):
                    attempt = 0
                    self.handle_event(event)
                    if self._stopped.is_set():
                        return
            except ResourceNotFoundError:
                _LOG.warning("%s %s is not served by the cluster; not watching it", api_version, kind)
                return
            except ApiException as exc:
                if exc.status == 404:
                    _LOG.warning("%s %s is not served by the cluster; not watching it", api_version, kind)
                    return
                self._backoff_watch(api_version, kind, exc, attempt)
                attempt += 1
            except HTTPError as exc:
                self._backoff_watch(api_version, kind, exc, attempt)
                attempt += 1

    def _backoff_watch(self, api_version: str, kind: str, exc: Exception, attempt: int) -> None:
        delay = backoff_delay(self.config.retry, attempt)
        _LOG.error("Watch on %s %s failed: %s; restarting in %.1fs", api_version, kind, exc, delay)
        self._stopped.wait(delay)
