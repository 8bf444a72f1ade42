from unittest.mock import MagicMock

from kubernetes.dynamic.exceptions import ResourceNotFoundError
from urllib3.exceptions import ProtocolError

from tensegrity.config import ControllerConfig, RetryPolicy, WatchKind
from tensegrity.controller import Controller, WorkQueue
from tensegrity.resources.base import ObjectKey
from tensegrity.tracker import Tracker

WEB = ObjectKey("k8s.tensegrity.fastforge.io/v1alpha1", "Deployment", "app", "web")
SETTINGS = ObjectKey("v1", "ConfigMap", "app", "settings")


def _controller(**config) -> Controller:
    tracker = Tracker()
    return Controller(MagicMock(), ControllerConfig(**config), tracker=tracker, reconciler=MagicMock())


def test_work_queue_deduplicates_keys():
    queue = WorkQueue()
    queue.add(WEB)
    queue.add(WEB)

    assert len(queue) == 1
    assert queue.get(timeout=0) == WEB
    assert queue.get(timeout=0) is None


def test_work_queue_requeues_keys_added_while_processing():
    queue = WorkQueue()
    queue.add(WEB)
    key = queue.get(timeout=0)
    queue.add(WEB)

    assert len(queue) == 0
    queue.done(key)
    assert queue.get(timeout=0) == WEB


def test_work_queue_shutdown_stops_consumers():
    queue = WorkQueue()
    queue.add(WEB)
    queue.shutdown()
    queue.add(SETTINGS)

    assert queue.get(timeout=0) is None


def test_events_enqueue_resources_and_their_dependents():
    controller = _controller()
    other = ObjectKey("k8s.tensegrity.fastforge.io/v1alpha1", "Deployment", "app", "api")
    controller.tracker.track(SETTINGS, other)

    controller.handle_event(
        {"type": "MODIFIED", "object": {"apiVersion": WEB.api_version, "kind": "Deployment", "metadata": {"name": "web", "namespace": "app"}}}
    )
    controller.handle_event(
        {"type": "MODIFIED", "object": {"apiVersion": "v1", "kind": "ConfigMap", "metadata": {"name": "settings", "namespace": "app"}}}
    )
    controller.handle_event({"type": "MODIFIED", "object": {"apiVersion": "v1", "kind": "ConfigMap", "metadata": {"name": "unrelated", "namespace": "app"}}})

    assert [controller.queue.get(timeout=0), controller.queue.get(timeout=0)] == [WEB, other]
    assert controller.queue.get(timeout=0) is None


def test_failed_reconcile_is_retried_with_backoff():
    controller = _controller(retry=RetryPolicy(backoff_base=2.0, jitter=0))
    controller.reconciler.reconcile.side_effect = RuntimeError("boom")
    controller.queue.add_after = MagicMock()

    controller.queue.add(WEB)
    assert controller.process_next(timeout=0)
    controller.queue.add(WEB)
    assert controller.process_next(timeout=0)

    delays = [call.args[1] for call in controller.queue.add_after.call_args_list]
    assert delays == [2.0, 4.0]

    controller.reconciler.reconcile.side_effect = None
    controller.queue.add(WEB)
    controller.process_next(timeout=0)
    assert controller._failures == {}


def test_process_next_without_work():
    controller = _controller()
    assert not controller.process_next(timeout=0)
    controller.reconciler.reconcile.assert_not_called()


def test_watched_kinds_include_dependencies_and_extras():
    controller = _controller(watch_kinds=[WatchKind(api_version="v1", kind="Service"), WatchKind(api_version="v1", kind="Secret")])

    kinds = controller.watched_kinds()

    assert ("tensegrity.fastforge.io/v1alpha1", "Static") in kinds
    assert ("v1", "Namespace") in kinds
    assert kinds[-1] == ("v1", "Service")
    assert kinds.count(("v1", "Secret")) == 1


def test_watch_stops_for_kinds_the_cluster_does_not_serve():
    controller = _controller()
    controller.api.watch.side_effect = ResourceNotFoundError("no Rollout")

    controller._watch_loop("argo.tensegrity.fastforge.io/v1alpha1", "Rollout")

    controller.api.watch.assert_called_once()


def test_watch_reconnects_after_stream_errors():
    controller = _controller(retry=RetryPolicy(backoff_base=0, jitter=0))
    calls = []

    def watch(api_version, kind, namespace=None, timeout=None):
        calls.append(kind)
        if len(calls) == 1:
            raise ProtocolError("Connection broken: IncompleteRead")
        yield {"type": "ADDED", "object": {"apiVersion": WEB.api_version, "kind": "Deployment", "metadata": {"name": "web", "namespace": "app"}}}
        controller.stop()

    controller.api.watch.side_effect = watch

    controller._watch_loop(WEB.api_version, "Deployment")

    assert len(calls) == 2
    assert controller.queue._queued == {WEB}
