"""
Tests for Informer and FederatedInformer.

These tests verify that:
1. An informer lists, then follows watch events into its store and handlers
2. Malformed events are dropped and handler failures do not stop the informer
3. Member cluster sessions follow Cluster readiness, with cache eviction
4. Client factory failures leave a cluster unavailable until a retry succeeds
"""

import queue

import pytest
from kubernetes.client import ApiException

from federation_operator.clients import INGRESSES
from federation_operator.informer import FederatedInformer, Informer
from federation_operator.objects import object_key
from federation_operator.store import ObjectStore
from tests.fakes import FakeResourceClient, new_cluster, new_ingress, set_ready, wait_until


def _recording_informer(client, events: queue.Queue, **kwargs) -> Informer:
    return Informer(
        "test", client, ObjectStore(),
        on_add=lambda o: events.put(("add", object_key(o))),
        on_update=lambda o: events.put(("update", object_key(o))),
        on_delete=lambda o: events.put(("delete", object_key(o))),
        **kwargs,
    )


class TestInformer:

    def test_list_then_watch(self):
        client = FakeResourceClient(INGRESSES)
        client.add(new_ingress("a"))
        events = queue.Queue()
        informer = _recording_informer(client, events)
        informer.start()
        try:
            assert wait_until(lambda: informer.has_synced, timeout=3)
            assert events.get(timeout=2) == ("add", "mynamespace/a")

            client.add(new_ingress("b"))
            assert events.get(timeout=2) == ("add", "mynamespace/b")

            client.mutate("mynamespace/a", lambda o: o["metadata"].update(labels={"x": "y"}))
            assert events.get(timeout=2) == ("update", "mynamespace/a")
            assert informer.store.get_by_key("mynamespace/a")["metadata"]["labels"] == {"x": "y"}

            client.delete("mynamespace", "b")
            assert events.get(timeout=2) == ("delete", "mynamespace/b")
            assert informer.store.list_keys() == ["mynamespace/a"]
        finally:
            informer.stop()

    def test_malformed_event_dropped(self):
        client = FakeResourceClient(INGRESSES)
        events = queue.Queue()
        informer = _recording_informer(client, events)
        informer.start()
        try:
            assert wait_until(lambda: informer.has_synced, timeout=3)
            client.inject_event("ADDED", {"metadata": {}})
            client.inject_event("ADDED", "garbage")
            client.add(new_ingress("a"))
            assert events.get(timeout=2) == ("add", "mynamespace/a")
            assert len(informer.store) == 1
        finally:
            informer.stop()

    def test_handler_failure_does_not_stop_informer(self):
        client = FakeResourceClient(INGRESSES)
        seen = queue.Queue()

        def on_add(obj):
            seen.put(object_key(obj))
            if obj["metadata"]["name"] == "bad":
                raise ValueError("handler exploded")

        informer = Informer("test", client, ObjectStore(), on_add=on_add)
        informer.start()
        try:
            assert wait_until(lambda: informer.has_synced, timeout=3)
            client.add(new_ingress("bad"))
            client.add(new_ingress("good"))
            assert seen.get(timeout=2) == "mynamespace/bad"
            assert seen.get(timeout=2) == "mynamespace/good"
        finally:
            informer.stop()

    def test_object_filter(self):
        client = FakeResourceClient(INGRESSES)
        client.add(new_ingress("keep"))
        client.add(new_ingress("skip"))
        informer = Informer("test", client, ObjectStore(),
                            object_filter=lambda o: o["metadata"]["name"] == "keep")
        informer.start()
        try:
            assert wait_until(lambda: informer.has_synced, timeout=3)
            assert informer.store.list_keys() == ["mynamespace/keep"]
        finally:
            informer.stop()

    def test_list_failure_is_retried(self):
        client = FakeResourceClient(INGRESSES)
        client.add(new_ingress("a"))
        client.fail_next("list", ApiException(status=500, reason="unavailable"))
        informer = Informer("test", client, ObjectStore())
        informer.start()
        try:
            assert wait_until(lambda: informer.has_synced, timeout=5)
            assert informer.store.list_keys() == ["mynamespace/a"]
        finally:
            informer.stop()


@pytest.fixture
def tracked(cluster_records, client_factory, fast_settings):
    """A FederatedInformer over ingresses plus queues of what it reported."""
    changes, available, unavailable = queue.Queue(), queue.Queue(), queue.Queue()
    informer = FederatedInformer(
        INGRESSES, INGRESSES, cluster_records, client_factory, fast_settings,
        on_change=lambda cluster, obj: changes.put((cluster, object_key(obj))),
        on_cluster_available=lambda c: available.put(c["metadata"]["name"]),
        on_cluster_unavailable=lambda c: unavailable.put(c["metadata"]["name"]),
    )
    yield informer, changes, available, unavailable
    informer.stop()


class TestFederatedInformer:

    def test_ready_cluster_gets_a_session(self, tracked, cluster_records, client_factory):
        informer, changes, available, _ = tracked
        client_factory.client("A").resource(INGRESSES).add(new_ingress("a"))
        cluster_records.add(new_cluster("A"))
        assert not informer.clusters_synced()

        informer.start()
        assert available.get(timeout=3) == "A"
        assert wait_until(informer.clusters_synced, timeout=3)
        assert changes.get(timeout=2) == ("A", "mynamespace/a")
        assert [c["metadata"]["name"] for c in informer.get_ready_clusters()] == ["A"]
        assert informer.get_target_store().get_by_key("A", "mynamespace/a") is not None
        assert informer.get_cluster_client("A") is client_factory.client("A").resource(INGRESSES)
        assert informer.cluster_synced("A")

    def test_not_ready_cluster_is_ignored(self, tracked, cluster_records, client_factory):
        informer, _, available, _ = tracked
        cluster_records.add(new_cluster("B", ready=False))
        cluster_records.add(new_cluster("A"))
        informer.start()
        assert available.get(timeout=3) == "A"
        assert wait_until(informer.clusters_synced, timeout=3)
        assert "B" not in client_factory.calls
        assert informer.get_ready_cluster("B") is None
        assert informer.get_cluster_client("B") is None
        assert [c["metadata"]["name"] for c in informer.get_unready_clusters()] == ["B"]

    def test_cluster_turning_unready_is_evicted(self, tracked, cluster_records, client_factory):
        informer, _, available, unavailable = tracked
        client_factory.client("A").resource(INGRESSES).add(new_ingress("a"))
        cluster_records.add(new_cluster("A"))
        informer.start()
        assert available.get(timeout=3) == "A"
        assert wait_until(lambda: informer.get_target_store().get_by_key("A", "mynamespace/a") is not None)

        cluster_records.mutate("A", set_ready(False))
        assert unavailable.get(timeout=3) == "A"
        assert informer.get_ready_clusters() == []
        assert informer.get_target_store().get_by_key("A", "mynamespace/a") is None

        cluster_records.mutate("A", set_ready(True))
        assert available.get(timeout=3) == "A"

    def test_removed_cluster_is_evicted(self, tracked, cluster_records):
        informer, _, available, unavailable = tracked
        cluster_records.add(new_cluster("A"))
        informer.start()
        assert available.get(timeout=3) == "A"
        cluster_records.delete("", "A")
        assert unavailable.get(timeout=3) == "A"
        assert informer.get_target_store().clusters() == []

    def test_client_factory_failure_is_retried(self, tracked, cluster_records, client_factory):
        informer, _, available, _ = tracked
        client_factory.fail("A", times=2)
        cluster_records.add(new_cluster("A"))
        informer.start()
        assert available.get(timeout=5) == "A"
        assert client_factory.calls.count("A") == 3
