"""Tests for FinalizerManager against the fake API server."""

import queue

import pytest
from kubernetes.client import ApiException

from federation_operator.finalizers import FinalizerManager
from federation_operator.objects import FINALIZER_DELETE_FROM_UNDERLYING_CLUSTERS, FINALIZER_ORPHAN, finalizers
from tests.fakes import FakeResourceClient, new_ingress


def _drain(q: queue.Queue) -> list:
    items = []
    while True:
        try:
            items.append(q.get_nowait())
        except queue.Empty:
            return items


@pytest.fixture
def client():
    return FakeResourceClient("ingresses")


class TestEnsureFinalizer:

    def test_adds_missing_token_with_one_write(self, client):
        obj = client.add(new_ingress())
        manager = FinalizerManager(client)
        updated = manager.ensure_finalizer(obj, FINALIZER_ORPHAN)
        assert finalizers(updated) == [FINALIZER_ORPHAN]
        assert len(_drain(client.updated)) == 1

    def test_present_token_issues_no_write(self, client):
        obj = new_ingress()
        obj["metadata"]["finalizers"] = [FINALIZER_ORPHAN]
        obj = client.add(obj)
        manager = FinalizerManager(client)
        assert manager.ensure_finalizer(obj, FINALIZER_ORPHAN) is obj
        assert _drain(client.updated) == []

    def test_preserves_other_tokens(self, client):
        obj = new_ingress()
        obj["metadata"]["finalizers"] = ["other"]
        obj = client.add(obj)
        updated = FinalizerManager(client).ensure_finalizer(obj, FINALIZER_DELETE_FROM_UNDERLYING_CLUSTERS)
        assert finalizers(updated) == ["other", FINALIZER_DELETE_FROM_UNDERLYING_CLUSTERS]

    def test_stale_object_conflicts(self, client):
        obj = client.add(new_ingress())
        client.mutate("mynamespace/test-ingress", lambda o: o["metadata"].setdefault("labels", {"x": "y"}))
        with pytest.raises(ApiException) as err:
            FinalizerManager(client).ensure_finalizer(obj, FINALIZER_ORPHAN)
        assert err.value.status == 409


class TestRemoveFinalizers:

    def test_removes_tokens_in_one_write(self, client):
        obj = new_ingress()
        obj["metadata"]["finalizers"] = [FINALIZER_ORPHAN, FINALIZER_DELETE_FROM_UNDERLYING_CLUSTERS, "other"]
        obj = client.add(obj)
        updated = FinalizerManager(client).remove_finalizers(
            obj, [FINALIZER_ORPHAN, FINALIZER_DELETE_FROM_UNDERLYING_CLUSTERS])
        assert finalizers(updated) == ["other"]
        assert len(_drain(client.updated)) == 1

    def test_absent_token_is_noop(self, client):
        obj = client.add(new_ingress())
        manager = FinalizerManager(client)
        assert manager.remove_finalizer(obj, FINALIZER_ORPHAN) is obj
        assert _drain(client.updated) == []

    def test_last_finalizer_releases_deleted_object(self, client):
        obj = new_ingress()
        obj["metadata"]["finalizers"] = [FINALIZER_DELETE_FROM_UNDERLYING_CLUSTERS]
        client.add(obj)
        client.request_deletion("mynamespace/test-ingress")
        marked = client.get("mynamespace", "test-ingress")
        assert marked["metadata"]["deletionTimestamp"]

        FinalizerManager(client).remove_finalizer(marked, FINALIZER_DELETE_FROM_UNDERLYING_CLUSTERS)
        assert client.get("mynamespace", "test-ingress") is None
        assert len(_drain(client.deleted)) == 1
