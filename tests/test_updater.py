"""Tests for FederatedUpdater fan-out."""

import threading

import pytest
from kubernetes.client import ApiException

from federation_operator.errors import UpdateTimeoutError
from federation_operator.updater import CREATE, DELETE, UPDATE, FederatedUpdater, Operation
from tests.fakes import FakeResourceClient, new_ingress

KEY = "mynamespace/test-ingress"


class BlockingClient(FakeResourceClient):

    def __init__(self):
        super().__init__("ingresses")
        self.release = threading.Event()

    def create(self, obj):
        self.release.wait(5)
        return super().create(obj)


@pytest.fixture
def clients():
    return {"A": FakeResourceClient("ingresses"), "B": FakeResourceClient("ingresses")}


@pytest.fixture
def updater(clients):
    u = FederatedUpdater("ingresses", clients.get, max_workers=4)
    yield u
    u.shutdown()


class TestFederatedUpdater:

    def test_create_update_delete_across_clusters(self, clients, updater):
        clients["B"].add(new_ingress())
        changed = new_ingress(annotations={"A": "B"})
        errors = updater.update([
            Operation(CREATE, "A", KEY, new_ingress()),
            Operation(UPDATE, "B", KEY, changed),
        ], timeout=2)
        assert errors == {}
        assert clients["A"].get("mynamespace", "test-ingress") is not None
        assert clients["B"].get("mynamespace", "test-ingress")["metadata"]["annotations"] == {"A": "B"}

        assert updater.update([Operation(DELETE, "A", KEY), Operation(DELETE, "B", KEY)], timeout=2) == {}
        assert clients["A"].objects() == {}
        assert clients["B"].objects() == {}

    def test_idempotent_create_and_delete(self, clients, updater):
        clients["A"].add(new_ingress())
        errors = updater.update([
            Operation(CREATE, "A", KEY, new_ingress()),
            Operation(DELETE, "B", KEY),
        ], timeout=2)
        assert errors == {}

    def test_errors_reported_per_cluster(self, clients, updater):
        clients["B"].add(new_ingress())
        clients["B"].fail_next("update", ApiException(status=500, reason="internal error"))
        errors = updater.update([
            Operation(UPDATE, "A", KEY, new_ingress()),
            Operation(UPDATE, "B", KEY, new_ingress()),
            Operation(DELETE, "gone", KEY),
        ], timeout=2)
        # A has nothing to update; an unknown cluster is unavailable
        assert set(errors) == {"A", "B", "gone"}
        assert errors["A"].status == 404
        assert errors["B"].status == 500
        assert isinstance(errors["gone"], RuntimeError)

    def test_timeout_raises(self):
        blocking = BlockingClient()
        updater = FederatedUpdater("ingresses", {"A": blocking}.get)
        try:
            with pytest.raises(UpdateTimeoutError):
                updater.update([Operation(CREATE, "A", KEY, new_ingress())], timeout=0.1)
        finally:
            blocking.release.set()
            updater.shutdown()

    def test_no_operations(self, updater):
        assert updater.update([], timeout=0.1) == {}
