"""Tests for the admin API, served from a running controller over the fakes."""

import pytest
from fastapi.testclient import TestClient

from federation_operator.clients import INGRESSES
from federation_operator.controller import new_ingress_controller
from federation_operator.main import app
from federation_operator.objects import UID_ANNOTATION_KEY, annotations
from tests.fakes import new_cluster, new_configmap, new_ingress, wait_until


@pytest.fixture
def running(federation, client_factory, fast_settings):
    client_factory.client("A").resource("configmaps").add(new_configmap("foo"))
    federation.resource("clusters").add(new_cluster("A"))
    federation.resource("clusters").add(new_cluster("B", ready=False))
    ctrl = new_ingress_controller(federation, client_factory, fast_settings)
    ctrl.start()
    federation.resource(INGRESSES).add(new_ingress())
    assert wait_until(lambda: annotations(
        federation.resource(INGRESSES).get("mynamespace", "test-ingress")).get(UID_ANNOTATION_KEY) == "foo")
    assert wait_until(lambda: UID_ANNOTATION_KEY in annotations(ctrl.cluster_informer.get_target_store().get_by_key(
        "A", "mynamespace/test-ingress") or {}))
    app.state.controller = ctrl
    yield ctrl
    app.state.controller = None
    ctrl.stop()


@pytest.fixture
def api(running):
    with TestClient(app) as client:
        yield client


class TestHealth:

    def test_health(self, api):
        body = api.get("/health").json()
        assert body["status"] == "healthy"
        assert body["synced"] is True
        assert body["readyClusters"] == 1
        assert body["redis"] == "disabled"

    def test_metrics(self, api):
        resp = api.get("/metrics")
        assert resp.status_code == 200
        assert "federation_reconciles_total" in resp.text


class TestIngressRoutes:

    def test_list(self, api):
        body = api.get("/api/ingresses").json()
        assert body["total"] == 1
        ingress = body["ingresses"][0]
        assert ingress["name"] == "test-ingress"
        assert ingress["firstCluster"] == "A"
        assert ingress["uid"] == "foo"
        assert ingress["clusters"] == [
            {"cluster": "A", "present": True, "inSync": True, "loadBalancer": []},
        ]

    def test_get(self, api):
        body = api.get("/api/ingresses/mynamespace/test-ingress").json()
        assert body["namespace"] == "mynamespace"
        assert "orphan" in body["finalizers"]
        assert body["deletionRequested"] is False

    def test_get_missing(self, api):
        resp = api.get("/api/ingresses/mynamespace/absent")
        assert resp.status_code == 404

    def test_events_without_redis(self, api):
        body = api.get("/api/ingresses/mynamespace/test-ingress/events").json()
        assert body == {"key": "mynamespace/test-ingress", "events": []}


class TestClusterRoutes:

    def test_list_clusters(self, api):
        body = api.get("/api/clusters").json()
        assert body["total"] == 1
        assert body["clusters"][0] == {"name": "A", "ready": True, "uidMaster": True, "uid": "foo"}


def test_no_controller_is_unavailable():
    app.state.controller = None
    # skip the lifespan so no real cluster connection is attempted
    client = TestClient(app)
    assert client.get("/api/ingresses").status_code == 503
    assert client.get("/health").json()["status"] == "starting"
