"""Tests for object helpers: keys, projections and desired cluster objects."""

from federation_operator.objects import (
    STATIC_IP_NAME_KEY_READONLY,
    desired_cluster_object,
    is_cluster_ready,
    is_well_formed,
    load_balancer_ingress,
    meta_equivalent,
    object_key,
    set_annotation,
    spec_equivalent,
    split_key,
)
from tests.fakes import new_cluster, new_ingress


class TestKeys:

    def test_namespaced_and_cluster_scoped(self):
        assert object_key(new_ingress("a", "ns")) == "ns/a"
        assert object_key(new_cluster("A")) == "A"
        assert split_key("ns/a") == ("ns", "a")
        assert split_key("A") == ("", "A")

    def test_well_formed(self):
        assert is_well_formed(new_ingress())
        assert not is_well_formed({"metadata": {}})
        assert not is_well_formed("not an object")
        assert not is_well_formed(None)


class TestAccessors:

    def test_cluster_readiness(self):
        assert is_cluster_ready(new_cluster("A"))
        assert not is_cluster_ready(new_cluster("A", ready=False))
        assert not is_cluster_ready({"metadata": {"name": "A"}})

    def test_set_annotation_copies(self):
        original = new_ingress()
        updated = set_annotation(original, "k", "v")
        assert updated["metadata"]["annotations"] == {"k": "v"}
        assert "annotations" not in original["metadata"]

    def test_load_balancer_ingress(self):
        assert load_balancer_ingress(new_ingress(lb_ip="1.2.3.4")) == [{"ip": "1.2.3.4"}]
        assert load_balancer_ingress(new_ingress()) == []
        assert load_balancer_ingress(None) == []


class TestEquivalence:

    def test_status_and_system_fields_ignored(self):
        a = new_ingress(lb_ip="1.2.3.4")
        b = new_ingress()
        b["metadata"].update({"resourceVersion": "7", "uid": "x", "finalizers": ["orphan"]})
        assert spec_equivalent(a, b)

    def test_spec_difference_detected(self):
        a = new_ingress()
        b = new_ingress()
        b["spec"]["defaultBackend"]["service"]["name"] = "other"
        assert meta_equivalent(a, b)
        assert not spec_equivalent(a, b)

    def test_annotation_difference_detected(self):
        assert not meta_equivalent(new_ingress(), new_ingress(annotations={"A": "B"}))

    def test_empty_and_missing_annotations_equal(self):
        a = new_ingress()
        b = new_ingress()
        b["metadata"]["annotations"] = {}
        assert spec_equivalent(a, b)


class TestDesiredClusterObject:

    def test_new_object_has_no_status_or_system_fields(self):
        federated = new_ingress(annotations={"A": "B"}, lb_ip="1.2.3.4")
        federated["metadata"].update({"resourceVersion": "9", "finalizers": ["orphan"],
                                      "uid": "fed-uid"})
        desired = desired_cluster_object(federated)
        assert "status" not in desired
        assert desired["metadata"] == {"name": "test-ingress", "namespace": "mynamespace",
                                       "annotations": {"A": "B"}}
        assert desired["spec"] == federated["spec"]
        assert desired["kind"] == "Ingress"

    def test_existing_status_and_owned_annotations_preserved(self):
        federated = new_ingress(annotations={"A": "B"})
        existing = new_ingress(annotations={STATIC_IP_NAME_KEY_READONLY: "ip-1"}, lb_ip="5.6.7.8")
        existing["metadata"]["resourceVersion"] = "3"
        desired = desired_cluster_object(federated, existing)
        assert desired["status"] == existing["status"]
        assert desired["metadata"]["resourceVersion"] == "3"
        assert desired["metadata"]["annotations"] == {"A": "B", STATIC_IP_NAME_KEY_READONLY: "ip-1"}
        assert spec_equivalent(desired, existing) is False
        assert spec_equivalent(desired, set_annotation(existing, "A", "B"))
