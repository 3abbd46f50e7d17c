"""
Shared fixtures: fast timing settings, fake federation API and member clusters.
"""

import dataclasses

import pytest

from federation_operator.clients import CLUSTERS, INGRESSES
from federation_operator.config import settings
from tests.fakes import FakeClientFactory, FakeClusterClient


@pytest.fixture
def fast_settings():
    """Delays shrunk so scenarios converge in well under a second per step."""
    return dataclasses.replace(
        settings,
        CLUSTER_AVAILABLE_DELAY=0.2,
        INGRESS_REVIEW_DELAY=0.5,
        CONFIGMAP_REVIEW_DELAY=0.3,
        SMALL_DELAY=0.1,
        UPDATE_TIMEOUT=3.0,
        BACKOFF_INITIAL=0.1,
        BACKOFF_MAX=0.5,
        INFORMER_RESYNC_PERIOD=30.0,
        MAX_WORKERS=2,
        REDIS_URL="",
    )


@pytest.fixture
def federation():
    return FakeClusterClient("federation")


@pytest.fixture
def federated_ingresses(federation):
    return federation.resource(INGRESSES)


@pytest.fixture
def cluster_records(federation):
    return federation.resource(CLUSTERS)


@pytest.fixture
def client_factory():
    return FakeClientFactory()
