"""
This file contains shared fixtures for all tests.
"""
import logging
from unittest.mock import MagicMock

import pytest
from kubernetes import client

from tests.helpers import FakeKube, build_objectstore_manifest, put_objectstore


@pytest.fixture
def kube() -> FakeKube:
    """An empty in-memory cluster."""
    return FakeKube()


@pytest.fixture
def logger() -> logging.Logger:
    return logging.getLogger("objectstores.tests")


@pytest.fixture
def stored_objectstore(kube: FakeKube):
    """An ObjectStore named 'store' in 'default', as the API server returns it."""
    return put_objectstore(kube, build_objectstore_manifest())


@pytest.fixture
def mock_k8s_api() -> MagicMock:
    """
    Provides a MagicMock for the Kubernetes CustomObjectsApi, suitable for unit tests.
    """
    return MagicMock(spec=client.CustomObjectsApi)
