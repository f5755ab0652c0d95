"""Pytest configuration shared by the simulator tests."""

import sys
from pathlib import Path

import pytest

# Ensure the project root is importable without an editable install.
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from tests.fake_api import FakeCluster  # noqa: E402


@pytest.fixture
def cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def configmap_template() -> dict:
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": "sample", "labels": {"app": "load"}},
        "data": {"payload": "hello"},
    }


@pytest.fixture
def ssar_template() -> dict:
    return {
        "apiVersion": "authorization.k8s.io/v1",
        "kind": "SelfSubjectAccessReview",
        "spec": {"resourceAttributes": {"verb": "list", "resource": "pods"}},
    }
