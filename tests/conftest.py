"""Pytest configuration and fixtures for RobustMQ operator tests."""

import copy
import itertools
from types import SimpleNamespace
from typing import Any, Optional
from unittest.mock import MagicMock

import pytest
from kubernetes import client
from kubernetes.client.exceptions import ApiException

from robustmq_operator.config import Settings
from robustmq_operator.models import RobustMQ, RobustMQSpec


def _matches(labels: Optional[dict[str, str]], label_selector: Optional[str]) -> bool:
    if not label_selector:
        return True
    labels = labels or {}
    for term in label_selector.split(","):
        key, _, value = term.partition("=")
        if labels.get(key) != value:
            return False
    return True


def _apply_server_defaults(kind: str, obj: Any, cluster: "FakeCluster") -> None:
    """Fill in the values a real API server adds on every write."""
    if kind in ("StatefulSet", "Deployment"):
        pod_spec = obj.spec.template.spec if obj.spec and obj.spec.template else None
        if pod_spec is None:
            return
        pod_spec.restart_policy = pod_spec.restart_policy or "Always"
        pod_spec.dns_policy = pod_spec.dns_policy or "ClusterFirst"
        pod_spec.scheduler_name = pod_spec.scheduler_name or "default-scheduler"
        for container in pod_spec.containers or []:
            container.termination_message_path = (
                container.termination_message_path or "/dev/termination-log"
            )
            container.termination_message_policy = (
                container.termination_message_policy or "File"
            )
    elif kind == "Service" and obj.spec is not None:
        if obj.spec.cluster_ip is None:
            obj.spec.cluster_ip = cluster.next_cluster_ip()
        for port in obj.spec.ports or []:
            port.protocol = port.protocol or "TCP"
            if obj.spec.type in ("NodePort", "LoadBalancer") and port.node_port is None:
                port.node_port = cluster.next_node_port()


class _ObjectStore:
    """Namespaced object storage with resourceVersion bookkeeping."""

    def __init__(self, cluster: "FakeCluster", kind: str):
        self.cluster = cluster
        self.kind = kind
        self.objects: dict[tuple[str, str], Any] = {}

    def read(self, name, namespace):
        self.cluster.record("read", self.kind, name)
        key = (namespace, name)
        if key not in self.objects:
            raise ApiException(status=404, reason="Not Found")
        return copy.deepcopy(self.objects[key])

    def create(self, namespace, body):
        name = body.metadata.name
        self.cluster.record("create", self.kind, name)
        self.cluster.maybe_fail("create", self.kind, name)
        key = (namespace, name)
        if key in self.objects:
            raise ApiException(status=409, reason="AlreadyExists")
        obj = copy.deepcopy(body)
        obj.metadata.namespace = namespace
        obj.metadata.uid = f"uid-{self.kind.lower()}-{name}"
        obj.metadata.resource_version = self.cluster.next_version()
        _apply_server_defaults(self.kind, obj, self.cluster)
        self.objects[key] = obj
        return copy.deepcopy(obj)

    def replace(self, name, namespace, body):
        self.cluster.record("replace", self.kind, name)
        self.cluster.maybe_fail("replace", self.kind, name)
        key = (namespace, name)
        if key not in self.objects:
            raise ApiException(status=404, reason="Not Found")
        stored = self.objects[key]
        if body.metadata.resource_version != stored.metadata.resource_version:
            raise ApiException(status=409, reason="Conflict")
        obj = copy.deepcopy(body)
        # Status is a subresource and is never written through the main endpoint.
        if hasattr(stored, "status"):
            obj.status = stored.status
        obj.metadata.resource_version = self.cluster.next_version()
        _apply_server_defaults(self.kind, obj, self.cluster)
        self.objects[key] = obj
        return copy.deepcopy(obj)

    def delete(self, name, namespace):
        self.cluster.record("delete", self.kind, name)
        key = (namespace, name)
        if key not in self.objects:
            raise ApiException(status=404, reason="Not Found")
        del self.objects[key]

    def list(self, namespace, label_selector=None):
        items = [
            copy.deepcopy(obj)
            for (ns, _), obj in self.objects.items()
            if ns == namespace and _matches(obj.metadata.labels, label_selector)
        ]
        return SimpleNamespace(items=items)

    def put(self, obj):
        """Store an object as if another actor had created it."""
        obj = copy.deepcopy(obj)
        obj.metadata.resource_version = obj.metadata.resource_version or self.cluster.next_version()
        self.objects[(obj.metadata.namespace, obj.metadata.name)] = obj


class _FakeAppsV1:
    def __init__(self, cluster: "FakeCluster"):
        self.stateful_sets = _ObjectStore(cluster, "StatefulSet")
        self.deployments = _ObjectStore(cluster, "Deployment")

    def read_namespaced_stateful_set(self, name, namespace):
        return self.stateful_sets.read(name, namespace)

    def create_namespaced_stateful_set(self, namespace, body):
        return self.stateful_sets.create(namespace, body)

    def replace_namespaced_stateful_set(self, name, namespace, body):
        return self.stateful_sets.replace(name, namespace, body)

    def delete_namespaced_stateful_set(self, name, namespace):
        return self.stateful_sets.delete(name, namespace)

    def list_namespaced_stateful_set(self, namespace, label_selector=None):
        return self.stateful_sets.list(namespace, label_selector)

    def read_namespaced_deployment(self, name, namespace):
        return self.deployments.read(name, namespace)

    def create_namespaced_deployment(self, namespace, body):
        return self.deployments.create(namespace, body)

    def replace_namespaced_deployment(self, name, namespace, body):
        return self.deployments.replace(name, namespace, body)

    def delete_namespaced_deployment(self, name, namespace):
        return self.deployments.delete(name, namespace)

    def list_namespaced_deployment(self, namespace, label_selector=None):
        return self.deployments.list(namespace, label_selector)


class _FakeCoreV1:
    def __init__(self, cluster: "FakeCluster"):
        self.services = _ObjectStore(cluster, "Service")
        self.config_maps = _ObjectStore(cluster, "ConfigMap")

    def read_namespaced_service(self, name, namespace):
        return self.services.read(name, namespace)

    def create_namespaced_service(self, namespace, body):
        return self.services.create(namespace, body)

    def replace_namespaced_service(self, name, namespace, body):
        return self.services.replace(name, namespace, body)

    def delete_namespaced_service(self, name, namespace):
        return self.services.delete(name, namespace)

    def list_namespaced_service(self, namespace, label_selector=None):
        return self.services.list(namespace, label_selector)

    def read_namespaced_config_map(self, name, namespace):
        return self.config_maps.read(name, namespace)

    def create_namespaced_config_map(self, namespace, body):
        return self.config_maps.create(namespace, body)

    def replace_namespaced_config_map(self, name, namespace, body):
        return self.config_maps.replace(name, namespace, body)

    def delete_namespaced_config_map(self, name, namespace):
        return self.config_maps.delete(name, namespace)

    def list_namespaced_config_map(self, namespace, label_selector=None):
        return self.config_maps.list(namespace, label_selector)


class _FakeCustomObjects:
    """RobustMQ custom objects, stored as plain dicts."""

    def __init__(self, cluster: "FakeCluster"):
        self.cluster = cluster
        self.objects: dict[tuple[str, str], dict] = {}

    def add(self, obj: dict) -> None:
        obj = copy.deepcopy(obj)
        metadata = obj.setdefault("metadata", {})
        metadata.setdefault("namespace", "default")
        metadata.setdefault("uid", f"uid-robustmq-{metadata['name']}")
        metadata.setdefault("generation", 1)
        metadata["resourceVersion"] = self.cluster.next_version()
        self.objects[(metadata["namespace"], metadata["name"])] = obj

    def get_namespaced_custom_object(self, group, version, namespace, plural, name):
        key = (namespace, name)
        if key not in self.objects:
            raise ApiException(status=404, reason="Not Found")
        return copy.deepcopy(self.objects[key])

    def list_namespaced_custom_object(self, group, version, namespace, plural, **kwargs):
        return {
            "items": [
                copy.deepcopy(obj) for (ns, _), obj in self.objects.items() if ns == namespace
            ]
        }

    def list_cluster_custom_object(self, group, version, plural, **kwargs):
        return {"items": [copy.deepcopy(obj) for obj in self.objects.values()]}

    def replace_namespaced_custom_object_status(self, group, version, namespace, plural, name, body):
        self.cluster.record("replace_status", "RobustMQ", name)
        key = (namespace, name)
        if key not in self.objects:
            raise ApiException(status=404, reason="Not Found")
        stored = self.objects[key]
        if body["metadata"].get("resourceVersion") != stored["metadata"]["resourceVersion"]:
            raise ApiException(status=409, reason="Conflict")
        stored["status"] = copy.deepcopy(body.get("status", {}))
        stored["metadata"]["resourceVersion"] = self.cluster.next_version()
        return copy.deepcopy(stored)


class FakeCluster:
    """In-memory stand-in for a ClusterConnection."""

    def __init__(self):
        self._versions = itertools.count(1)
        self._ips = itertools.count(1)
        self._node_ports = itertools.count(30000)
        self.calls: list[tuple[str, str, str]] = []
        self.failures: dict[tuple[str, str], ApiException] = {}
        self.apps_v1 = _FakeAppsV1(self)
        self.core_v1 = _FakeCoreV1(self)
        self.custom_objects = _FakeCustomObjects(self)

    def next_version(self) -> str:
        return str(next(self._versions))

    def next_node_port(self) -> int:
        return next(self._node_ports)

    def next_cluster_ip(self) -> str:
        return f"10.96.0.{next(self._ips)}"

    def record(self, action: str, kind: str, name: str) -> None:
        self.calls.append((action, kind, name))

    def fail(self, action: str, kind: str, status: int = 500) -> None:
        """Make every ``action`` on ``kind`` fail with ``status``."""
        self.failures[(action, kind)] = ApiException(status=status, reason="Injected")

    def maybe_fail(self, action: str, kind: str, name: str) -> None:
        error = self.failures.get((action, kind))
        if error is not None:
            raise error

    def count(self, action: str, kind: Optional[str] = None) -> int:
        return sum(1 for a, k, _ in self.calls if a == action and (kind is None or k == kind))

    def store(self, kind: str) -> _ObjectStore:
        return {
            "StatefulSet": self.apps_v1.stateful_sets,
            "Deployment": self.apps_v1.deployments,
            "Service": self.core_v1.services,
            "ConfigMap": self.core_v1.config_maps,
        }[kind]

    def names(self, kind: str) -> set[str]:
        return {name for _, name in self.store(kind).objects}

    def get(self, kind: str, name: str, namespace: str = "default") -> Any:
        return self.store(kind).objects.get((namespace, name))

    def set_ready(
        self,
        kind: str,
        name: str,
        replicas: int,
        ready: int,
        namespace: str = "default",
    ) -> None:
        """Simulate the workload controller reporting replica counts."""
        obj = self.get(kind, name, namespace)
        if kind == "StatefulSet":
            obj.status = client.V1StatefulSetStatus(replicas=replicas, ready_replicas=ready)
        else:
            obj.status = client.V1DeploymentStatus(
                replicas=replicas, ready_replicas=ready, available_replicas=ready
            )


@pytest.fixture
def mock_cluster_connection():
    """Mock cluster connection for testing."""
    mock_conn = MagicMock()
    mock_conn.core_v1 = MagicMock(spec=client.CoreV1Api)
    mock_conn.apps_v1 = MagicMock(spec=client.AppsV1Api)
    mock_conn.custom_objects = MagicMock(spec=client.CustomObjectsApi)
    return mock_conn


@pytest.fixture
def fake_cluster():
    """In-memory cluster."""
    return FakeCluster()


@pytest.fixture
def settings():
    """Operator settings independent of the environment."""
    return Settings(_env_file=None, requeue_after_seconds=300, prune_orphans=False)


def make_instance(
    name: str = "mq",
    namespace: str = "default",
    spec: Optional[dict] = None,
    uid: Optional[str] = "uid-1",
) -> RobustMQ:
    """Build a RobustMQ from a camelCase spec dict."""
    return RobustMQ(
        name=name,
        namespace=namespace,
        uid=uid,
        generation=1,
        spec=RobustMQSpec.model_validate(spec or {}),
    )


def instance_object(name: str = "mq", namespace: str = "default", spec: Optional[dict] = None) -> dict:
    """RobustMQ custom object as returned by the API."""
    return {
        "apiVersion": "robustmq.io/v1alpha1",
        "kind": "RobustMQ",
        "metadata": {"name": name, "namespace": namespace},
        "spec": spec or {},
    }


@pytest.fixture
def all_in_one_instance():
    """All-in-one instance with defaults."""
    return make_instance(spec={"deploymentMode": "AllInOne"})


@pytest.fixture
def microservices_instance():
    """Microservices instance with defaults."""
    return make_instance(spec={"deploymentMode": "Microservices"})
