"""Per-kind access to the Kubernetes resources managed by the operator."""

import hashlib
import json
from abc import ABC, abstractmethod
from typing import Any, Optional

from kubernetes.client import ApiClient, V1ConfigMap, V1Deployment, V1Service, V1StatefulSet
from kubernetes.client.exceptions import ApiException

from .cluster import ClusterConnection
from .models import DeploymentStatus, ResourceKind, ServiceStatus

APPLIED_TEMPLATE_ANNOTATION = "robustmq.io/applied-template"

_serializer = ApiClient()


def serialize(obj: Any) -> Any:
    """Convert a client model to its JSON-compatible form."""
    return _serializer.sanitize_for_serialization(obj)


def fingerprint(data: Any) -> str:
    """Stable digest of serialized data."""
    return hashlib.sha256(json.dumps(data, sort_keys=True).encode()).hexdigest()


def contains(live: Any, desired: Any) -> bool:
    """
    Whether every value set in ``desired`` is present in ``live``.

    Keys only ``live`` carries are ignored: they are defaults the API server
    filled in or fields owned by other actors. Lists must match element-wise.
    """
    if isinstance(desired, dict):
        return isinstance(live, dict) and all(
            key in live and contains(live[key], value) for key, value in desired.items()
        )
    if isinstance(desired, list):
        return (
            isinstance(live, list)
            and len(live) == len(desired)
            and all(contains(item, wanted) for item, wanted in zip(live, desired))
        )
    return live == desired


class ResourceManager(ABC):
    """
    Get/create/replace/delete/list for one resource kind.

    Subclasses bind the kind-specific client calls and define which fields
    of a live object the operator owns (``merge``). Everything else on the
    live object is left as other actors set it.
    """

    kind: ResourceKind

    def __init__(self, cluster: ClusterConnection):
        """
        Initialize resource manager.

        Args:
            cluster: Cluster connection
        """
        self.cluster = cluster

    @abstractmethod
    def _read(self, name: str, namespace: str) -> Any: ...

    @abstractmethod
    def _create(self, namespace: str, body: Any) -> Any: ...

    @abstractmethod
    def _replace(self, name: str, namespace: str, body: Any) -> Any: ...

    @abstractmethod
    def _delete(self, name: str, namespace: str) -> Any: ...

    @abstractmethod
    def _list(self, namespace: str, label_selector: Optional[str]) -> Any: ...

    @abstractmethod
    def controlled_fields(self, obj: Any) -> dict[str, Any]:
        """Fields of ``obj`` the operator owns, in serialized form."""

    @abstractmethod
    def merge(self, live: Any, desired: Any) -> None:
        """Copy the operator-owned fields of ``desired`` onto ``live``."""

    def get(self, name: str, namespace: str) -> Optional[Any]:
        """
        Get a resource.

        Args:
            name: Resource name
            namespace: Kubernetes namespace

        Returns:
            The live object or None if not found
        """
        try:
            return self._read(name, namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    def create(self, body: Any) -> Any:
        """
        Create a resource.

        Args:
            body: Client model to create

        Returns:
            Created object

        Raises:
            ApiException: If creation fails
        """
        return self._create(body.metadata.namespace, body)

    def replace(self, live: Any) -> Any:
        """
        Replace a resource with a modified copy of its live object.

        The live object's resourceVersion makes this a conditional update;
        a concurrent writer makes it fail with 409.

        Args:
            live: Live object carrying the merged fields

        Returns:
            Updated object

        Raises:
            ApiException: If the update fails
        """
        return self._replace(live.metadata.name, live.metadata.namespace, live)

    def delete(self, name: str, namespace: str) -> bool:
        """
        Delete a resource.

        Args:
            name: Resource name
            namespace: Kubernetes namespace

        Returns:
            True if deleted, False if not found
        """
        try:
            self._delete(name, namespace)
            return True
        except ApiException as e:
            if e.status == 404:
                return False
            raise

    def list(self, namespace: str, labels: Optional[dict[str, str]] = None) -> list[Any]:
        """
        List resources.

        Args:
            namespace: Kubernetes namespace
            labels: Label selector dict

        Returns:
            List of live objects
        """
        label_selector = None
        if labels:
            label_selector = ",".join([f"{k}={v}" for k, v in labels.items()])
        return self._list(namespace, label_selector).items

    def differs(self, live: Any, desired: Any) -> bool:
        """Whether applying ``desired`` would change the operator-owned fields of ``live``."""
        return self.controlled_fields(live) != self.controlled_fields(desired)


class _WorkloadManager(ResourceManager):
    """
    Shared merge rules for StatefulSets and Deployments.

    The API server fills in pod template defaults on every write, so the live
    template is compared by containment. The fingerprint of the last applied
    template, kept in an annotation, catches values dropped from the desired
    template, which containment alone cannot see.
    """

    def controlled_fields(self, obj):
        return {
            "replicas": obj.spec.replicas,
            "template": serialize(obj.spec.template),
        }

    def create(self, body):
        self._record_template(body, body)
        return super().create(body)

    def differs(self, live, desired):
        wanted = self.controlled_fields(desired)
        applied = (live.metadata.annotations or {}).get(APPLIED_TEMPLATE_ANNOTATION)
        if applied != fingerprint(wanted["template"]):
            return True
        return not contains(self.controlled_fields(live), wanted)

    def merge(self, live, desired):
        live.spec.replicas = desired.spec.replicas
        live.spec.template = desired.spec.template
        self._record_template(live, desired)

    @staticmethod
    def _record_template(obj, desired):
        annotations = dict(obj.metadata.annotations or {})
        annotations[APPLIED_TEMPLATE_ANNOTATION] = fingerprint(serialize(desired.spec.template))
        obj.metadata.annotations = annotations


class StatefulSetManager(_WorkloadManager):
    """Manages Kubernetes StatefulSet operations."""

    kind = ResourceKind.STATEFUL_SET

    def _read(self, name, namespace) -> V1StatefulSet:
        return self.cluster.apps_v1.read_namespaced_stateful_set(name, namespace)

    def _create(self, namespace, body):
        return self.cluster.apps_v1.create_namespaced_stateful_set(namespace=namespace, body=body)

    def _replace(self, name, namespace, body):
        return self.cluster.apps_v1.replace_namespaced_stateful_set(
            name=name, namespace=namespace, body=body
        )

    def _delete(self, name, namespace):
        return self.cluster.apps_v1.delete_namespaced_stateful_set(name, namespace)

    def _list(self, namespace, label_selector):
        return self.cluster.apps_v1.list_namespaced_stateful_set(
            namespace=namespace, label_selector=label_selector
        )

    @staticmethod
    def replica_status(obj: Optional[V1StatefulSet]) -> DeploymentStatus:
        """StatefulSets report no available count; ready replicas stand in for it."""
        if obj is None or obj.status is None:
            return DeploymentStatus()
        ready = obj.status.ready_replicas or 0
        return DeploymentStatus(
            replicas=obj.status.replicas or 0,
            ready_replicas=ready,
            available_replicas=ready,
        )


class DeploymentManager(_WorkloadManager):
    """Manages Kubernetes Deployment operations."""

    kind = ResourceKind.DEPLOYMENT

    def _read(self, name, namespace) -> V1Deployment:
        return self.cluster.apps_v1.read_namespaced_deployment(name, namespace)

    def _create(self, namespace, body):
        return self.cluster.apps_v1.create_namespaced_deployment(namespace=namespace, body=body)

    def _replace(self, name, namespace, body):
        return self.cluster.apps_v1.replace_namespaced_deployment(
            name=name, namespace=namespace, body=body
        )

    def _delete(self, name, namespace):
        return self.cluster.apps_v1.delete_namespaced_deployment(name, namespace)

    def _list(self, namespace, label_selector):
        return self.cluster.apps_v1.list_namespaced_deployment(
            namespace=namespace, label_selector=label_selector
        )

    @staticmethod
    def replica_status(obj: Optional[V1Deployment]) -> DeploymentStatus:
        if obj is None or obj.status is None:
            return DeploymentStatus()
        return DeploymentStatus(
            replicas=obj.status.replicas or 0,
            ready_replicas=obj.status.ready_replicas or 0,
            available_replicas=obj.status.available_replicas or 0,
        )


class ServiceManager(ResourceManager):
    """Manages Kubernetes Service operations."""

    kind = ResourceKind.SERVICE

    def _read(self, name, namespace) -> V1Service:
        return self.cluster.core_v1.read_namespaced_service(name, namespace)

    def _create(self, namespace, body):
        return self.cluster.core_v1.create_namespaced_service(namespace=namespace, body=body)

    def _replace(self, name, namespace, body):
        return self.cluster.core_v1.replace_namespaced_service(
            name=name, namespace=namespace, body=body
        )

    def _delete(self, name, namespace):
        return self.cluster.core_v1.delete_namespaced_service(name, namespace)

    def _list(self, namespace, label_selector):
        return self.cluster.core_v1.list_namespaced_service(
            namespace=namespace, label_selector=label_selector
        )

    def controlled_fields(self, obj):
        return {
            "type": obj.spec.type,
            "ports": serialize(obj.spec.ports),
            "selector": dict(obj.spec.selector or {}),
        }

    def differs(self, live, desired):
        # Ports come back with server-assigned values such as nodePort.
        current, wanted = self.controlled_fields(live), self.controlled_fields(desired)
        return (
            current["type"] != wanted["type"]
            or current["selector"] != wanted["selector"]
            or not contains(current["ports"], wanted["ports"])
        )

    def merge(self, live, desired):
        # clusterIP is immutable once allocated and is never copied.
        live.spec.ports = desired.spec.ports
        live.spec.type = desired.spec.type
        live.spec.selector = desired.spec.selector

    @staticmethod
    def service_status(obj: Optional[V1Service]) -> ServiceStatus:
        """Addresses of a Service; load balancer ingress only for LoadBalancer types."""
        if obj is None or obj.spec is None:
            return ServiceStatus()
        status = ServiceStatus(
            cluster_ip=obj.spec.cluster_ip,
            external_ips=list(obj.spec.external_i_ps or []),
        )
        if obj.spec.type == "LoadBalancer" and obj.status and obj.status.load_balancer:
            status.load_balancer_ingress = [
                serialize(ingress) for ingress in (obj.status.load_balancer.ingress or [])
            ]
        return status


class ConfigMapManager(ResourceManager):
    """Manages Kubernetes ConfigMap operations."""

    kind = ResourceKind.CONFIG_MAP

    def _read(self, name, namespace) -> V1ConfigMap:
        return self.cluster.core_v1.read_namespaced_config_map(name, namespace)

    def _create(self, namespace, body):
        return self.cluster.core_v1.create_namespaced_config_map(namespace=namespace, body=body)

    def _replace(self, name, namespace, body):
        return self.cluster.core_v1.replace_namespaced_config_map(
            name=name, namespace=namespace, body=body
        )

    def _delete(self, name, namespace):
        return self.cluster.core_v1.delete_namespaced_config_map(name, namespace)

    def _list(self, namespace, label_selector):
        return self.cluster.core_v1.list_namespaced_config_map(
            namespace=namespace, label_selector=label_selector
        )

    def controlled_fields(self, obj):
        return {"data": dict(obj.data or {})}

    def merge(self, live, desired):
        live.data = desired.data


def build_managers(cluster: ClusterConnection) -> dict[ResourceKind, ResourceManager]:
    """One manager per managed kind."""
    return {
        ResourceKind.CONFIG_MAP: ConfigMapManager(cluster),
        ResourceKind.SERVICE: ServiceManager(cluster),
        ResourceKind.STATEFUL_SET: StatefulSetManager(cluster),
        ResourceKind.DEPLOYMENT: DeploymentManager(cluster),
    }
