"""Access to RobustMQ custom resources."""

import logging
from typing import Optional

from kubernetes.client.exceptions import ApiException

from .cluster import ClusterConnection
from .exceptions import StatusUpdateError
from .models import API_GROUP, API_VERSION, PLURAL, RobustMQ, RobustMQStatus

logger = logging.getLogger(__name__)


class InstanceClient:
    """Reads RobustMQ instances and writes their status subresource."""

    def __init__(self, cluster: ClusterConnection):
        """
        Initialize instance client.

        Args:
            cluster: Cluster connection
        """
        self.cluster = cluster
        self.custom_objects = cluster.custom_objects

    def get(self, name: str, namespace: str) -> Optional[RobustMQ]:
        """
        Get an instance.

        Args:
            name: Instance name
            namespace: Kubernetes namespace

        Returns:
            RobustMQ or None if it was deleted
        """
        try:
            obj = self.custom_objects.get_namespaced_custom_object(
                API_GROUP, API_VERSION, namespace, PLURAL, name
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        return RobustMQ.from_api(obj)

    def list(self, namespace: Optional[str] = None) -> list[RobustMQ]:
        """
        List instances.

        Args:
            namespace: Kubernetes namespace, or None for all namespaces

        Returns:
            List of RobustMQ instances
        """
        if namespace:
            result = self.custom_objects.list_namespaced_custom_object(
                API_GROUP, API_VERSION, namespace, PLURAL
            )
        else:
            result = self.custom_objects.list_cluster_custom_object(API_GROUP, API_VERSION, PLURAL)
        return [RobustMQ.from_api(item) for item in result.get("items", [])]

    def replace_status(self, instance: RobustMQ, status: RobustMQStatus) -> RobustMQ:
        """
        Overwrite an instance's status.

        The whole status is replaced, never patched. The instance's
        resourceVersion makes the write conditional.

        Args:
            instance: Instance as last read
            status: New status

        Returns:
            Instance as stored after the write

        Raises:
            StatusUpdateError: If the write fails
        """
        body = instance.model_copy(update={"status": status}).to_api()
        try:
            obj = self.custom_objects.replace_namespaced_custom_object_status(
                API_GROUP, API_VERSION, instance.namespace, PLURAL, instance.name, body
            )
        except ApiException as e:
            raise StatusUpdateError(instance.key, e) from e
        logger.debug(f"Wrote status of {instance.key}: phase={status.phase.value if status.phase else None}")
        return RobustMQ.from_api(obj) if obj else instance
