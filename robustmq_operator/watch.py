"""Kubernetes watches that trigger reconciliation."""

import logging
import threading
from typing import Any, Callable, Optional

from kubernetes import watch as k8s_watch
from kubernetes.client.exceptions import ApiException

from .cluster import ClusterConnection
from .compiler import APP_LABEL
from .models import API_GROUP, API_VERSION, PLURAL, ResourceKind, WatchEvent

logger = logging.getLogger(__name__)

INSTANCE_RESOURCE = "robustmq"
OWNED_SELECTOR = f"app={APP_LABEL}"


class ResourceWatcher:
    """Watches RobustMQ instances and the resources they own."""

    def __init__(
        self,
        cluster: ClusterConnection,
        namespace: Optional[str] = None,
        timeout_seconds: Optional[int] = None,
    ):
        """
        Initialize resource watcher.

        Args:
            cluster: Cluster connection
            namespace: Namespace to watch, or None for all namespaces
            timeout_seconds: Server-side timeout of each watch request
        """
        self.cluster = cluster
        self.namespace = namespace
        self.timeout_seconds = timeout_seconds
        self._handlers: dict[str, list[Callable[[WatchEvent], None]]] = {}
        self._watches: list[k8s_watch.Watch] = []
        self._lock = threading.Lock()
        self._stopped = threading.Event()

    def register_handler(
        self,
        resource_type: str,
        handler: Callable[[WatchEvent], None],
    ) -> None:
        """
        Register a handler for watch events.

        Args:
            resource_type: "robustmq" or a managed kind name (e.g. "StatefulSet")
            handler: Callback function that takes WatchEvent
        """
        self._handlers.setdefault(resource_type, []).append(handler)

    def _emit_event(self, event: WatchEvent) -> None:
        """
        Emit a watch event to registered handlers.

        Args:
            event: Watch event to emit
        """
        for handler in self._handlers.get(event.resource_type, []):
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Error in watch event handler: {e}", exc_info=True)

    def _list_function(self, resource_type: str) -> tuple[Callable, dict[str, Any]]:
        """Pick the list call backing a watch, namespaced or cluster-wide."""
        ns = self.namespace
        if resource_type == INSTANCE_RESOURCE:
            if ns:
                return self.cluster.custom_objects.list_namespaced_custom_object, {
                    "group": API_GROUP,
                    "version": API_VERSION,
                    "namespace": ns,
                    "plural": PLURAL,
                }
            return self.cluster.custom_objects.list_cluster_custom_object, {
                "group": API_GROUP,
                "version": API_VERSION,
                "plural": PLURAL,
            }

        apps_v1 = self.cluster.apps_v1
        core_v1 = self.cluster.core_v1
        functions = {
            ResourceKind.STATEFUL_SET.value: (
                apps_v1.list_namespaced_stateful_set,
                apps_v1.list_stateful_set_for_all_namespaces,
            ),
            ResourceKind.DEPLOYMENT.value: (
                apps_v1.list_namespaced_deployment,
                apps_v1.list_deployment_for_all_namespaces,
            ),
            ResourceKind.SERVICE.value: (
                core_v1.list_namespaced_service,
                core_v1.list_service_for_all_namespaces,
            ),
            ResourceKind.CONFIG_MAP.value: (
                core_v1.list_namespaced_config_map,
                core_v1.list_config_map_for_all_namespaces,
            ),
        }
        namespaced, cluster_wide = functions[resource_type]
        if ns:
            return namespaced, {"namespace": ns, "label_selector": OWNED_SELECTOR}
        return cluster_wide, {"label_selector": OWNED_SELECTOR}

    @staticmethod
    def to_event(resource_type: str, raw: dict[str, Any]) -> WatchEvent:
        """Convert a raw watch stream item into a WatchEvent."""
        obj = raw["object"]
        if isinstance(obj, dict):
            metadata = obj.get("metadata") or {}
            name = metadata.get("name", "")
            namespace = metadata.get("namespace", "")
            labels = metadata.get("labels") or {}
        else:
            name = obj.metadata.name
            namespace = obj.metadata.namespace
            labels = obj.metadata.labels or {}
        return WatchEvent(
            event_type=raw["type"],
            resource_type=resource_type,
            name=name,
            namespace=namespace,
            labels=labels,
        )

    def watch(self, resource_type: str) -> None:
        """
        Watch one resource type until stopped.

        Blocks; run it in a thread. Expired watches (410) and server-side
        timeouts are restarted.

        Args:
            resource_type: "robustmq" or a managed kind name
        """
        list_function, kwargs = self._list_function(resource_type)
        logger.info(
            f"Starting watch on {resource_type} in "
            f"{'namespace ' + self.namespace if self.namespace else 'all namespaces'}"
        )

        while not self._stopped.is_set():
            stream = k8s_watch.Watch()
            with self._lock:
                self._watches.append(stream)
            try:
                for raw in stream.stream(
                    list_function, timeout_seconds=self.timeout_seconds, **kwargs
                ):
                    if raw.get("type") == "ERROR":
                        logger.warning(f"Watch on {resource_type} returned an error event")
                        break
                    self._emit_event(self.to_event(resource_type, raw))
            except ApiException as e:
                if e.status == 410:  # Resource version too old
                    logger.warning(f"Watch on {resource_type} expired, restarting...")
                    continue
                logger.error(f"Error watching {resource_type}: {e}", exc_info=True)
                raise
            finally:
                with self._lock:
                    self._watches.remove(stream)

    def stop(self) -> None:
        """Stop all active watches."""
        self._stopped.set()
        with self._lock:
            for stream in self._watches:
                stream.stop()
