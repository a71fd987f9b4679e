"""Kubernetes client connection."""

import base64
import tempfile
from pathlib import Path
from typing import Optional

from kubernetes import client, config
from kubernetes.client import ApiClient, AppsV1Api, CoreV1Api, CustomObjectsApi
from kubernetes.client.exceptions import ApiException
from pydantic import BaseModel
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential


def is_transient(error: BaseException) -> bool:
    """Server-side or throttling errors worth retrying."""
    return isinstance(error, ApiException) and (
        error.status == 429 or (error.status is not None and error.status >= 500)
    )


class ClusterConfig(BaseModel):
    """How to reach the cluster the operator manages."""

    kubeconfig_path: Optional[str] = None
    kubeconfig_data: Optional[str] = None  # Base64 encoded kubeconfig
    context: Optional[str] = None  # Specific context to use


class ClusterConnection:
    """Represents a connection to a single Kubernetes cluster."""

    def __init__(self, cluster_config: ClusterConfig):
        """
        Initialize cluster connection.

        Args:
            cluster_config: Cluster configuration

        Raises:
            ValueError: If kubeconfig is invalid
        """
        self.config = cluster_config
        self._api_client: Optional[ApiClient] = None
        self._core_v1: Optional[CoreV1Api] = None
        self._apps_v1: Optional[AppsV1Api] = None
        self._custom_objects: Optional[CustomObjectsApi] = None
        self._temp_kubeconfig: Optional[Path] = None

        self._initialize_client()

    def _initialize_client(self):
        """Initialize Kubernetes API client."""
        try:
            if self.config.kubeconfig_data:
                # Decode base64 kubeconfig and write to temp file
                kubeconfig_content = base64.b64decode(self.config.kubeconfig_data)
                with tempfile.NamedTemporaryFile(mode="wb", delete=False) as f:
                    f.write(kubeconfig_content)
                    self._temp_kubeconfig = Path(f.name)
                config.load_kube_config(
                    config_file=str(self._temp_kubeconfig),
                    context=self.config.context,
                )
            elif self.config.kubeconfig_path:
                config.load_kube_config(
                    config_file=str(Path(self.config.kubeconfig_path).expanduser()),
                    context=self.config.context,
                )
            else:
                # Running inside the cluster as the operator's service account
                config.load_incluster_config()

            self._api_client = ApiClient()
            self._core_v1 = CoreV1Api(self._api_client)
            self._apps_v1 = AppsV1Api(self._api_client)
            self._custom_objects = CustomObjectsApi(self._api_client)

        except Exception as e:
            raise ValueError(f"Failed to initialize cluster connection: {e}") from e

    @property
    def core_v1(self) -> CoreV1Api:
        """Get CoreV1Api instance."""
        if not self._core_v1:
            raise RuntimeError("Cluster connection not initialized")
        return self._core_v1

    @property
    def apps_v1(self) -> AppsV1Api:
        """Get AppsV1Api instance."""
        if not self._apps_v1:
            raise RuntimeError("Cluster connection not initialized")
        return self._apps_v1

    @property
    def custom_objects(self) -> CustomObjectsApi:
        """Get CustomObjectsApi instance."""
        if not self._custom_objects:
            raise RuntimeError("Cluster connection not initialized")
        return self._custom_objects

    @property
    def api_client(self) -> ApiClient:
        """Get ApiClient instance."""
        if not self._api_client:
            raise RuntimeError("Cluster connection not initialized")
        return self._api_client

    @retry(
        retry=retry_if_exception(is_transient),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def get_cluster_version(self) -> dict:
        """
        Get Kubernetes cluster version information.

        Called once at startup. Server errors and throttling are retried.

        Returns:
            Version info dict

        Raises:
            ApiException: If unable to get version
        """
        version_info = client.VersionApi(self.api_client).get_code()
        return {
            "major": version_info.major,
            "minor": version_info.minor,
            "git_version": version_info.git_version,
        }

    def close(self):
        """Close the cluster connection and clean up resources."""
        if self._api_client:
            self._api_client.close()
            self._api_client = None

        if self._temp_kubeconfig and self._temp_kubeconfig.exists():
            self._temp_kubeconfig.unlink()
            self._temp_kubeconfig = None

        self._core_v1 = None
        self._apps_v1 = None
        self._custom_objects = None

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
