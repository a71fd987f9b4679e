"""RobustMQ custom resource and managed resource models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator
from pydantic.alias_generators import to_camel

API_GROUP = "robustmq.io"
API_VERSION = "v1alpha1"
KIND = "RobustMQ"
PLURAL = "robustmqs"

DEFAULT_ALL_IN_ONE_REPLICAS = 1
DEFAULT_META_REPLICAS = 3
DEFAULT_BROKER_REPLICAS = 2
DEFAULT_JOURNAL_REPLICAS = 3

JOURNAL_PORT = 1771
LOG_VOLUME_SIZE = "5Gi"


class CamelModel(BaseModel):
    """Base model that reads and writes the custom resource's camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class DeploymentMode(str, Enum):
    """How RobustMQ services are laid out."""

    ALL_IN_ONE = "AllInOne"
    MICROSERVICES = "Microservices"


class ServiceRole(str, Enum):
    """Role served by a RobustMQ node."""

    META = "meta"
    BROKER = "broker"
    JOURNAL = "journal"


class Phase(str, Enum):
    """Coarse lifecycle phase of an instance."""

    INITIALIZING = "Initializing"
    RUNNING = "Running"
    FAILED = "Failed"
    UPDATING = "Updating"


class ConditionType(str, Enum):
    """Condition types written to status."""

    READY = "Ready"
    CONFIG_MAP_READY = "ConfigMapReady"
    SERVICE_READY = "ServiceReady"


class Component(str, Enum):
    """Workload components, used as keys of ``deploymentStatuses``."""

    ALL_IN_ONE = "all-in-one"
    META = "meta-service"
    BROKER = "mqtt-broker"
    JOURNAL = "journal-service"


class Endpoint(str, Enum):
    """Network endpoints, used as keys of ``serviceStatuses``."""

    MQTT = "mqtt"
    KAFKA = "kafka"
    GRPC = "grpc"
    AMQP = "amqp"
    META = "meta-service"
    MQTT_BROKER = "mqtt-broker"
    JOURNAL = "journal-service"
    PROMETHEUS = "prometheus"


class ResourceKind(str, Enum):
    """Kubernetes kinds created by the operator."""

    STATEFUL_SET = "StatefulSet"
    DEPLOYMENT = "Deployment"
    SERVICE = "Service"
    CONFIG_MAP = "ConfigMap"


# Spec


class LocalObjectReference(CamelModel):
    name: str


class ImageSpec(CamelModel):
    """Container image configuration."""

    repository: str = "robustmq/robustmq"
    tag: str = "latest"
    pull_policy: str = "IfNotPresent"
    pull_secrets: list[LocalObjectReference] = Field(default_factory=list)

    @property
    def reference(self) -> str:
        return f"{self.repository}:{self.tag}"


class SchedulingSpec(CamelModel):
    """Sizing and scheduling constraints shared by every workload spec."""

    replicas: Optional[int] = None
    resources: dict[str, Any] = Field(default_factory=dict)
    node_selector: dict[str, str] = Field(default_factory=dict)
    affinity: Optional[dict[str, Any]] = None
    tolerations: list[dict[str, Any]] = Field(default_factory=list)

    def replicas_or(self, default: int) -> int:
        """Return the configured replica count, or ``default`` when unset."""
        if self.replicas is None or self.replicas <= 0:
            return default
        return self.replicas


class AllInOneSpec(SchedulingSpec):
    """Configuration for the all-in-one workload."""


class StorageSpec(CamelModel):
    """Persistent volume configuration."""

    storage_class: Optional[str] = None
    size: str = "10Gi"
    access_modes: list[str] = Field(default_factory=lambda: ["ReadWriteOnce"])


class ServiceStorageSpec(StorageSpec):
    """Per-service storage override."""

    additional_paths: list[str] = Field(default_factory=list)


class ServiceSpec(SchedulingSpec):
    """Configuration for one microservice workload."""

    storage: Optional[ServiceStorageSpec] = None


class MicroservicesSpec(CamelModel):
    """Configuration for the microservices topology."""

    meta_service: ServiceSpec = Field(default_factory=ServiceSpec)
    broker_service: ServiceSpec = Field(default_factory=ServiceSpec)
    journal_service: ServiceSpec = Field(default_factory=ServiceSpec)


class MQTTNetworkSpec(CamelModel):
    tcp_port: int = 1883
    tls_port: int = 1885
    web_socket_port: int = 8083
    web_socket_tls_port: int = Field(default=8085, alias="webSocketTLSPort")
    service_type: str = "ClusterIP"


class KafkaNetworkSpec(CamelModel):
    port: int = 9092
    service_type: str = "ClusterIP"


class GRPCNetworkSpec(CamelModel):
    port: int = 1228
    service_type: str = "ClusterIP"


class AMQPNetworkSpec(CamelModel):
    port: int = 5672
    service_type: str = "ClusterIP"


class NetworkSpec(CamelModel):
    """Ports and exposure per protocol."""

    mqtt: MQTTNetworkSpec = Field(default_factory=MQTTNetworkSpec)
    kafka: KafkaNetworkSpec = Field(default_factory=KafkaNetworkSpec)
    grpc: GRPCNetworkSpec = Field(default_factory=GRPCNetworkSpec)
    amqp: AMQPNetworkSpec = Field(default_factory=AMQPNetworkSpec)


class PrometheusSpec(CamelModel):
    enable: bool = True
    port: int = 9091
    model: str = "pull"


class ServiceMonitorSpec(CamelModel):
    enabled: bool = True
    labels: dict[str, str] = Field(default_factory=dict)
    interval: str = "30s"


class MonitoringSpec(CamelModel):
    """Metrics exposure."""

    enabled: bool = True
    prometheus: PrometheusSpec = Field(default_factory=PrometheusSpec)
    service_monitor: ServiceMonitorSpec = Field(default_factory=ServiceMonitorSpec)


class CASpec(CamelModel):
    secret_name: Optional[str] = None
    auto_generate: bool = False


class TLSSpec(CamelModel):
    enabled: bool = False
    secret_name: Optional[str] = None
    ca: CASpec = Field(default_factory=CASpec)


class AuthSpec(CamelModel):
    default_user: str = "admin"
    password_secret: Optional[str] = None
    storage_type: str = "placement"


class SecuritySpec(CamelModel):
    tls: TLSSpec = Field(default_factory=TLSSpec)
    auth: AuthSpec = Field(default_factory=AuthSpec)


class ConfigSpec(CamelModel):
    """Configuration overrides passed through to the rendered ConfigMap."""

    additional: dict[str, str] = Field(default_factory=dict)
    config_map_name: Optional[str] = None


class RobustMQSpec(CamelModel):
    """Desired state of a RobustMQ cluster."""

    # Kept as a plain string so unknown modes survive parsing; see topology_for().
    deployment_mode: str = DeploymentMode.ALL_IN_ONE.value
    image: ImageSpec = Field(default_factory=ImageSpec)
    all_in_one: Optional[AllInOneSpec] = None
    microservices: Optional[MicroservicesSpec] = None
    storage: StorageSpec = Field(default_factory=StorageSpec)
    network: NetworkSpec = Field(default_factory=NetworkSpec)
    monitoring: MonitoringSpec = Field(default_factory=MonitoringSpec)
    security: SecuritySpec = Field(default_factory=SecuritySpec)
    config: ConfigSpec = Field(default_factory=ConfigSpec)


# Status


def format_timestamp(value: datetime) -> str:
    """Format a datetime the way the Kubernetes API expects (RFC 3339, UTC)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class Condition(CamelModel):
    """A named health signal."""

    type: str
    status: str
    reason: str
    message: str = ""
    last_transition_time: datetime
    observed_generation: Optional[int] = None

    @field_serializer("last_transition_time")
    def _serialize_time(self, value: datetime) -> str:
        return format_timestamp(value)


class DeploymentStatus(CamelModel):
    replicas: int = 0
    ready_replicas: int = 0
    available_replicas: int = 0


class ServiceStatus(CamelModel):
    cluster_ip: Optional[str] = Field(default=None, alias="clusterIP")
    external_ips: list[str] = Field(default_factory=list, alias="externalIPs")
    load_balancer_ingress: list[dict[str, Any]] = Field(default_factory=list)


class NodeInfo(CamelModel):
    """A synthesized cluster node, one per ready replica."""

    id: str
    roles: list[ServiceRole]
    address: str
    status: str = "Running"


class ClusterInfo(CamelModel):
    cluster_name: Optional[str] = None
    nodes: list[NodeInfo] = Field(default_factory=list)
    # Display hint only: the first node carrying the meta role, not a
    # consensus-derived leader. Nothing may treat it as authoritative.
    meta_leader: Optional[str] = None


class RobustMQStatus(CamelModel):
    """Observed state, owned and fully rewritten by the operator."""

    phase: Optional[Phase] = None
    conditions: list[Condition] = Field(default_factory=list)
    deployment_statuses: dict[Component, DeploymentStatus] = Field(default_factory=dict)
    service_statuses: dict[Endpoint, ServiceStatus] = Field(default_factory=dict)
    cluster_info: ClusterInfo = Field(default_factory=ClusterInfo)

    @field_validator("phase", mode="before")
    @classmethod
    def _unknown_phase_as_unset(cls, value: Any) -> Any:
        # Phases written by anything else are treated as never observed.
        if value is None or isinstance(value, Phase):
            return value
        try:
            return Phase(value)
        except ValueError:
            return None

    def to_api(self) -> dict[str, Any]:
        """Serialize to the JSON shape stored in the status subresource."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class RobustMQ(BaseModel):
    """One RobustMQ custom resource."""

    name: str
    namespace: str = "default"
    uid: Optional[str] = None
    generation: Optional[int] = None
    resource_version: Optional[str] = None
    labels: dict[str, str] = Field(default_factory=dict)
    spec: RobustMQSpec = Field(default_factory=RobustMQSpec)
    status: RobustMQStatus = Field(default_factory=RobustMQStatus)

    @classmethod
    def from_api(cls, obj: dict[str, Any]) -> "RobustMQ":
        """Build an instance from a custom object returned by the API."""
        metadata = obj.get("metadata") or {}
        return cls(
            name=metadata["name"],
            namespace=metadata.get("namespace", "default"),
            uid=metadata.get("uid"),
            generation=metadata.get("generation"),
            resource_version=metadata.get("resourceVersion"),
            labels=metadata.get("labels") or {},
            spec=RobustMQSpec.model_validate(obj.get("spec") or {}),
            status=RobustMQStatus.model_validate(obj.get("status") or {}),
        )

    def to_api(self) -> dict[str, Any]:
        """Serialize back to a custom object body (used for status writes)."""
        metadata: dict[str, Any] = {"name": self.name, "namespace": self.namespace}
        if self.resource_version:
            metadata["resourceVersion"] = self.resource_version
        return {
            "apiVersion": f"{API_GROUP}/{API_VERSION}",
            "kind": KIND,
            "metadata": metadata,
            "spec": self.spec.model_dump(mode="json", by_alias=True, exclude_none=True),
            "status": self.status.to_api(),
        }

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"


# Managed resources


class OwnerReference(BaseModel):
    """Controller back-reference from a managed resource to its instance."""

    api_version: str = f"{API_GROUP}/{API_VERSION}"
    kind: str = KIND
    name: str
    uid: Optional[str] = None
    controller: bool = True
    block_owner_deletion: bool = True


class ManagedResource(BaseModel):
    """A compiled child resource, recomputed on every reconciliation."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    kind: ResourceKind
    name: str
    namespace: str
    labels: dict[str, str] = Field(default_factory=dict)
    owner: OwnerReference
    body: Any  # kubernetes.client model (V1StatefulSet, V1Service, ...)


class WatchEvent(BaseModel):
    """Kubernetes watch event."""

    event_type: str  # ADDED, MODIFIED, DELETED, ERROR
    resource_type: str
    name: str
    namespace: str
    labels: dict[str, str] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
