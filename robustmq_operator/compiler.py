"""Compile a RobustMQ instance into its managed Kubernetes resources."""

import json
from typing import Any, Optional

from kubernetes.client import ApiClient
from kubernetes.client import V1ConfigMap, V1ConfigMapVolumeSource, V1Container, V1ContainerPort
from kubernetes.client import V1Deployment, V1DeploymentSpec, V1EnvVar, V1EnvVarSource
from kubernetes.client import V1HTTPGetAction, V1LabelSelector, V1LocalObjectReference
from kubernetes.client import V1ObjectFieldSelector, V1ObjectMeta, V1OwnerReference
from kubernetes.client import V1PersistentVolumeClaim, V1PersistentVolumeClaimSpec, V1PodSpec
from kubernetes.client import V1PodTemplateSpec, V1Probe, V1ResourceRequirements, V1Service
from kubernetes.client import V1ServicePort, V1ServiceSpec, V1StatefulSet, V1StatefulSetSpec
from kubernetes.client import V1Volume, V1VolumeMount, V1VolumeResourceRequirements

from .models import (
    JOURNAL_PORT,
    LOG_VOLUME_SIZE,
    Component,
    Endpoint,
    ManagedResource,
    OwnerReference,
    ResourceKind,
    RobustMQ,
    StorageSpec,
)
from .renderer import CONFIG_DIR, DATA_DIR, LOG_DIR, render_config_data
from .topology import EndpointPlan, WorkloadPlan, config_map_name, topology_for

APP_LABEL = "robustmq"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY = "robustmq-operator"


class _JSONResponse:
    """Adapter letting ApiClient.deserialize turn plain dicts into client models."""

    def __init__(self, data: Any):
        self.data = json.dumps(data)


_deserializer = ApiClient()


def _to_model(data: Any, klass: str) -> Any:
    if data is None:
        return None
    return _deserializer.deserialize(_JSONResponse(data), klass)


def base_labels(instance: RobustMQ, component: str) -> dict[str, str]:
    """Labels stamped on every managed resource."""
    return {
        "app": APP_LABEL,
        "component": component,
        "instance": instance.name,
        MANAGED_BY_LABEL: MANAGED_BY,
    }


def instance_selector(instance: RobustMQ) -> dict[str, str]:
    """Label selector matching every managed resource of an instance."""
    return {"app": APP_LABEL, "instance": instance.name}


def owner_reference(instance: RobustMQ) -> OwnerReference:
    return OwnerReference(name=instance.name, uid=instance.uid)


def to_v1_owner_reference(owner: OwnerReference) -> V1OwnerReference:
    return V1OwnerReference(
        api_version=owner.api_version,
        kind=owner.kind,
        name=owner.name,
        uid=owner.uid,
        controller=owner.controller,
        block_owner_deletion=owner.block_owner_deletion,
    )


def _metadata(instance: RobustMQ, name: str, labels: dict[str, str]) -> V1ObjectMeta:
    return V1ObjectMeta(
        name=name,
        namespace=instance.namespace,
        labels=dict(labels),
        owner_references=(
            [to_v1_owner_reference(owner_reference(instance))] if instance.uid else None
        ),
    )


def _managed(
    instance: RobustMQ,
    kind: ResourceKind,
    name: str,
    labels: dict[str, str],
    body: Any,
) -> ManagedResource:
    return ManagedResource(
        kind=kind,
        name=name,
        namespace=instance.namespace,
        labels=labels,
        owner=owner_reference(instance),
        body=body,
    )


# ConfigMap


def build_config_map(instance: RobustMQ) -> ManagedResource:
    """Build the ConfigMap carrying the rendered configuration."""
    name = config_map_name(instance)
    labels = base_labels(instance, "config")
    body = V1ConfigMap(
        api_version="v1",
        kind="ConfigMap",
        metadata=_metadata(instance, name, labels),
        data=render_config_data(instance),
    )
    return _managed(instance, ResourceKind.CONFIG_MAP, name, labels, body)


# Services


def _tcp_port(name: str, port: int) -> V1ServicePort:
    return V1ServicePort(name=name, port=port, target_port=port, protocol="TCP")


def _service_ports(instance: RobustMQ, endpoint: Endpoint) -> list[V1ServicePort]:
    network = instance.spec.network
    if endpoint in (Endpoint.MQTT, Endpoint.MQTT_BROKER):
        mqtt = network.mqtt
        return [
            _tcp_port("mqtt-tcp", mqtt.tcp_port),
            _tcp_port("mqtt-tls", mqtt.tls_port),
            _tcp_port("mqtt-ws", mqtt.web_socket_port),
            _tcp_port("mqtt-wss", mqtt.web_socket_tls_port),
        ]
    if endpoint == Endpoint.KAFKA:
        return [_tcp_port("kafka", network.kafka.port)]
    if endpoint in (Endpoint.GRPC, Endpoint.META):
        return [_tcp_port("grpc", network.grpc.port)]
    if endpoint == Endpoint.AMQP:
        return [_tcp_port("amqp", network.amqp.port)]
    if endpoint == Endpoint.JOURNAL:
        return [_tcp_port("journal", JOURNAL_PORT)]
    return [_tcp_port("prometheus", instance.spec.monitoring.prometheus.port)]


def _service_type(instance: RobustMQ, endpoint: Endpoint) -> str:
    network = instance.spec.network
    return {
        Endpoint.MQTT: network.mqtt.service_type,
        Endpoint.MQTT_BROKER: network.mqtt.service_type,
        Endpoint.KAFKA: network.kafka.service_type,
        Endpoint.GRPC: network.grpc.service_type,
        Endpoint.AMQP: network.amqp.service_type,
    }.get(endpoint, "ClusterIP")


_ENDPOINT_COMPONENT_LABEL = {
    Endpoint.MQTT: "mqtt",
    Endpoint.MQTT_BROKER: "mqtt",
    Endpoint.KAFKA: "kafka",
    Endpoint.GRPC: "grpc",
    Endpoint.AMQP: "amqp",
    Endpoint.META: "meta",
    Endpoint.JOURNAL: "journal",
    Endpoint.PROMETHEUS: "prometheus",
}


def build_service(instance: RobustMQ, plan: EndpointPlan) -> ManagedResource:
    """
    Build a Service for one endpoint.

    The meta-service is headless: it gives StatefulSet pods stable DNS names
    for peer discovery.

    Args:
        instance: RobustMQ instance
        plan: Endpoint plan from the topology

    Returns:
        ManagedResource wrapping a V1Service
    """
    labels = base_labels(instance, _ENDPOINT_COMPONENT_LABEL[plan.endpoint])
    selector = instance_selector(instance)
    if plan.selects is not None:
        selector["component"] = plan.selects

    spec = V1ServiceSpec(
        type=_service_type(instance, plan.endpoint),
        selector=selector,
        ports=_service_ports(instance, plan.endpoint),
    )
    if plan.endpoint == Endpoint.META:
        spec.cluster_ip = "None"

    body = V1Service(
        api_version="v1",
        kind="Service",
        metadata=_metadata(instance, plan.name, labels),
        spec=spec,
    )
    return _managed(instance, ResourceKind.SERVICE, plan.name, labels, body)


# Workloads


def _container_port(name: str, port: int) -> V1ContainerPort:
    return V1ContainerPort(name=name, container_port=port, protocol="TCP")


def _mqtt_container_ports(instance: RobustMQ) -> list[V1ContainerPort]:
    mqtt = instance.spec.network.mqtt
    return [
        _container_port("mqtt-tcp", mqtt.tcp_port),
        _container_port("mqtt-tls", mqtt.tls_port),
        _container_port("mqtt-ws", mqtt.web_socket_port),
        _container_port("mqtt-wss", mqtt.web_socket_tls_port),
    ]


def _container_ports(instance: RobustMQ, plan: WorkloadPlan) -> list[V1ContainerPort]:
    network = instance.spec.network
    if plan.component == Component.META:
        return [_container_port("grpc", network.grpc.port)]
    if plan.component == Component.JOURNAL:
        return [_container_port("journal", JOURNAL_PORT)]
    if plan.component == Component.BROKER:
        return _mqtt_container_ports(instance)

    ports = _mqtt_container_ports(instance) + [
        _container_port("kafka", network.kafka.port),
        _container_port("grpc", network.grpc.port),
        _container_port("amqp", network.amqp.port),
    ]
    if instance.spec.monitoring.enabled:
        ports.append(_container_port("prometheus", instance.spec.monitoring.prometheus.port))
    return ports


def _env(plan: WorkloadPlan) -> list[V1EnvVar]:
    env = [V1EnvVar(name="ROBUSTMQ_ROLES", value=",".join(role.value for role in plan.roles))]
    if plan.component == Component.ALL_IN_ONE:
        env.append(V1EnvVar(name="RUST_LOG", value="info"))
    elif plan.component == Component.META:
        env.append(
            V1EnvVar(
                name="POD_NAME",
                value_from=V1EnvVarSource(
                    field_ref=V1ObjectFieldSelector(field_path="metadata.name")
                ),
            )
        )
    return env


def _volume_mounts(plan: WorkloadPlan) -> list[V1VolumeMount]:
    mounts = [V1VolumeMount(name="config", mount_path=CONFIG_DIR, read_only=True)]
    if plan.storage is not None:
        mounts.append(V1VolumeMount(name="data", mount_path=DATA_DIR))
    if plan.component == Component.ALL_IN_ONE:
        mounts.append(V1VolumeMount(name="logs", mount_path=LOG_DIR))
    return mounts


def _health_probe(port: int, initial_delay: int, period: int) -> V1Probe:
    return V1Probe(
        http_get=V1HTTPGetAction(path="/health", port=port),
        initial_delay_seconds=initial_delay,
        period_seconds=period,
    )


def build_pod_spec(instance: RobustMQ, plan: WorkloadPlan) -> V1PodSpec:
    """
    Build the pod spec of a workload.

    Args:
        instance: RobustMQ instance
        plan: Workload plan from the topology

    Returns:
        V1PodSpec
    """
    image = instance.spec.image
    container = V1Container(
        name=plan.container_name,
        image=image.reference,
        image_pull_policy=image.pull_policy,
        args=[f"--conf={CONFIG_DIR}/server.toml"],
        ports=_container_ports(instance, plan),
        volume_mounts=_volume_mounts(plan),
        env=_env(plan),
    )

    if plan.component == Component.ALL_IN_ONE:
        ws_port = instance.spec.network.mqtt.web_socket_port
        container.liveness_probe = _health_probe(ws_port, 30, 30)
        container.readiness_probe = _health_probe(ws_port, 10, 10)

    pod_spec = V1PodSpec(
        containers=[container],
        volumes=[
            V1Volume(
                name="config",
                config_map=V1ConfigMapVolumeSource(name=config_map_name(instance)),
            )
        ],
        image_pull_secrets=[
            V1LocalObjectReference(name=secret.name) for secret in image.pull_secrets
        ]
        or None,
    )

    scheduling = plan.scheduling
    if scheduling is not None:
        if scheduling.resources:
            container.resources = V1ResourceRequirements(**scheduling.resources)
        pod_spec.node_selector = dict(scheduling.node_selector) or None
        pod_spec.affinity = _to_model(scheduling.affinity, "V1Affinity")
        pod_spec.tolerations = _to_model(scheduling.tolerations, "list[V1Toleration]") or None

    return pod_spec


def _claim(name: str, size: str, access_modes: list[str], storage_class: Optional[str]):
    return V1PersistentVolumeClaim(
        metadata=V1ObjectMeta(name=name),
        spec=V1PersistentVolumeClaimSpec(
            access_modes=list(access_modes),
            resources=V1VolumeResourceRequirements(requests={"storage": size}),
            storage_class_name=storage_class,
        ),
    )


def build_volume_claim_templates(
    plan: WorkloadPlan, storage: StorageSpec
) -> list[V1PersistentVolumeClaim]:
    """Data claim sized from storage; the all-in-one workload also gets a logs claim."""
    templates = [_claim("data", storage.size, storage.access_modes, storage.storage_class)]
    if plan.component == Component.ALL_IN_ONE:
        templates.append(
            _claim("logs", LOG_VOLUME_SIZE, ["ReadWriteOnce"], storage.storage_class)
        )
    return templates


def _selector_labels(instance: RobustMQ, plan: WorkloadPlan) -> dict[str, str]:
    selector = instance_selector(instance)
    if plan.component != Component.ALL_IN_ONE:
        selector["component"] = plan.label
    return selector


def build_workload(instance: RobustMQ, plan: WorkloadPlan) -> ManagedResource:
    """
    Build the StatefulSet or Deployment for a workload plan.

    Args:
        instance: RobustMQ instance
        plan: Workload plan from the topology

    Returns:
        ManagedResource wrapping a V1StatefulSet or V1Deployment
    """
    labels = base_labels(instance, plan.label)
    template = V1PodTemplateSpec(
        metadata=V1ObjectMeta(labels=dict(labels)),
        spec=build_pod_spec(instance, plan),
    )
    selector = V1LabelSelector(match_labels=_selector_labels(instance, plan))
    metadata = _metadata(instance, plan.name, labels)

    if plan.kind == ResourceKind.STATEFUL_SET:
        body = V1StatefulSet(
            api_version="apps/v1",
            kind="StatefulSet",
            metadata=metadata,
            spec=V1StatefulSetSpec(
                replicas=plan.replicas,
                service_name=plan.headless_service,
                selector=selector,
                template=template,
                volume_claim_templates=build_volume_claim_templates(plan, plan.storage),
            ),
        )
    else:
        body = V1Deployment(
            api_version="apps/v1",
            kind="Deployment",
            metadata=metadata,
            spec=V1DeploymentSpec(
                replicas=plan.replicas,
                selector=selector,
                template=template,
            ),
        )
    return _managed(instance, plan.kind, plan.name, labels, body)


def compile_resources(instance: RobustMQ) -> list[ManagedResource]:
    """
    Compile an instance into its ordered list of managed resources.

    The result depends only on the instance, so two calls with the same
    spec produce equal bodies.

    Args:
        instance: RobustMQ instance

    Returns:
        ConfigMap first, then Services, then workloads
    """
    topology = topology_for(instance.spec)
    resources = [build_config_map(instance)]
    resources.extend(build_service(instance, plan) for plan in topology.endpoints(instance))
    resources.extend(build_workload(instance, plan) for plan in topology.workloads(instance))
    return resources
