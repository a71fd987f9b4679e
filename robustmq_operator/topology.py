"""Deployment topologies.

A topology describes the shape of an instance's managed resources for one
deployment mode: which workloads exist, which network endpoints front them,
and how ready replicas map onto cluster nodes. The compiler, the config
renderer and the status aggregator all go through the same topology so that
what is compiled, applied and observed cannot drift apart.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Mapping, Optional

from .models import (
    DEFAULT_ALL_IN_ONE_REPLICAS,
    DEFAULT_BROKER_REPLICAS,
    DEFAULT_JOURNAL_REPLICAS,
    DEFAULT_META_REPLICAS,
    JOURNAL_PORT,
    Component,
    DeploymentMode,
    DeploymentStatus,
    Endpoint,
    NodeInfo,
    ResourceKind,
    RobustMQ,
    RobustMQSpec,
    SchedulingSpec,
    ServiceRole,
    StorageSpec,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkloadPlan:
    """One workload of a topology."""

    component: Component
    kind: ResourceKind
    name: str
    label: str  # value of the "component" label
    container_name: str
    roles: tuple[ServiceRole, ...]
    replicas: int
    scheduling: Optional[SchedulingSpec]
    storage: Optional[StorageSpec]  # None for stateless workloads
    headless_service: Optional[str] = None


@dataclass(frozen=True)
class EndpointPlan:
    """One network endpoint of a topology."""

    endpoint: Endpoint
    name: str
    # Component label the service selects on; None selects every pod of the instance.
    selects: Optional[str] = None


def config_map_name(instance: RobustMQ) -> str:
    return f"{instance.name}-config"


def meta_service_name(instance: RobustMQ) -> str:
    return f"{instance.name}-meta-service"


def journal_service_name(instance: RobustMQ) -> str:
    return f"{instance.name}-journal-service"


class Topology(ABC):
    """Shape of the managed resources for one deployment mode."""

    mode: DeploymentMode
    roles: tuple[ServiceRole, ...]

    @abstractmethod
    def workloads(self, instance: RobustMQ) -> list[WorkloadPlan]:
        """Workloads to run, in apply order."""

    @abstractmethod
    def endpoints(self, instance: RobustMQ) -> list[EndpointPlan]:
        """Network endpoints to expose, in apply order."""

    @abstractmethod
    def nodes(
        self,
        instance: RobustMQ,
        deployment_statuses: Mapping[Component, DeploymentStatus],
    ) -> list[NodeInfo]:
        """Synthesize one node per ready replica."""

    def _monitoring_endpoints(self, instance: RobustMQ) -> list[EndpointPlan]:
        if not instance.spec.monitoring.enabled:
            return []
        return [EndpointPlan(Endpoint.PROMETHEUS, f"{instance.name}-prometheus")]


class AllInOneTopology(Topology):
    """Every role runs in one process; one StatefulSet holds all replicas."""

    mode = DeploymentMode.ALL_IN_ONE
    roles = (ServiceRole.META, ServiceRole.BROKER, ServiceRole.JOURNAL)

    def workloads(self, instance: RobustMQ) -> list[WorkloadPlan]:
        scheduling = instance.spec.all_in_one
        replicas = (
            scheduling.replicas_or(DEFAULT_ALL_IN_ONE_REPLICAS)
            if scheduling is not None
            else DEFAULT_ALL_IN_ONE_REPLICAS
        )
        return [
            WorkloadPlan(
                component=Component.ALL_IN_ONE,
                kind=ResourceKind.STATEFUL_SET,
                name=instance.name,
                label="all-in-one",
                container_name="robustmq",
                roles=self.roles,
                replicas=replicas,
                scheduling=scheduling,
                storage=instance.spec.storage,
                headless_service=meta_service_name(instance),
            )
        ]

    def endpoints(self, instance: RobustMQ) -> list[EndpointPlan]:
        name = instance.name
        return [
            EndpointPlan(Endpoint.MQTT, f"{name}-mqtt"),
            EndpointPlan(Endpoint.KAFKA, f"{name}-kafka"),
            EndpointPlan(Endpoint.GRPC, f"{name}-grpc"),
            EndpointPlan(Endpoint.AMQP, f"{name}-amqp"),
            EndpointPlan(Endpoint.META, meta_service_name(instance)),
        ] + self._monitoring_endpoints(instance)

    def nodes(self, instance, deployment_statuses):
        status = deployment_statuses.get(Component.ALL_IN_ONE)
        if status is None:
            return []
        grpc_port = instance.spec.network.grpc.port
        service = meta_service_name(instance)
        return [
            NodeInfo(
                id=f"{instance.name}-{i}",
                roles=list(self.roles),
                address=(
                    f"{instance.name}-{i}.{service}.{instance.namespace}"
                    f".svc.cluster.local:{grpc_port}"
                ),
            )
            for i in range(status.ready_replicas)
        ]


class MicroservicesTopology(Topology):
    """Meta, broker and journal run as independent workloads."""

    mode = DeploymentMode.MICROSERVICES
    # TODO: render a per-workload roles list; every workload currently reads
    # the same ConfigMap and therefore the placeholder ["meta"].
    roles = (ServiceRole.META,)

    def workloads(self, instance: RobustMQ) -> list[WorkloadPlan]:
        services = instance.spec.microservices
        meta = services.meta_service if services else None
        broker = services.broker_service if services else None
        journal = services.journal_service if services else None

        return [
            WorkloadPlan(
                component=Component.META,
                kind=ResourceKind.STATEFUL_SET,
                name=f"{instance.name}-meta",
                label="meta",
                container_name="robustmq-meta",
                roles=(ServiceRole.META,),
                replicas=_replicas(meta, DEFAULT_META_REPLICAS),
                scheduling=meta,
                storage=_storage(instance, meta),
                headless_service=meta_service_name(instance),
            ),
            WorkloadPlan(
                component=Component.BROKER,
                kind=ResourceKind.DEPLOYMENT,
                name=f"{instance.name}-mqtt-broker",
                label="mqtt-broker",
                container_name="robustmq-mqtt-broker",
                roles=(ServiceRole.BROKER,),
                replicas=_replicas(broker, DEFAULT_BROKER_REPLICAS),
                scheduling=broker,
                storage=None,
            ),
            WorkloadPlan(
                component=Component.JOURNAL,
                kind=ResourceKind.STATEFUL_SET,
                name=f"{instance.name}-journal",
                label="journal",
                container_name="robustmq-journal",
                roles=(ServiceRole.JOURNAL,),
                replicas=_replicas(journal, DEFAULT_JOURNAL_REPLICAS),
                scheduling=journal,
                storage=_storage(instance, journal),
                headless_service=journal_service_name(instance),
            ),
        ]

    def endpoints(self, instance: RobustMQ) -> list[EndpointPlan]:
        name = instance.name
        return [
            EndpointPlan(Endpoint.META, meta_service_name(instance), selects="meta"),
            EndpointPlan(Endpoint.MQTT_BROKER, f"{name}-mqtt-broker", selects="mqtt-broker"),
            EndpointPlan(Endpoint.KAFKA, f"{name}-kafka", selects="mqtt-broker"),
            EndpointPlan(Endpoint.AMQP, f"{name}-amqp", selects="mqtt-broker"),
            EndpointPlan(Endpoint.JOURNAL, journal_service_name(instance), selects="journal"),
        ] + self._monitoring_endpoints(instance)

    def nodes(self, instance, deployment_statuses):
        name = instance.name
        namespace = instance.namespace
        grpc_port = instance.spec.network.grpc.port
        nodes: list[NodeInfo] = []

        meta = deployment_statuses.get(Component.META)
        if meta is not None:
            service = meta_service_name(instance)
            nodes.extend(
                NodeInfo(
                    id=f"{name}-meta-{i}",
                    roles=[ServiceRole.META],
                    address=f"{name}-meta-{i}.{service}.{namespace}.svc.cluster.local:{grpc_port}",
                )
                for i in range(meta.ready_replicas)
            )

        broker = deployment_statuses.get(Component.BROKER)
        if broker is not None:
            # Deployment pods have no stable DNS name; the address is a label only.
            nodes.extend(
                NodeInfo(
                    id=f"{name}-broker-{i}",
                    roles=[ServiceRole.BROKER],
                    address=f"{name}-mqtt-broker-{i}",
                )
                for i in range(broker.ready_replicas)
            )

        journal = deployment_statuses.get(Component.JOURNAL)
        if journal is not None:
            service = journal_service_name(instance)
            nodes.extend(
                NodeInfo(
                    id=f"{name}-journal-{i}",
                    roles=[ServiceRole.JOURNAL],
                    address=(
                        f"{name}-journal-{i}.{service}.{namespace}"
                        f".svc.cluster.local:{JOURNAL_PORT}"
                    ),
                )
                for i in range(journal.ready_replicas)
            )

        return nodes


def _replicas(spec: Optional[SchedulingSpec], default: int) -> int:
    return spec.replicas_or(default) if spec is not None else default


def _storage(instance: RobustMQ, spec) -> StorageSpec:
    if spec is not None and spec.storage is not None:
        return spec.storage
    return instance.spec.storage


_TOPOLOGIES: dict[DeploymentMode, Topology] = {
    DeploymentMode.ALL_IN_ONE: AllInOneTopology(),
    DeploymentMode.MICROSERVICES: MicroservicesTopology(),
}


def topology_for(spec: RobustMQSpec) -> Topology:
    """
    Select the topology for a spec.

    Unknown deployment modes fall back to all-in-one rather than failing.

    Args:
        spec: Instance spec

    Returns:
        Topology for the spec's deployment mode
    """
    try:
        mode = DeploymentMode(spec.deployment_mode)
    except ValueError:
        logger.warning(
            f"Unknown deployment mode {spec.deployment_mode!r}, using {DeploymentMode.ALL_IN_ONE.value}"
        )
        mode = DeploymentMode.ALL_IN_ONE
    return _TOPOLOGIES[mode]
