"""Derive an instance's status from the live state of its managed resources."""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from .cluster import ClusterConnection
from .managers import (
    DeploymentManager,
    ResourceManager,
    ServiceManager,
    StatefulSetManager,
    build_managers,
)
from .models import (
    ClusterInfo,
    Component,
    Condition,
    ConditionType,
    DeploymentStatus,
    Endpoint,
    NodeInfo,
    Phase,
    ResourceKind,
    RobustMQ,
    RobustMQStatus,
    ServiceRole,
    ServiceStatus,
)
from .renderer import resolve_cluster_name
from .topology import config_map_name, topology_for

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    # The API stores whole seconds; truncating keeps in-memory and stored values equal.
    return datetime.now(timezone.utc).replace(microsecond=0)


def derive_phase(total_replicas: int, ready_replicas: int) -> Phase:
    """
    Phase from aggregate replica counts.

    Re-evaluated from scratch on every reconciliation; there is no terminal
    phase.

    Args:
        total_replicas: Sum of reported replicas across all components
        ready_replicas: Sum of ready replicas across all components

    Returns:
        Phase
    """
    if total_replicas == 0:
        return Phase.INITIALIZING
    if ready_replicas == 0:
        return Phase.FAILED
    if ready_replicas < total_replicas:
        return Phase.UPDATING
    return Phase.RUNNING


def aggregate_phase(deployment_statuses: dict[Component, DeploymentStatus]) -> Phase:
    total = sum(status.replicas for status in deployment_statuses.values())
    ready = sum(status.ready_replicas for status in deployment_statuses.values())
    return derive_phase(total, ready)


def find_meta_leader(nodes: list[NodeInfo]) -> Optional[str]:
    """
    First node, in iteration order, that carries the meta role.

    This is a display hint for humans, not the leader elected by the meta
    service's consensus group. No code path may rely on it.
    """
    for node in nodes:
        if ServiceRole.META in node.roles:
            return node.id
    return None


def set_condition(
    conditions: list[Condition],
    condition: Condition,
) -> list[Condition]:
    """
    Upsert a condition by type.

    ``last_transition_time`` moves only when the condition's status changes;
    otherwise the previous timestamp is kept so no-op reconciliations do not
    churn it.

    Args:
        conditions: Existing conditions (not modified)
        condition: New observation

    Returns:
        New condition list, order preserved, new types appended
    """
    result = list(conditions)
    for i, existing in enumerate(result):
        if existing.type != condition.type:
            continue
        if existing.status == condition.status:
            condition = condition.model_copy(
                update={"last_transition_time": existing.last_transition_time}
            )
        result[i] = condition
        return result
    result.append(condition)
    return result


def build_conditions(
    previous: list[Condition],
    phase: Phase,
    config_map_found: bool,
    services_found: bool,
    generation: Optional[int],
    now: datetime,
) -> list[Condition]:
    """Ready, ConfigMapReady and ServiceReady conditions for this observation."""
    if phase == Phase.RUNNING:
        ready = Condition(
            type=ConditionType.READY.value,
            status="True",
            reason="AllComponentsReady",
            message="All RobustMQ components are ready",
            last_transition_time=now,
            observed_generation=generation,
        )
    else:
        ready = Condition(
            type=ConditionType.READY.value,
            status="False",
            reason=phase.value,
            message=f"RobustMQ is in {phase.value} phase",
            last_transition_time=now,
            observed_generation=generation,
        )

    config_map = Condition(
        type=ConditionType.CONFIG_MAP_READY.value,
        status="True" if config_map_found else "False",
        reason="ConfigMapCreated" if config_map_found else "ConfigMapMissing",
        message=(
            "ConfigMap has been created successfully"
            if config_map_found
            else "ConfigMap does not exist yet"
        ),
        last_transition_time=now,
        observed_generation=generation,
    )

    services = Condition(
        type=ConditionType.SERVICE_READY.value,
        status="True" if services_found else "False",
        reason="ServicesCreated" if services_found else "ServicesMissing",
        message=(
            "All services have been created successfully"
            if services_found
            else "Some services do not exist yet"
        ),
        last_transition_time=now,
        observed_generation=generation,
    )

    conditions = previous
    for condition in (ready, config_map, services):
        conditions = set_condition(conditions, condition)
    return conditions


class StatusAggregator:
    """
    Reads back every resource the compiler would produce and derives status.

    Resources are looked up by their predictable names. A missing resource
    yields a zero-value entry, never an error.
    """

    def __init__(
        self,
        cluster: ClusterConnection,
        managers: Optional[dict[ResourceKind, ResourceManager]] = None,
        clock: Clock = utcnow,
    ):
        """
        Initialize status aggregator.

        Args:
            cluster: Cluster connection
            managers: Per-kind managers (built from the cluster by default)
            clock: Source of condition timestamps
        """
        self.cluster = cluster
        self.managers = managers or build_managers(cluster)
        self.clock = clock

    def _workload_status(self, kind: ResourceKind, name: str, namespace: str) -> DeploymentStatus:
        live = self.managers[kind].get(name, namespace)
        if kind == ResourceKind.STATEFUL_SET:
            return StatefulSetManager.replica_status(live)
        return DeploymentManager.replica_status(live)

    def aggregate(self, instance: RobustMQ) -> RobustMQStatus:
        """
        Build the full status of an instance.

        Args:
            instance: RobustMQ instance with its previous status

        Returns:
            New RobustMQStatus to overwrite the stored one

        Raises:
            ApiException: If a read fails for any reason other than not-found
        """
        topology = topology_for(instance.spec)
        namespace = instance.namespace

        deployment_statuses: dict[Component, DeploymentStatus] = {}
        for plan in topology.workloads(instance):
            deployment_statuses[plan.component] = self._workload_status(
                plan.kind, plan.name, namespace
            )

        service_statuses: dict[Endpoint, ServiceStatus] = {}
        services_found = True
        for plan in topology.endpoints(instance):
            live = self.managers[ResourceKind.SERVICE].get(plan.name, namespace)
            services_found = services_found and live is not None
            service_statuses[plan.endpoint] = ServiceManager.service_status(live)

        config_map = self.managers[ResourceKind.CONFIG_MAP].get(
            config_map_name(instance), namespace
        )

        nodes = topology.nodes(instance, deployment_statuses)
        phase = aggregate_phase(deployment_statuses)
        conditions = build_conditions(
            instance.status.conditions,
            phase,
            config_map_found=config_map is not None,
            services_found=services_found,
            generation=instance.generation,
            now=self.clock(),
        )

        logger.debug(f"{instance.key} phase={phase.value} nodes={len(nodes)}")

        return RobustMQStatus(
            phase=phase,
            conditions=conditions,
            deployment_statuses=deployment_statuses,
            service_statuses=service_statuses,
            cluster_info=ClusterInfo(
                cluster_name=resolve_cluster_name(instance),
                nodes=nodes,
                meta_leader=find_meta_leader(nodes),
            ),
        )
