"""Converge live Kubernetes resources toward the compiled desired state."""

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from kubernetes.client.exceptions import ApiException

from .cluster import ClusterConnection
from .compiler import instance_selector, to_v1_owner_reference
from .exceptions import ApplyError, OwnershipError
from .managers import ResourceManager, build_managers
from .models import ManagedResource, OwnerReference, ResourceKind, RobustMQ

logger = logging.getLogger(__name__)


@dataclass
class ApplyReport:
    """What one convergence pass did."""

    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    pruned: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.created or self.updated or self.pruned)


def _controller_of(obj: Any) -> Optional[Any]:
    refs = getattr(obj.metadata, "owner_references", None) or []
    for ref in refs:
        if ref.controller:
            return ref
    return None


def set_controller_reference(owner: OwnerReference, obj: Any, kind: ResourceKind) -> None:
    """
    Make ``owner`` the controller of ``obj``.

    Existing non-controller owner references on ``obj`` are kept.

    Args:
        owner: Owner reference of the instance
        obj: Client model (desired or live)
        kind: Kind of ``obj``, for error reporting

    Raises:
        OwnershipError: If the owner has no uid or another object already
            controls ``obj``
    """
    name = obj.metadata.name
    if not owner.uid:
        raise OwnershipError(kind.value, name, f"owner {owner.kind} {owner.name} has no uid")

    current = _controller_of(obj)
    if current is not None and current.uid != owner.uid:
        raise OwnershipError(
            kind.value,
            name,
            f"already controlled by {current.kind} {current.name} ({current.uid})",
        )

    refs = [
        ref
        for ref in (obj.metadata.owner_references or [])
        if ref.uid != owner.uid
    ]
    refs.append(to_v1_owner_reference(owner))
    obj.metadata.owner_references = refs


def is_controlled_by(obj: Any, uid: Optional[str]) -> bool:
    current = _controller_of(obj)
    return current is not None and uid is not None and current.uid == uid


class ConvergenceEngine:
    """
    Applies compiled resources with create-or-update semantics.

    For each resource: read by name; create when absent; otherwise merge the
    operator-owned fields onto the live object and replace it. The first
    failure aborts the rest of the batch. Nothing is rolled back and nothing
    is retried here: the next reconciliation recomputes and reapplies.
    """

    def __init__(
        self,
        cluster: ClusterConnection,
        managers: Optional[dict[ResourceKind, ResourceManager]] = None,
    ):
        """
        Initialize convergence engine.

        Args:
            cluster: Cluster connection
            managers: Per-kind managers (built from the cluster by default)
        """
        self.cluster = cluster
        self.managers = managers or build_managers(cluster)

    def apply(self, resources: Iterable[ManagedResource]) -> ApplyReport:
        """
        Apply resources in order.

        Args:
            resources: Compiled resources

        Returns:
            ApplyReport of the pass

        Raises:
            OwnershipError: If ownership cannot be established for a resource
            ApplyError: If reading, creating or updating a resource fails
        """
        report = ApplyReport()
        for resource in resources:
            self._apply_one(resource, report)
        return report

    def _apply_one(self, resource: ManagedResource, report: ApplyReport) -> None:
        manager = self.managers[resource.kind]
        label = f"{resource.kind.value} {resource.namespace}/{resource.name}"

        set_controller_reference(resource.owner, resource.body, resource.kind)

        try:
            live = manager.get(resource.name, resource.namespace)
        except ApiException as e:
            raise ApplyError(resource.kind.value, resource.name, "read", e) from e

        if live is None:
            logger.info(f"Creating {label}")
            try:
                manager.create(resource.body)
            except ApiException as e:
                raise ApplyError(resource.kind.value, resource.name, "create", e) from e
            report.created.append(resource.name)
            return

        had_owner = is_controlled_by(live, resource.owner.uid)
        set_controller_reference(resource.owner, live, resource.kind)

        if had_owner and not manager.differs(live, resource.body):
            logger.debug(f"{label} is up to date")
            report.unchanged.append(resource.name)
            return

        manager.merge(live, resource.body)
        logger.info(f"Updating {label}")
        try:
            manager.replace(live)
        except ApiException as e:
            raise ApplyError(resource.kind.value, resource.name, "update", e) from e
        report.updated.append(resource.name)

    def prune(
        self,
        instance: RobustMQ,
        desired: Iterable[ManagedResource],
        report: Optional[ApplyReport] = None,
    ) -> ApplyReport:
        """
        Delete resources this instance controls that are no longer desired.

        Only objects labelled for the instance and whose controller owner
        reference carries the instance's uid are candidates, so resources
        created by other actors are never touched.

        Args:
            instance: RobustMQ instance
            desired: Resources of the current desired state
            report: Report to extend (a new one by default)

        Returns:
            ApplyReport with ``pruned`` filled in

        Raises:
            ApplyError: If listing or deleting fails
        """
        report = report or ApplyReport()
        keep = {(resource.kind, resource.name) for resource in desired}

        for kind, manager in self.managers.items():
            try:
                live_objects = manager.list(instance.namespace, instance_selector(instance))
            except ApiException as e:
                raise ApplyError(kind.value, instance.name, "list", e) from e

            for obj in live_objects:
                name = obj.metadata.name
                if (kind, name) in keep or not is_controlled_by(obj, instance.uid):
                    continue
                logger.info(f"Deleting orphaned {kind.value} {instance.namespace}/{name}")
                try:
                    manager.delete(name, instance.namespace)
                except ApiException as e:
                    raise ApplyError(kind.value, name, "delete", e) from e
                report.pruned.append(name)

        return report
