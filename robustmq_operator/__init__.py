"""RobustMQ Operator - Runs RobustMQ clusters on Kubernetes."""

from .cluster import ClusterConfig, ClusterConnection
from .compiler import compile_resources
from .config import Settings, get_settings
from .controller import ReconcileLoop, ReconcileResult, Reconciler
from .engine import ApplyReport, ConvergenceEngine
from .exceptions import ApplyError, OperatorError, OwnershipError, StatusUpdateError
from .instances import InstanceClient
from .managers import (
    ConfigMapManager,
    DeploymentManager,
    ResourceManager,
    ServiceManager,
    StatefulSetManager,
)
from .models import (
    ManagedResource,
    Phase,
    RobustMQ,
    RobustMQSpec,
    RobustMQStatus,
    WatchEvent,
)
from .renderer import render_config_data, render_server_config, render_tracing_config
from .status import StatusAggregator, derive_phase
from .topology import Topology, topology_for
from .watch import ResourceWatcher

__version__ = "0.1.0"

__all__ = [
    # Cluster
    "ClusterConfig",
    "ClusterConnection",
    # Settings
    "Settings",
    "get_settings",
    # Desired state
    "Topology",
    "topology_for",
    "compile_resources",
    "render_server_config",
    "render_tracing_config",
    "render_config_data",
    # Resource managers
    "ResourceManager",
    "StatefulSetManager",
    "DeploymentManager",
    "ServiceManager",
    "ConfigMapManager",
    # Convergence and status
    "ConvergenceEngine",
    "ApplyReport",
    "StatusAggregator",
    "derive_phase",
    "InstanceClient",
    # Watch and reconciliation
    "ResourceWatcher",
    "Reconciler",
    "ReconcileLoop",
    "ReconcileResult",
    # Models
    "RobustMQ",
    "RobustMQSpec",
    "RobustMQStatus",
    "ManagedResource",
    "Phase",
    "WatchEvent",
    # Errors
    "OperatorError",
    "ApplyError",
    "OwnershipError",
    "StatusUpdateError",
]
