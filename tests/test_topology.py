"""Tests for deployment topologies."""

from conftest import make_instance

from robustmq_operator.models import (
    Component,
    DeploymentStatus,
    Endpoint,
    ResourceKind,
    RobustMQSpec,
    ServiceRole,
)
from robustmq_operator.topology import (
    AllInOneTopology,
    MicroservicesTopology,
    topology_for,
)


class TestTopologySelection:
    """Test cases for topology_for."""

    def test_modes(self):
        """Test each mode maps to its topology."""
        assert isinstance(topology_for(RobustMQSpec(deployment_mode="AllInOne")), AllInOneTopology)
        assert isinstance(
            topology_for(RobustMQSpec(deployment_mode="Microservices")), MicroservicesTopology
        )

    def test_unknown_mode_falls_back(self):
        """Test an unknown mode is treated as all-in-one."""
        assert isinstance(topology_for(RobustMQSpec(deployment_mode="Hybrid")), AllInOneTopology)

    def test_default_mode(self):
        """Test an empty spec is all-in-one."""
        assert isinstance(topology_for(RobustMQSpec()), AllInOneTopology)


class TestAllInOneTopology:
    """Test cases for the all-in-one layout."""

    def test_workload(self, all_in_one_instance):
        """Test a single StatefulSet named after the instance."""
        (plan,) = AllInOneTopology().workloads(all_in_one_instance)

        assert plan.component == Component.ALL_IN_ONE
        assert plan.kind == ResourceKind.STATEFUL_SET
        assert plan.name == "mq"
        assert plan.replicas == 1
        assert plan.headless_service == "mq-meta-service"
        assert plan.roles == (ServiceRole.META, ServiceRole.BROKER, ServiceRole.JOURNAL)

    def test_replicas_from_spec(self):
        """Test explicit replicas win over the default."""
        instance = make_instance(spec={"allInOne": {"replicas": 3}})
        (plan,) = AllInOneTopology().workloads(instance)
        assert plan.replicas == 3

    def test_endpoints(self, all_in_one_instance):
        """Test endpoint names, with prometheus when monitoring is on."""
        names = [plan.name for plan in AllInOneTopology().endpoints(all_in_one_instance)]
        assert names == [
            "mq-mqtt",
            "mq-kafka",
            "mq-grpc",
            "mq-amqp",
            "mq-meta-service",
            "mq-prometheus",
        ]

    def test_endpoints_without_monitoring(self):
        """Test no prometheus endpoint when monitoring is off."""
        instance = make_instance(spec={"monitoring": {"enabled": False}})
        endpoints = [plan.endpoint for plan in AllInOneTopology().endpoints(instance)]
        assert Endpoint.PROMETHEUS not in endpoints
        assert len(endpoints) == 5

    def test_nodes(self, all_in_one_instance):
        """Test one node per ready replica with stable DNS addresses."""
        statuses = {Component.ALL_IN_ONE: DeploymentStatus(replicas=3, ready_replicas=2)}
        nodes = AllInOneTopology().nodes(all_in_one_instance, statuses)

        assert [node.id for node in nodes] == ["mq-0", "mq-1"]
        assert nodes[0].address == "mq-0.mq-meta-service.default.svc.cluster.local:1228"
        assert nodes[0].roles == [ServiceRole.META, ServiceRole.BROKER, ServiceRole.JOURNAL]
        assert nodes[0].status == "Running"


class TestMicroservicesTopology:
    """Test cases for the microservices layout."""

    def test_workloads(self, microservices_instance):
        """Test three workloads with default replicas."""
        plans = MicroservicesTopology().workloads(microservices_instance)

        assert [(p.name, p.kind, p.replicas) for p in plans] == [
            ("mq-meta", ResourceKind.STATEFUL_SET, 3),
            ("mq-mqtt-broker", ResourceKind.DEPLOYMENT, 2),
            ("mq-journal", ResourceKind.STATEFUL_SET, 3),
        ]
        assert plans[1].storage is None
        assert plans[2].headless_service == "mq-journal-service"

    def test_per_service_storage_override(self):
        """Test a service's own storage replaces the instance storage."""
        instance = make_instance(
            spec={
                "deploymentMode": "Microservices",
                "storage": {"size": "10Gi"},
                "microservices": {"journalService": {"storage": {"size": "50Gi"}}},
            }
        )
        meta, _, journal = MicroservicesTopology().workloads(instance)

        assert meta.storage.size == "10Gi"
        assert journal.storage.size == "50Gi"

    def test_endpoints_select_components(self, microservices_instance):
        """Test services are scoped to the component that serves them."""
        plans = MicroservicesTopology().endpoints(microservices_instance)
        by_endpoint = {plan.endpoint: plan for plan in plans}

        assert by_endpoint[Endpoint.META].selects == "meta"
        assert by_endpoint[Endpoint.MQTT_BROKER].selects == "mqtt-broker"
        assert by_endpoint[Endpoint.KAFKA].selects == "mqtt-broker"
        assert by_endpoint[Endpoint.JOURNAL].selects == "journal"
        assert by_endpoint[Endpoint.PROMETHEUS].selects is None
        assert len(plans) == 6

    def test_nodes(self, microservices_instance):
        """Test node ids and addresses per component."""
        statuses = {
            Component.META: DeploymentStatus(replicas=3, ready_replicas=1),
            Component.BROKER: DeploymentStatus(replicas=2, ready_replicas=2),
            Component.JOURNAL: DeploymentStatus(replicas=3, ready_replicas=1),
        }
        nodes = MicroservicesTopology().nodes(microservices_instance, statuses)

        assert [node.id for node in nodes] == [
            "mq-meta-0",
            "mq-broker-0",
            "mq-broker-1",
            "mq-journal-0",
        ]
        assert nodes[0].address == "mq-meta-0.mq-meta-service.default.svc.cluster.local:1228"
        assert nodes[1].address == "mq-mqtt-broker-0"
        assert nodes[3].address == "mq-journal-0.mq-journal-service.default.svc.cluster.local:1771"
        assert nodes[3].roles == [ServiceRole.JOURNAL]
