"""Tests for ClusterConnection."""

import base64
from unittest.mock import MagicMock, patch

import pytest
from kubernetes.client.exceptions import ApiException

from robustmq_operator.cluster import ClusterConfig, ClusterConnection, is_transient


class TestClusterConnection:
    """Test cases for ClusterConnection."""

    @patch("robustmq_operator.cluster.config.load_incluster_config")
    def test_in_cluster_by_default(self, load_incluster):
        """Test in-cluster config is used without a kubeconfig."""
        conn = ClusterConnection(ClusterConfig())

        load_incluster.assert_called_once()
        assert conn.core_v1 is not None
        assert conn.apps_v1 is not None
        assert conn.custom_objects is not None
        conn.close()

    @patch("robustmq_operator.cluster.config.load_kube_config")
    def test_kubeconfig_path(self, load_kube_config):
        """Test a kubeconfig path and context are passed through."""
        conn = ClusterConnection(ClusterConfig(kubeconfig_path="/tmp/kubeconfig", context="dev"))

        load_kube_config.assert_called_once_with(config_file="/tmp/kubeconfig", context="dev")
        conn.close()

    @patch("robustmq_operator.cluster.config.load_kube_config")
    def test_kubeconfig_data_is_cleaned_up(self, load_kube_config):
        """Test inline kubeconfig is written to a temp file and removed on close."""
        data = base64.b64encode(b"apiVersion: v1\nkind: Config\n").decode()

        with ClusterConnection(ClusterConfig(kubeconfig_data=data)) as conn:
            temp_file = conn._temp_kubeconfig
            assert temp_file.read_bytes() == b"apiVersion: v1\nkind: Config\n"
            assert load_kube_config.call_args.kwargs["config_file"] == str(temp_file)

        assert not temp_file.exists()
        with pytest.raises(RuntimeError):
            conn.core_v1

    @patch("robustmq_operator.cluster.config.load_incluster_config")
    def test_initialization_failure(self, load_incluster):
        """Test config loading errors surface as ValueError."""
        load_incluster.side_effect = Exception("not in a cluster")

        with pytest.raises(ValueError, match="Failed to initialize cluster connection"):
            ClusterConnection(ClusterConfig())

    @patch("robustmq_operator.cluster.client.VersionApi")
    @patch("robustmq_operator.cluster.config.load_incluster_config")
    def test_get_cluster_version(self, load_incluster, version_api):
        version_api.return_value.get_code.return_value = MagicMock(
            major="1", minor="29", git_version="v1.29.2"
        )
        conn = ClusterConnection(ClusterConfig())

        assert conn.get_cluster_version() == {
            "major": "1",
            "minor": "29",
            "git_version": "v1.29.2",
        }
        version_api.assert_called_once_with(conn.api_client)
        conn.close()

    @patch("robustmq_operator.cluster.client.VersionApi")
    @patch("robustmq_operator.cluster.config.load_incluster_config")
    def test_get_cluster_version_retries_server_errors(
        self, load_incluster, version_api, monkeypatch
    ):
        """Test the startup version probe rides out a briefly unavailable API server."""
        monkeypatch.setattr(ClusterConnection.get_cluster_version.retry, "sleep", lambda s: None)
        version_api.return_value.get_code.side_effect = [
            ApiException(status=503),
            MagicMock(major="1", minor="29", git_version="v1.29.2"),
        ]
        conn = ClusterConnection(ClusterConfig())

        assert conn.get_cluster_version()["git_version"] == "v1.29.2"
        assert version_api.return_value.get_code.call_count == 2
        conn.close()

    @patch("robustmq_operator.cluster.client.VersionApi")
    @patch("robustmq_operator.cluster.config.load_incluster_config")
    def test_get_cluster_version_does_not_retry_forbidden(self, load_incluster, version_api):
        version_api.return_value.get_code.side_effect = ApiException(status=403)
        conn = ClusterConnection(ClusterConfig())

        with pytest.raises(ApiException):
            conn.get_cluster_version()
        assert version_api.return_value.get_code.call_count == 1
        conn.close()


class TestTransientErrors:
    """Test cases for is_transient."""

    @pytest.mark.parametrize("status", [429, 500, 503])
    def test_transient(self, status):
        assert is_transient(ApiException(status=status))

    @pytest.mark.parametrize("status", [400, 404, 409, 422])
    def test_not_transient(self, status):
        assert not is_transient(ApiException(status=status))

    def test_other_exceptions(self):
        assert not is_transient(ValueError("boom"))
