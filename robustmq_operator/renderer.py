"""Render RobustMQ server configuration files.

Rendering is a pure function of the instance: the same spec always yields
byte-identical text, so a ConfigMap only changes when the spec does.
"""

from .models import JOURNAL_PORT, RobustMQ
from .topology import meta_service_name, topology_for

SERVER_CONFIG_KEY = "server.toml"
TRACING_CONFIG_KEY = "server-tracing.toml"

CONFIG_DIR = "/robustmq/config"
DATA_DIR = "/robustmq/data"
LOG_DIR = "/robustmq/logs"
JOURNAL_DATA_DIR = "/robustmq/journal-data"

# Sinks of the tracing config: (section, target path, file prefix).
_ROLLING_SINKS = (
    ("server", None, "server"),
    ("raft", "openraft", "raft"),
    ("journal", "journal_server", "journal"),
    ("place", "meta_service", "place"),
)
_MAX_LOG_FILES = 50


def resolve_cluster_name(instance: RobustMQ) -> str:
    """Cluster name: ``config.additional["cluster_name"]`` or the instance name."""
    return instance.spec.config.additional.get("cluster_name", instance.name)


_TOML_ESCAPES = {
    '"': '\\"',
    "\\": "\\\\",
    "\b": "\\b",
    "\t": "\\t",
    "\n": "\\n",
    "\f": "\\f",
    "\r": "\\r",
}


def _toml_string(value) -> str:
    """Quote ``value`` as a TOML basic string."""
    escaped = []
    for char in str(value):
        if char in _TOML_ESCAPES:
            escaped.append(_TOML_ESCAPES[char])
        elif ord(char) < 0x20 or ord(char) == 0x7F:
            escaped.append(f"\\u{ord(char):04X}")
        else:
            escaped.append(char)
    return '"' + "".join(escaped) + '"'


def _toml_list(values) -> str:
    return "[" + ", ".join(_toml_string(v) for v in values) + "]"


def _toml_bool(value: bool) -> str:
    return "true" if value else "false"


def render_server_config(instance: RobustMQ) -> str:
    """
    Render ``server.toml``.

    Args:
        instance: RobustMQ instance

    Returns:
        Server configuration text
    """
    spec = instance.spec
    network = spec.network
    roles = [role.value for role in topology_for(spec).roles]

    sections = [
        "# RobustMQ Configuration\n"
        f"cluster_name = {_toml_string(resolve_cluster_name(instance))}\n"
        "broker_id = 1\n"
        f"grpc_port = {network.grpc.port}\n"
        "\n"
        f"roles = {_toml_list(roles)}\n"
        f'meta_service = {{ 1 = "{meta_service_name(instance)}:{network.grpc.port}" }}\n'
    ]

    if spec.monitoring.enabled:
        prometheus = spec.monitoring.prometheus
        sections.append(
            "[prometheus]\n"
            f"enable = {_toml_bool(prometheus.enable)}\n"
            f"model = {_toml_string(prometheus.model)}\n"
            f"port = {prometheus.port}\n"
            "interval = 10\n"
        )

    sections.append(
        "[log]\n"
        f'log_config = "{CONFIG_DIR}/logger.toml"\n'
        f'log_path = "{LOG_DIR}"\n'
    )
    sections.append(
        "[rocksdb]\n"
        f'data_path = "{DATA_DIR}"\n'
        "max_open_files = 10000\n"
    )

    mqtt = network.mqtt
    auth = spec.security.auth
    sections.append(
        "[mqtt.server]\n"
        f"tcp_port = {mqtt.tcp_port}\n"
        f"tls_port = {mqtt.tls_port}\n"
        f"websocket_port = {mqtt.web_socket_port}\n"
        f"websockets_port = {mqtt.web_socket_tls_port}\n"
    )
    sections.append(
        "[mqtt.auth.storage]\n"
        f"storage_type = {_toml_string(auth.storage_type)}\n"
    )
    sections.append(
        "[mqtt.message.storage]\n"
        'storage_type = "memory"\n'
    )
    # The password is a placeholder; passwordSecret is not wired into the config.
    sections.append(
        "[mqtt.runtime]\n"
        'heartbeat_timeout = "10s"\n'
        f"default_user = {_toml_string(auth.default_user)}\n"
        'default_password = "pwd123"\n'
        "max_connection_num = 5000000\n"
    )

    sections.append(
        "[journal.server]\n"
        f"tcp_port = {JOURNAL_PORT}\n"
    )
    sections.append(
        "[journal.storage]\n"
        f"data_paths = {_toml_list([JOURNAL_DATA_DIR])}\n"
        "rocksdb_max_open_files = 10000\n"
    )
    sections.append(
        "[journal.runtime]\n"
        "enable_auto_create_shard = false\n"
        "shard_replica_num = 1\n"
        "max_segment_size = 1048576\n"
    )

    return "\n".join(sections)


def render_tracing_config() -> str:
    """Render ``server-tracing.toml`` (identical for every instance)."""
    sections = [
        "# RobustMQ Tracing Configuration\n"
        "[stdout]\n"
        'kind = "console"\n'
        'level = "info"\n'
    ]
    for section, target, prefix in _ROLLING_SINKS:
        lines = [f"[{section}]", 'kind = "rolling_file"']
        if target is None:
            lines.append('level = "info"')
        else:
            lines.append(f'targets = [{{ path = "{target}", level = "info" }}]')
        lines.extend(
            [
                'rotation = "daily"',
                f'directory = "{LOG_DIR}"',
                f'prefix = "{prefix}"',
                'suffix = "log"',
                f"max_log_files = {_MAX_LOG_FILES}",
            ]
        )
        sections.append("\n".join(lines) + "\n")
    return "\n".join(sections)


def render_config_data(instance: RobustMQ) -> dict[str, str]:
    """
    Render the full ConfigMap payload.

    Additional keys from ``spec.config.additional`` are copied verbatim and
    win over the generated files if they share a name.

    Args:
        instance: RobustMQ instance

    Returns:
        Mapping of ConfigMap keys to file contents
    """
    data = {
        SERVER_CONFIG_KEY: render_server_config(instance),
        TRACING_CONFIG_KEY: render_tracing_config(),
    }
    data.update(instance.spec.config.additional)
    return data
