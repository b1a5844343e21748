"""
File Chain (see DEVELOPER.md):
Doc Version: v1.0.0

- Called by: main.py, topology.py, render.py
- Purpose: Declarative cluster description loading and defaults management

MeshGen Configuration - Declarative Cluster Description

PURPOSE:
    Holds the sparse, declarative description of the test cluster: global
    feature flags, per-datacenter server/client counts, the network shape
    selector and the per-node override table. Instances are immutable once
    loaded; the topology builder resolves them into concrete nodes.

WHO READS ME:
    - main.py: Loads configuration via Config.load() during bootstrap
    - topology.py: Reads TopologySpec for counts, shape and overrides
    - render.py: Reads global flags (image, encryption, tokens, metrics)

WHO I READ:
    - models.py: ConfigurationError

DEPENDENCIES:
    - serde: TOML serialization/deserialization (@deserialize, @serialize)
    - serde.toml: from_toml(), to_toml()
    - dataclasses: @dataclass decorator
    - logging: Configuration loading status messages

KEY EXPORTS:
    - Config, TopologySpec, DatacenterSpec, NodeOverride

FILE FORMAT:
    config.toml example:
    ```toml
    consul_image = "hashicorp/consul:1.15"
    prometheus_enabled = true

    [topology]
    network_shape = "dual"

    [topology.datacenters.dc1]
    servers = 1
    clients = 2

    [topology.datacenters.dc2]
    servers = 1
    clients = 2

    [topology.nodes.dc2-client2]
    mesh_gateway = true
    ```

OVERRIDES:
    Unset override fields use their zero value ("" / false / empty map), an
    explicit false is therefore indistinguishable from an omitted field.
"""

import logging
from dataclasses import dataclass, field

from serde import deserialize, serialize, SerdeError
from serde.toml import from_toml, to_toml

from meshgen.models import ConfigurationError

_LOGGER = logging.getLogger(__name__)


@deserialize
@serialize
@dataclass(frozen=True)
class DatacenterSpec:
    """server and client counts of one datacenter"""

    servers: int = 1
    clients: int = 1


@deserialize
@serialize
@dataclass(frozen=True)
class NodeOverride:
    """per-node adjustments, only consulted for client nodes"""

    mesh_gateway: bool = False
    use_builtin_proxy: bool = False
    service_name: str = ""
    upstream_name: str = ""
    upstream_datacenter: str = ""
    upstream_extra_hcl: str = ""
    service_meta: dict[str, str] = field(default_factory=dict)


def _default_datacenters() -> dict[str, DatacenterSpec]:
    return {"dc1": DatacenterSpec(servers=1, clients=2)}


@deserialize
@serialize
@dataclass(frozen=True)
class TopologySpec:
    """the topology block of the configuration"""

    network_shape: str = "flat"
    datacenters: dict[str, DatacenterSpec] = field(
        default_factory=_default_datacenters
    )
    nodes: dict[str, NodeOverride] = field(default_factory=dict)

    def override(self, node_name: str) -> NodeOverride:
        """the override record for a node, or an all-unset record"""
        return self.nodes.get(node_name, NodeOverride())


@deserialize
@serialize
@dataclass(frozen=True)
class Config:
    """mesh test cluster configuration"""

    consul_image: str = "hashicorp/consul:latest"
    encryption_tls: bool = False
    encryption_gossip_key: str = ""
    kubernetes_enabled: bool = False
    prometheus_enabled: bool = False
    envoy_log_level: str = "info"
    initial_master_token: str = "root"
    agent_master_token: str = "agent-master"
    topology: TopologySpec = field(default_factory=TopologySpec)

    @classmethod
    def from_string(cls, text: str) -> "Config":
        """parse a TOML document, structural problems are configuration errors"""
        try:
            return from_toml(cls, text)
        except (TypeError, ValueError, SerdeError) as exc:
            raise ConfigurationError(f"invalid configuration: {exc}") from exc

    @classmethod
    def load(cls, filename: str) -> "Config":
        """load the configuration from the given file"""
        try:
            with open(filename, encoding="utf-8") as handle:
                text = handle.read()
        except FileNotFoundError:
            _LOGGER.warning("%s not found, using configuration defaults", filename)
            return cls()
        cfg = cls.from_string(text)
        _LOGGER.info("Configuration loaded from file %s", filename)
        return cfg

    def save(self, filename: str):
        """save the configuration to the given file"""
        with open(filename, "w+", encoding="utf-8") as handle:
            handle.write(to_toml(self))
