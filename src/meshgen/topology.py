"""
File Chain (see DEVELOPER.md):
Doc Version: v1.0.0

- Called by: main.py, render.py
- Purpose: Expand the declarative description into a resolved topology

MeshGen Topology - Topology Builder and Query Surface

PURPOSE:
    build_topology() validates the topology block of the configuration and
    expands per-datacenter counts into concrete, deterministically addressed
    nodes. The resulting Topology is immutable and is the single source of
    truth for every artifact renderer.

WHO READS ME:
    - main.py: Builds the topology once per run
    - render.py: Reads nodes, leaders, networks and shape facts

WHO I READ:
    - config.py: TopologySpec, NodeOverride
    - models.py: entities, NetworkShape, ShapeTraits, errors

ADDRESSING:
    - datacenter dcN uses 10.0.N.0/24 locally and 10.1.N.x on the WAN
    - servers get suffix 10 + k, clients 20 + k (k is 1-based), so each
      role group is limited to 9 members

ORDERING:
    - datacenters are processed in name order
    - iteration yields all servers (datacenter, then index) followed by all
      clients in the same order

VALIDATION (first failure wins):
    1. primary datacenter present
    2. datacenter names match dcN
    3. at least one server and one client per datacenter
    4. datacenter number and role group limits
    5. known network shape
    6. service and upstream name overrides are lowercase DNS labels that
       do not collide with the pod or sidecar container names
    7. gateway-federated shapes have a mesh gateway in every datacenter
"""

import logging
import re
from typing import Iterator

from meshgen.config import TopologySpec
from meshgen.models import (
    LAN_NETWORK,
    PRIMARY_DC,
    WAN_NETWORK,
    Address,
    ConfigurationError,
    Datacenter,
    Network,
    NetworkShape,
    Node,
    Service,
    ShapeTraits,
    TopologyLookupError,
    shape_traits,
)

_LOGGER = logging.getLogger(__name__)

DC_NAME_PATTERN = re.compile(r"^dc([1-9][0-9]*)$")
MAX_DC_INDEX = 255
MAX_ROLE_GROUP = 9

# service names become container names and YAML keys
SERVICE_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9-]*$")
RESERVED_SERVICE_NAMES = ("pod",)
RESERVED_SERVICE_SUFFIXES = ("-sidecar",)

SERVER_SUFFIX_BASE = 10
CLIENT_SUFFIX_BASE = 20

SERVICE_PORT = 8080
UPSTREAM_LOCAL_PORT = 9090
GATEWAY_WAN_PORT = 443


class Topology:
    """A resolved, read-only cluster topology."""

    def __init__(
        self,
        shape: NetworkShape,
        datacenters: list[Datacenter],
        nodes: list[Node],
    ):
        self.shape = shape
        self.traits: ShapeTraits = shape_traits(shape)
        self._dcs = tuple(sorted(datacenters, key=lambda dc: dc.name))
        self._nodes: dict[str, Node] = {}
        for node in nodes:
            if node.name in self._nodes:
                raise ConfigurationError(f"duplicate node name: {node.name}")
            self._nodes[node.name] = node
        self._servers = tuple(n.name for n in nodes if n.server)
        self._clients = tuple(n.name for n in nodes if not n.server)

    def __iter__(self) -> Iterator[Node]:
        for name in self._servers + self._clients:
            yield self._nodes[name]

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, name: object) -> bool:
        return name in self._nodes

    def node(self, name: str) -> Node:
        """look up a node by name"""
        try:
            return self._nodes[name]
        except KeyError:
            raise TopologyLookupError(f"node not found: {name}") from None

    @property
    def datacenters(self) -> list[Datacenter]:
        """datacenter descriptors in name order"""
        return list(self._dcs)

    def datacenter(self, name: str) -> Datacenter:
        for dc in self._dcs:
            if dc.name == name:
                return dc
        raise TopologyLookupError(f"no such datacenter: {name}")

    def servers(self, datacenter: str) -> list[Node]:
        """servers of a datacenter in construction order"""
        return [
            self._nodes[name]
            for name in self._servers
            if self._nodes[name].datacenter == datacenter
        ]

    def server_addresses(self, datacenter: str) -> list[str]:
        return [node.local_address for node in self.servers(datacenter)]

    def leader(self, datacenter: str) -> Node:
        """the first server of the datacenter"""
        for name in self._servers:
            node = self._nodes[name]
            if node.datacenter == datacenter:
                return node
        raise TopologyLookupError(f"no such datacenter: {datacenter}")

    def leader_address(self, datacenter: str, wan: bool = False) -> str:
        leader = self.leader(datacenter)
        if wan:
            return leader.public_address
        return leader.local_address

    def wan_join_addresses(self) -> list[str]:
        """leader addresses of every datacenter, in the form servers join the WAN with"""
        return [
            self.leader_address(dc.name, wan=self.traits.wan_join_public)
            for dc in self._dcs
        ]

    def mesh_gateways(self, datacenter: str) -> list[Node]:
        return [
            self._nodes[name]
            for name in self._clients
            if self._nodes[name].datacenter == datacenter
            and self._nodes[name].mesh_gateway
        ]

    def gateway_addresses(self, datacenter: str) -> list[str]:
        """WAN endpoints of the mesh gateways of a datacenter"""
        return [
            f"{node.public_address}:{GATEWAY_WAN_PORT}"
            for node in self.mesh_gateways(datacenter)
        ]

    @property
    def networks(self) -> list[Network]:
        """networks to declare, one per datacenter plus the WAN when needed"""
        if not self.traits.per_dc_networks:
            return [Network(LAN_NETWORK, "10.0.0.0/16")]
        out = [Network(dc.name, dc.cidr) for dc in self._dcs]
        if self.traits.wan_network:
            out.append(Network(WAN_NETWORK, "10.1.0.0/16"))
        return out


def _validate_service_name(node_name: str, value: str):
    if not SERVICE_NAME_PATTERN.match(value):
        raise ConfigurationError(f"{node_name}: not a valid service name: {value!r}")
    if value in RESERVED_SERVICE_NAMES or value.endswith(RESERVED_SERVICE_SUFFIXES):
        raise ConfigurationError(
            f"{node_name}: service name {value!r} collides with a container name"
        )


def _validate(spec: TopologySpec) -> tuple[NetworkShape, dict[str, int]]:
    """check the topology block, returns the shape and the datacenter indexes"""
    if PRIMARY_DC not in spec.datacenters:
        raise ConfigurationError(
            f"primary datacenter {PRIMARY_DC!r} is missing from config"
        )

    indexes: dict[str, int] = {}
    for name in sorted(spec.datacenters):
        match = DC_NAME_PATTERN.match(name)
        if match is None:
            raise ConfigurationError(f"{name}: not a valid datacenter name")
        indexes[name] = int(match.group(1))

    for name in sorted(spec.datacenters):
        counts = spec.datacenters[name]
        if counts.servers <= 0:
            raise ConfigurationError(f"{name}: must always have at least one server")
        if counts.clients <= 0:
            raise ConfigurationError(f"{name}: must always have at least one client")

    for name in sorted(spec.datacenters):
        if indexes[name] > MAX_DC_INDEX:
            raise ConfigurationError(
                f"{name}: datacenter number must not exceed {MAX_DC_INDEX}"
            )
        counts = spec.datacenters[name]
        if counts.servers > MAX_ROLE_GROUP or counts.clients > MAX_ROLE_GROUP:
            raise ConfigurationError(
                f"{name}: at most {MAX_ROLE_GROUP} servers and {MAX_ROLE_GROUP} clients are supported"
            )

    shape = NetworkShape.parse(spec.network_shape)

    for node_name in sorted(spec.nodes):
        override = spec.nodes[node_name]
        for value in (override.service_name, override.upstream_name):
            if value:
                _validate_service_name(node_name, value)

    return shape, indexes


def _local_network(traits: ShapeTraits, dc: Datacenter) -> str:
    return dc.name if traits.per_dc_networks else LAN_NETWORK


def _build_server(traits: ShapeTraits, dc: Datacenter, idx: int) -> Node:
    suffix = SERVER_SUFFIX_BASE + idx
    addresses = [Address(_local_network(traits, dc), f"{dc.base_ip}.{suffix}")]
    if traits.server_wan_address:
        addresses.append(Address(WAN_NETWORK, f"{dc.wan_base_ip}.{suffix}"))
    return Node(
        datacenter=dc.name,
        name=f"{dc.name}-server{idx}",
        server=True,
        addresses=tuple(addresses),
        index=idx - 1,
    )


def _build_client(
    traits: ShapeTraits, spec: TopologySpec, dc: Datacenter, idx: int
) -> Node:
    suffix = CLIENT_SUFFIX_BASE + idx
    name = f"{dc.name}-client{idx}"
    override = spec.override(name)
    addresses = [Address(_local_network(traits, dc), f"{dc.base_ip}.{suffix}")]

    if override.mesh_gateway:
        if traits.gateway_wan_address:
            addresses.append(Address(WAN_NETWORK, f"{dc.wan_base_ip}.{suffix}"))
        return Node(
            datacenter=dc.name,
            name=name,
            server=False,
            addresses=tuple(addresses),
            index=idx - 1,
            mesh_gateway=True,
        )

    if idx % 2 == 1:
        default_name, default_upstream = "ping", "pong"
    else:
        default_name, default_upstream = "pong", "ping"

    service = Service(
        name=override.service_name or default_name,
        port=SERVICE_PORT,
        upstream_name=override.upstream_name or default_upstream,
        upstream_datacenter=override.upstream_datacenter,
        upstream_local_port=UPSTREAM_LOCAL_PORT,
        upstream_extra_hcl=override.upstream_extra_hcl,
        meta=dict(override.service_meta),
    )
    return Node(
        datacenter=dc.name,
        name=name,
        server=False,
        addresses=tuple(addresses),
        index=idx - 1,
        service=service,
        use_builtin_proxy=override.use_builtin_proxy,
    )


def build_topology(spec: TopologySpec) -> Topology:
    """expand the topology block into a Topology, raises ConfigurationError"""
    shape, indexes = _validate(spec)
    traits = shape_traits(shape)

    dcs = [
        Datacenter(
            name=name,
            primary=name == PRIMARY_DC,
            index=indexes[name],
            servers=spec.datacenters[name].servers,
            clients=spec.datacenters[name].clients,
            base_ip=f"10.0.{indexes[name]}",
            wan_base_ip=f"10.1.{indexes[name]}",
        )
        for name in sorted(spec.datacenters)
    ]

    nodes: list[Node] = []
    for dc in dcs:
        for idx in range(1, dc.servers + 1):
            nodes.append(_build_server(traits, dc, idx))
        for idx in range(1, dc.clients + 1):
            nodes.append(_build_client(traits, spec, dc, idx))

    topology = Topology(shape, dcs, nodes)

    for name in sorted(spec.nodes):
        if name not in topology:
            _LOGGER.warning("override for unknown node %s ignored", name)
        elif topology.node(name).server:
            _LOGGER.warning("override for server %s ignored", name)

    if traits.federate_via_gateways:
        for dc in dcs:
            if not topology.mesh_gateways(dc.name):
                raise ConfigurationError(
                    f"{dc.name}: network_shape {shape.value} requires at least one mesh gateway"
                )

    return topology
