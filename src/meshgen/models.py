"""
MeshGen Data Models - Core Data Structures for Topology Synthesis

PURPOSE:
    Defines the immutable entities a resolved topology is made of (datacenters,
    nodes, addresses, services, networks), the network shape selector with its
    decision table, and the error taxonomy shared by every module.

WHO READS ME:
    - topology.py: Builds Datacenter/Node/Address/Service values
    - render.py: Reads node state, raises RenderError
    - config.py: Raises ConfigurationError
    - persist.py: Raises PersistenceError
    - main.py: Uses MeshgenError for exception handling

WHO I READ:
    - None (leaf module, no internal dependencies)

DEPENDENCIES:
    - dataclasses: @dataclass decorator (frozen)
    - enum: NetworkShape

KEY EXPORTS:
    - MeshgenError: Base exception class for all meshgen errors
    - ConfigurationError, RenderError, PersistenceError, TopologyLookupError
    - NetworkShape, ShapeTraits, shape_traits()
    - Datacenter, Node, Address, Service, Network

NETWORK SHAPES:
    - flat:    one shared "lan" network, no WAN addresses
    - dual:    one network per datacenter plus "wan"; servers and mesh
               gateways are reachable on "wan"
    - islands: one network per datacenter plus "wan"; only mesh gateways are
               reachable on "wan", servers federate through the primary's
               gateways
"""

from dataclasses import dataclass, field
from enum import Enum

PRIMARY_DC = "dc1"
LAN_NETWORK = "lan"
WAN_NETWORK = "wan"


class MeshgenError(Exception):
    """Base class for all errors raised by meshgen"""


class ConfigurationError(MeshgenError):
    """the declarative input cannot be turned into a topology"""


class RenderError(MeshgenError):
    """an artifact could not be rendered"""


class PersistenceError(MeshgenError):
    """an artifact could not be written to disk"""


class TopologyLookupError(MeshgenError):
    """a name was looked up that the topology does not contain"""


class NetworkShape(Enum):
    """how datacenters are wired together"""

    FLAT = "flat"
    DUAL = "dual"
    ISLANDS = "islands"

    @classmethod
    def parse(cls, value: str) -> "NetworkShape":
        """parse the configured shape, the empty string selects flat"""
        if value == "":
            return cls.FLAT
        try:
            return cls(value)
        except ValueError:
            raise ConfigurationError(f"unknown network_shape: {value}") from None


@dataclass(frozen=True)
class ShapeTraits:
    """everything that differs between network shapes, in one place"""

    per_dc_networks: bool
    wan_network: bool
    server_wan_address: bool
    gateway_wan_address: bool
    # servers use the WAN form of the leader addresses for retry_join_wan
    wan_join_public: bool
    federate_via_gateways: bool
    gateways_expose_servers: bool


_SHAPE_TRAITS = {
    NetworkShape.FLAT: ShapeTraits(
        per_dc_networks=False,
        wan_network=False,
        server_wan_address=False,
        gateway_wan_address=False,
        wan_join_public=False,
        federate_via_gateways=False,
        gateways_expose_servers=False,
    ),
    NetworkShape.DUAL: ShapeTraits(
        per_dc_networks=True,
        wan_network=True,
        server_wan_address=True,
        gateway_wan_address=True,
        wan_join_public=True,
        federate_via_gateways=False,
        gateways_expose_servers=True,
    ),
    NetworkShape.ISLANDS: ShapeTraits(
        per_dc_networks=True,
        wan_network=True,
        server_wan_address=False,
        gateway_wan_address=True,
        wan_join_public=False,
        federate_via_gateways=True,
        gateways_expose_servers=True,
    ),
}


def shape_traits(shape: NetworkShape) -> ShapeTraits:
    """return the decision table row for the given shape"""
    return _SHAPE_TRAITS[shape]


@dataclass(frozen=True)
class Datacenter:
    """a datacenter of the topology, base IPs are the first three octets"""

    name: str
    primary: bool
    index: int
    servers: int
    clients: int
    base_ip: str
    wan_base_ip: str

    @property
    def cidr(self) -> str:
        return f"{self.base_ip}.0/24"


@dataclass(frozen=True)
class Network:
    """a network declared in the orchestration manifest"""

    name: str
    cidr: str


@dataclass(frozen=True)
class Address:
    """an address of a node on one network"""

    network: str
    ip: str


@dataclass(frozen=True)
class Service:
    """the application service hosted on a plain client"""

    name: str
    port: int
    upstream_name: str
    upstream_datacenter: str
    upstream_local_port: int
    upstream_extra_hcl: str = ""
    meta: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Node:
    """a node of a topology, index is the 0-based position in its role group"""

    datacenter: str
    name: str
    server: bool
    addresses: tuple[Address, ...]
    index: int
    service: Service | None = None
    mesh_gateway: bool = False
    use_builtin_proxy: bool = False

    def __post_init__(self):
        if self.server and (self.service is not None or self.mesh_gateway):
            raise ConfigurationError(
                f"{self.name}: servers cannot carry a service or be a mesh gateway"
            )
        if self.service is not None and self.mesh_gateway:
            raise ConfigurationError(
                f"{self.name}: a mesh gateway cannot carry a service"
            )

    @property
    def pod_name(self) -> str:
        return self.name + "-pod"

    @property
    def role(self) -> str:
        if self.server:
            return "server"
        if self.mesh_gateway:
            return "mesh-gateway"
        return "client"

    @property
    def local_address(self) -> str:
        """the address on the datacenter network (or the shared lan)"""
        for addr in self.addresses:
            if addr.network in (self.datacenter, LAN_NETWORK):
                return addr.ip
        raise TopologyLookupError(f"node has no local address: {self.name}")

    @property
    def wan_address(self) -> str | None:
        """the address on the shared WAN network, if the node has one"""
        for addr in self.addresses:
            if addr.network == WAN_NETWORK:
                return addr.ip
        return None

    @property
    def public_address(self) -> str:
        addr = self.wan_address
        if addr is None:
            raise TopologyLookupError(f"node has no public address: {self.name}")
        return addr

    def labels(self) -> dict[str, str]:
        """manifest labels identifying this node"""
        return {
            "meshgen.datacenter": self.datacenter,
            "meshgen.node": self.name,
            "meshgen.role": self.role,
        }
