"""Tests for the entity types and the network shape decision table."""

import pytest

from meshgen.models import (
    Address,
    ConfigurationError,
    NetworkShape,
    Node,
    Service,
    TopologyLookupError,
    shape_traits,
)


def _service() -> Service:
    return Service(
        name="ping",
        port=8080,
        upstream_name="pong",
        upstream_datacenter="",
        upstream_local_port=9090,
    )


@pytest.mark.parametrize(
    "value, shape",
    [("", NetworkShape.FLAT), ("flat", NetworkShape.FLAT),
     ("dual", NetworkShape.DUAL), ("islands", NetworkShape.ISLANDS)],
)
def test_parse_shape(value, shape):
    assert NetworkShape.parse(value) is shape


def test_parse_unknown_shape():
    with pytest.raises(ConfigurationError, match="unknown network_shape: mesh"):
        NetworkShape.parse("mesh")


def test_every_shape_has_traits():
    for shape in NetworkShape:
        traits = shape_traits(shape)
        # a WAN network is only declared next to per datacenter networks
        assert not traits.wan_network or traits.per_dc_networks


def test_shape_traits_table():
    flat = shape_traits(NetworkShape.FLAT)
    dual = shape_traits(NetworkShape.DUAL)
    islands = shape_traits(NetworkShape.ISLANDS)

    assert not flat.per_dc_networks and not flat.server_wan_address
    assert dual.server_wan_address and dual.wan_join_public
    assert not dual.federate_via_gateways
    assert islands.federate_via_gateways and not islands.server_wan_address
    assert islands.gateway_wan_address and islands.gateways_expose_servers


def test_server_cannot_carry_service():
    with pytest.raises(ConfigurationError):
        Node(
            datacenter="dc1",
            name="dc1-server1",
            server=True,
            addresses=(Address("lan", "10.0.1.11"),),
            index=0,
            service=_service(),
        )


def test_gateway_cannot_carry_service():
    with pytest.raises(ConfigurationError):
        Node(
            datacenter="dc1",
            name="dc1-client1",
            server=False,
            addresses=(Address("lan", "10.0.1.21"),),
            index=0,
            service=_service(),
            mesh_gateway=True,
        )


def test_node_addresses_and_labels():
    node = Node(
        datacenter="dc2",
        name="dc2-client1",
        server=False,
        addresses=(Address("dc2", "10.0.2.21"), Address("wan", "10.1.2.21")),
        index=0,
        mesh_gateway=True,
    )
    assert node.local_address == "10.0.2.21"
    assert node.wan_address == "10.1.2.21"
    assert node.public_address == "10.1.2.21"
    assert node.pod_name == "dc2-client1-pod"
    assert node.labels() == {
        "meshgen.datacenter": "dc2",
        "meshgen.node": "dc2-client1",
        "meshgen.role": "mesh-gateway",
    }


def test_node_without_addresses():
    node = Node(
        datacenter="dc1",
        name="dc1-client1",
        server=False,
        addresses=(Address("wan", "10.1.1.21"),),
        index=0,
    )
    with pytest.raises(TopologyLookupError):
        _ = node.local_address

    node = Node(
        datacenter="dc1",
        name="dc1-client2",
        server=False,
        addresses=(Address("lan", "10.0.1.22"),),
        index=1,
    )
    assert node.wan_address is None
    with pytest.raises(TopologyLookupError):
        _ = node.public_address
