"""Tests for topology synthesis and the topology query surface."""

import logging

import pytest

from meshgen.config import NodeOverride, TopologySpec
from meshgen.models import (
    ConfigurationError,
    NetworkShape,
    TopologyLookupError,
)
from meshgen.topology import build_topology

from conftest import make_config, random_config


def test_literal_addressing_flat(two_dc_config):
    topology = build_topology(two_dc_config.topology)

    addresses = {node.name: node.local_address for node in topology}
    assert addresses == {
        "dc1-server1": "10.0.1.11",
        "dc1-client1": "10.0.1.21",
        "dc1-client2": "10.0.1.22",
        "dc2-server1": "10.0.2.11",
        "dc2-client1": "10.0.2.21",
        "dc2-client2": "10.0.2.22",
    }
    for node in topology:
        assert [a.network for a in node.addresses] == ["lan"]


def test_iteration_order_servers_first():
    cfg = make_config({"dc2": (2, 1), "dc1": (1, 2)})
    topology = build_topology(cfg.topology)

    assert [node.name for node in topology] == [
        "dc1-server1",
        "dc2-server1",
        "dc2-server2",
        "dc1-client1",
        "dc1-client2",
        "dc2-client1",
    ]
    assert [dc.name for dc in topology.datacenters] == ["dc1", "dc2"]


def test_iteration_order_is_stable():
    cfg = random_config(7)
    first = [node.name for node in build_topology(cfg.topology)]
    second = [node.name for node in build_topology(cfg.topology)]
    assert first == second


def test_datacenters_sorted_by_name_not_number():
    cfg = make_config({"dc1": (1, 1), "dc10": (1, 1), "dc2": (1, 1)})
    topology = build_topology(cfg.topology)
    assert [dc.name for dc in topology.datacenters] == ["dc1", "dc10", "dc2"]
    assert topology.datacenter("dc10").base_ip == "10.0.10"
    assert topology.datacenter("dc1").primary
    assert not topology.datacenter("dc2").primary


@pytest.mark.parametrize("seed", range(25))
def test_node_counts_and_names(seed):
    cfg = random_config(seed)
    topology = build_topology(cfg.topology)

    expected = sum(d.servers + d.clients for d in cfg.topology.datacenters.values())
    assert len(topology) == expected

    for name, counts in cfg.topology.datacenters.items():
        servers = [n.name for n in topology if n.datacenter == name and n.server]
        clients = [n.name for n in topology if n.datacenter == name and not n.server]
        assert servers == [f"{name}-server{k}" for k in range(1, counts.servers + 1)]
        assert clients == [f"{name}-client{k}" for k in range(1, counts.clients + 1)]


@pytest.mark.parametrize("seed", range(25))
def test_local_address_always_resolves(seed):
    cfg = random_config(seed)
    topology = build_topology(cfg.topology)

    for node in topology:
        local = node.local_address
        network = next(a.network for a in node.addresses if a.ip == local)
        if topology.shape is NetworkShape.FLAT:
            assert network == "lan"
        else:
            assert network == node.datacenter
        assert topology.node(node.name) is node


@pytest.mark.parametrize("seed", range(25))
def test_addresses_unique(seed):
    topology = build_topology(random_config(seed).topology)
    ips = [addr.ip for node in topology for addr in node.addresses]
    assert len(ips) == len(set(ips))


@pytest.mark.parametrize("seed", range(10))
def test_leader_is_first_server(seed):
    topology = build_topology(random_config(seed).topology)

    for dc in topology.datacenters:
        leader = topology.leader(dc.name)
        assert leader.server
        assert leader.datacenter == dc.name
        assert leader.name == f"{dc.name}-server1"
        assert topology.leader(dc.name) is leader
        assert topology.leader_address(dc.name) == leader.local_address


def test_server_addresses(two_dc_config):
    cfg = make_config({"dc1": (3, 1)})
    topology = build_topology(cfg.topology)
    assert topology.server_addresses("dc1") == ["10.0.1.11", "10.0.1.12", "10.0.1.13"]


def test_node_lookup_failure(two_dc_config):
    topology = build_topology(two_dc_config.topology)
    with pytest.raises(TopologyLookupError):
        topology.node("dc3-server1")
    with pytest.raises(TopologyLookupError):
        topology.leader("dc3")


def test_dual_shape_addresses_and_networks():
    cfg = make_config(
        {"dc1": (1, 2), "dc2": (1, 2)},
        shape="dual",
        nodes={"dc2-client2": NodeOverride(mesh_gateway=True)},
    )
    topology = build_topology(cfg.topology)

    assert topology.node("dc1-server1").wan_address == "10.1.1.11"
    assert topology.node("dc2-server1").wan_address == "10.1.2.11"
    assert topology.node("dc2-client2").wan_address == "10.1.2.22"
    assert topology.node("dc1-client1").wan_address is None
    assert topology.node("dc1-client1").local_address == "10.0.1.21"
    assert topology.leader_address("dc2", wan=True) == "10.1.2.11"
    assert topology.wan_join_addresses() == ["10.1.1.11", "10.1.2.11"]

    assert [(n.name, n.cidr) for n in topology.networks] == [
        ("dc1", "10.0.1.0/24"),
        ("dc2", "10.0.2.0/24"),
        ("wan", "10.1.0.0/16"),
    ]


def test_flat_shape_networks(two_dc_config):
    topology = build_topology(two_dc_config.topology)
    assert [(n.name, n.cidr) for n in topology.networks] == [("lan", "10.0.0.0/16")]
    assert topology.wan_join_addresses() == ["10.0.1.11", "10.0.2.11"]
    with pytest.raises(TopologyLookupError):
        topology.leader_address("dc1", wan=True)


def test_islands_shape(islands_config):
    topology = build_topology(islands_config.topology)

    assert topology.traits.federate_via_gateways
    assert topology.node("dc1-server1").wan_address is None
    assert topology.node("dc1-client3").wan_address == "10.1.1.23"
    assert topology.gateway_addresses("dc1") == ["10.1.1.23:443"]
    assert topology.gateway_addresses("dc2") == ["10.1.2.22:443"]
    assert [n.name for n in topology.networks] == ["dc1", "dc2", "wan"]


def test_islands_requires_gateways():
    cfg = make_config(
        {"dc1": (1, 2), "dc2": (1, 2)},
        shape="islands",
        nodes={"dc1-client2": NodeOverride(mesh_gateway=True)},
    )
    with pytest.raises(ConfigurationError, match="dc2: .*mesh gateway"):
        build_topology(cfg.topology)


def test_empty_shape_means_flat():
    topology = build_topology(TopologySpec(network_shape=""))
    assert topology.shape is NetworkShape.FLAT


def test_client_roles():
    cfg = make_config(
        {"dc1": (1, 4), "dc2": (1, 1)},
        nodes={
            "dc1-client2": NodeOverride(mesh_gateway=True, service_name="ignored"),
            "dc1-client3": NodeOverride(
                upstream_name="web",
                upstream_datacenter="dc2",
                upstream_extra_hcl="connect_timeout_ms = 5000",
                use_builtin_proxy=True,
                service_meta={"version": "2"},
            ),
            "dc1-client4": NodeOverride(service_name="web"),
        },
    )
    topology = build_topology(cfg.topology)

    client1 = topology.node("dc1-client1")
    assert client1.service.name == "ping"
    assert client1.service.upstream_name == "pong"
    assert client1.service.upstream_datacenter == ""
    assert client1.service.port == 8080
    assert client1.service.upstream_local_port == 9090
    assert not client1.use_builtin_proxy

    gateway = topology.node("dc1-client2")
    assert gateway.mesh_gateway
    assert gateway.service is None
    assert gateway.role == "mesh-gateway"

    client3 = topology.node("dc1-client3")
    assert client3.service.name == "ping"
    assert client3.service.upstream_name == "web"
    assert client3.service.upstream_datacenter == "dc2"
    assert client3.service.upstream_extra_hcl == "connect_timeout_ms = 5000"
    assert client3.service.meta == {"version": "2"}
    assert client3.use_builtin_proxy

    client4 = topology.node("dc1-client4")
    assert client4.service.name == "web"
    assert client4.service.upstream_name == "ping"

    for server in topology.servers("dc1"):
        assert server.service is None
        assert not server.mesh_gateway


def test_override_for_unknown_node_is_ignored(caplog):
    cfg = make_config(
        {"dc1": (1, 1)},
        nodes={
            "dc9-client1": NodeOverride(mesh_gateway=True),
            "dc1-server1": NodeOverride(mesh_gateway=True),
        },
    )
    with caplog.at_level(logging.WARNING, logger="meshgen.topology"):
        topology = build_topology(cfg.topology)

    assert len(topology) == 2
    assert not topology.node("dc1-server1").mesh_gateway
    assert "unknown node dc9-client1" in caplog.text
    assert "server dc1-server1" in caplog.text


def test_missing_primary_rejected():
    cfg = make_config({"dc2": (1, 1)})
    with pytest.raises(ConfigurationError, match="primary datacenter 'dc1'"):
        build_topology(cfg.topology)


@pytest.mark.parametrize("name", ["east", "dc0", "dc01", "DC2", "dc2a", "dc256"])
def test_invalid_datacenter_name(name):
    cfg = make_config({"dc1": (1, 1), name: (1, 1)})
    with pytest.raises(ConfigurationError, match=name):
        build_topology(cfg.topology)


@pytest.mark.parametrize(
    "counts, message",
    [
        ((0, 1), "at least one server"),
        ((1, 0), "at least one client"),
        ((10, 1), "at most 9"),
        ((1, 10), "at most 9"),
    ],
)
def test_invalid_counts(counts, message):
    cfg = make_config({"dc1": (1, 1), "dc2": counts})
    with pytest.raises(ConfigurationError, match=message):
        build_topology(cfg.topology)


def test_unknown_shape_rejected():
    cfg = make_config({"dc1": (1, 1)}, shape="split")
    with pytest.raises(ConfigurationError, match="unknown network_shape: split"):
        build_topology(cfg.topology)


def test_validation_order():
    # every check fails here, the primary datacenter check comes first
    cfg = make_config({"east": (0, 0)}, shape="split")
    with pytest.raises(ConfigurationError, match="primary"):
        build_topology(cfg.topology)

    cfg = make_config({"dc1": (0, 0), "east": (1, 1)}, shape="split")
    with pytest.raises(ConfigurationError, match="not a valid datacenter name"):
        build_topology(cfg.topology)

    cfg = make_config({"dc1": (0, 1)}, shape="split")
    with pytest.raises(ConfigurationError, match="at least one server"):
        build_topology(cfg.topology)


@pytest.mark.parametrize(
    "name", ["pod", "ping-sidecar", "a: b", "Web", "9lives", "web_v2", "-web"]
)
def test_invalid_service_name_override(name):
    cfg = make_config(
        {"dc1": (1, 1)}, nodes={"dc1-client1": NodeOverride(service_name=name)}
    )
    with pytest.raises(ConfigurationError, match="dc1-client1: "):
        build_topology(cfg.topology)


@pytest.mark.parametrize("name", ["pod", "pong-sidecar", "a: b", "Pong"])
def test_invalid_upstream_name_override(name):
    cfg = make_config(
        {"dc1": (1, 1)}, nodes={"dc1-client1": NodeOverride(upstream_name=name)}
    )
    with pytest.raises(ConfigurationError, match="dc1-client1: "):
        build_topology(cfg.topology)


def test_service_name_override_accepts_dns_labels():
    cfg = make_config(
        {"dc1": (1, 1)},
        nodes={"dc1-client1": NodeOverride(service_name="web-v2", upstream_name="db1")},
    )
    service = build_topology(cfg.topology).node("dc1-client1").service
    assert service.name == "web-v2"
    assert service.upstream_name == "db1"


def test_range_checks_follow_count_checks():
    cfg = make_config({"dc1": (10, 1), "dc2": (1, 0)})
    with pytest.raises(ConfigurationError, match="dc2: must always have at least one client"):
        build_topology(cfg.topology)

    cfg = make_config({"dc1": (1, 1), "dc256": (0, 1)})
    with pytest.raises(ConfigurationError, match="dc256: must always have at least one server"):
        build_topology(cfg.topology)


def test_shape_checked_before_service_names():
    cfg = make_config(
        {"dc1": (1, 1)},
        shape="split",
        nodes={"dc1-client1": NodeOverride(service_name="pod")},
    )
    with pytest.raises(ConfigurationError, match="unknown network_shape"):
        build_topology(cfg.topology)
