"""Pytest configuration and shared fixtures for meshgen tests."""

import random

import pytest

from meshgen.config import Config, DatacenterSpec, NodeOverride, TopologySpec


def make_config(
    datacenters: dict[str, tuple[int, int]],
    shape: str = "flat",
    nodes: dict[str, NodeOverride] | None = None,
    **flags,
) -> Config:
    """build a Config from (servers, clients) tuples"""
    return Config(
        topology=TopologySpec(
            network_shape=shape,
            datacenters={
                name: DatacenterSpec(servers=s, clients=c)
                for name, (s, c) in datacenters.items()
            },
            nodes=nodes or {},
        ),
        **flags,
    )


def random_config(seed: int) -> Config:
    """a random but valid configuration"""
    rng = random.Random(seed)
    shape = rng.choice(["flat", "dual", "islands"])
    names = ["dc1"] + [f"dc{i}" for i in rng.sample(range(2, 12), rng.randint(0, 3))]
    datacenters = {name: (rng.randint(1, 9), rng.randint(1, 9)) for name in names}
    nodes = {}
    for name, (_, clients) in datacenters.items():
        for idx in range(1, clients + 1):
            node_name = f"{name}-client{idx}"
            if rng.random() < 0.25:
                nodes[node_name] = NodeOverride(mesh_gateway=True)
            elif rng.random() < 0.2:
                nodes[node_name] = NodeOverride(
                    use_builtin_proxy=rng.random() < 0.5,
                    upstream_datacenter=rng.choice(names),
                    service_meta={"version": str(rng.randint(1, 3))},
                )
        if shape == "islands":
            nodes[f"{name}-client{clients}"] = NodeOverride(mesh_gateway=True)
    return make_config(
        datacenters,
        shape=shape,
        nodes=nodes,
        prometheus_enabled=rng.random() < 0.5,
        kubernetes_enabled=rng.random() < 0.5,
        encryption_tls=rng.random() < 0.5,
    )


@pytest.fixture
def two_dc_config() -> Config:
    """dc1 and dc2, one server and two clients each, flat network"""
    return make_config({"dc1": (1, 2), "dc2": (1, 2)})


@pytest.fixture
def islands_config() -> Config:
    """two datacenters federated through mesh gateways"""
    return make_config(
        {"dc1": (2, 3), "dc2": (1, 2)},
        shape="islands",
        nodes={
            "dc1-client3": NodeOverride(mesh_gateway=True),
            "dc2-client2": NodeOverride(mesh_gateway=True),
        },
    )
