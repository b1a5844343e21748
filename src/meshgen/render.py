"""artifact renderers"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

import enlighten
import networkx as nx
from jinja2 import (
    Environment,
    PackageLoader,
    StrictUndefined,
    TemplateError,
    select_autoescape,
)

from meshgen.config import Config
from meshgen.models import PRIMARY_DC, Node, RenderError, Service
from meshgen.persist import update_file_if_different
from meshgen.topology import Topology

_LOGGER = logging.getLogger(__name__)

J2SUFFIX = ".jinja2"

COMPOSE_FILE = "docker-compose.yml"
CACHE_DIR = "cache"
PROMETHEUS_FILE = f"{CACHE_DIR}/prometheus.yml"

AGENT_HTTP_PORT = 8500
ENVOY_METRICS_PORT = 9102
INFRA_VOLUMES = ("prometheus-data", "grafana-data")

GRAFANA_FILES = {
    f"{CACHE_DIR}/grafana-prometheus.yml": """
apiVersion: 1

datasources:
- name: Prometheus
  type: prometheus
  access: proxy
  url: http://localhost:9090
  isDefault: true
  version: 1
  editable: false
""",
    f"{CACHE_DIR}/grafana.ini": """
[auth.anonymous]
enabled = true

# Organization name that should be used for unauthenticated users
org_name = Main Org.

# Role for unauthenticated users, other valid values are 'Editor' and 'Admin'
org_role = Admin
""",
}


def squote(value) -> str:
    """single-quote a YAML scalar"""
    return "'" + str(value).replace("'", "''") + "'"


def hcl_string(value) -> str:
    """quote a value as an HCL string literal"""
    return json.dumps(str(value))


def hcl_list(values) -> str:
    return ", ".join(hcl_string(v) for v in values)


def hcl_bool(value: bool) -> str:
    return "true" if value else "false"


def indent(text: str, width: int) -> str:
    """indent every non-blank line of text, blank lines are dropped"""
    prefix = " " * width
    return "".join(
        prefix + line + "\n" for line in text.splitlines() if line.strip() != ""
    )


def render_template(name: str, **context) -> str:
    """render one of the packaged templates"""
    env = Environment(
        loader=PackageLoader("meshgen"),
        autoescape=select_autoescape(),
        undefined=StrictUndefined,
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )
    env.filters["squote"] = squote
    env.filters["hcl_string"] = hcl_string
    env.filters["hcl_list"] = hcl_list
    env.filters["hcl_bool"] = hcl_bool
    try:
        return env.get_template(f"{name}{J2SUFFIX}").render(**context)
    except TemplateError as exc:
        raise RenderError(f"cannot render {name}: {exc}") from exc


def app_service_name(node: Node) -> str:
    return f"{node.name}-{node.service.name}"  # type: ignore[union-attr]


def sidecar_service_name(node: Node) -> str:
    return app_service_name(node) + "-sidecar"


def gateway_service_name(node: Node) -> str:
    return node.name + "-mesh-gateway"


def service_registration_path(node: Node) -> str:
    return f"{CACHE_DIR}/servicereg__{node.name}__{node.service.name}.hcl"  # type: ignore[union-attr]


# ---------------------------------------------------------------------------
# agent configuration


@dataclass
class AgentConfigInfo:
    """the decisions behind one agent configuration"""

    advertise_addr: str
    datacenter: str
    retry_join: list[str]
    agent_master_token: str
    gossip_key: str
    tls: bool
    prometheus: bool
    tls_file_prefix: str
    server: bool = False
    advertise_addr_wan: str = ""
    retry_join_wan: list[str] = field(default_factory=list)
    secondary_server: bool = False
    master_token: str = ""
    bootstrap_expect: int = 0
    federate_via_gateway: bool = False
    primary_gateways: list[str] = field(default_factory=list)
    primary_datacenter: str = PRIMARY_DC


def agent_config_info(cfg: Config, topology: Topology, node: Node) -> AgentConfigInfo:
    """collect the settings of the agent running on node"""
    role = "server" if node.server else "client"
    info = AgentConfigInfo(
        advertise_addr=node.local_address,
        datacenter=node.datacenter,
        retry_join=topology.server_addresses(node.datacenter),
        agent_master_token=cfg.agent_master_token,
        gossip_key=cfg.encryption_gossip_key,
        tls=cfg.encryption_tls,
        prometheus=cfg.prometheus_enabled,
        tls_file_prefix=f"{node.datacenter}-{role}-consul-{node.index}",
        server=node.server,
    )
    if not node.server:
        return info

    info.master_token = cfg.initial_master_token
    info.advertise_addr_wan = node.wan_address or ""
    info.secondary_server = node.datacenter != PRIMARY_DC
    info.bootstrap_expect = len(topology.servers(node.datacenter))

    if topology.traits.federate_via_gateways:
        info.federate_via_gateway = True
        if info.secondary_server:
            info.primary_gateways = topology.gateway_addresses(PRIMARY_DC)
    else:
        info.retry_join_wan = topology.wan_join_addresses()
    return info


def render_agent_hcl(cfg: Config, topology: Topology, node: Node) -> str:
    """renders the agent configuration of a node"""
    return render_template("agent.hcl", info=agent_config_info(cfg, topology, node))


# ---------------------------------------------------------------------------
# orchestration manifest


def startup_graph(topology: Topology) -> nx.DiGraph:
    """containers of the manifest, an edge a -> b means a starts after b"""
    graph = nx.DiGraph()
    for node in topology:
        graph.add_edge(node.name, node.pod_name)
        if not node.server:
            graph.add_edge(node.name, topology.leader(node.datacenter).name)
        if node.mesh_gateway:
            graph.add_edge(gateway_service_name(node), node.name)
        if node.service is not None:
            graph.add_edge(app_service_name(node), node.name)
            graph.add_edge(sidecar_service_name(node), app_service_name(node))

    if not nx.is_directed_acyclic_graph(graph):
        cycle = nx.find_cycle(graph)
        raise RenderError(f"startup dependencies contain a cycle: {cycle}")
    return graph


def depends_on(graph: nx.DiGraph, name: str) -> list[str]:
    return sorted(graph.successors(name))


@dataclass
class MeshGatewayInfo:
    gateway_name: str
    pod_name: str
    depends_on: list[str]
    labels: dict[str, str]
    envoy_log_level: str
    wan_address: str
    expose_servers: bool


def render_mesh_gateway_yaml(
    cfg: Config, topology: Topology, node: Node, graph: nx.DiGraph
) -> str:
    """renders the mesh gateway container of a node, empty for other nodes"""
    if not node.mesh_gateway:
        return ""
    wan_address = ""
    if node.wan_address is not None:
        wan_address = f"{node.wan_address}:443"
    info = MeshGatewayInfo(
        gateway_name=gateway_service_name(node),
        pod_name=node.pod_name,
        depends_on=depends_on(graph, gateway_service_name(node)),
        labels={"meshgen.type": "gateway", **node.labels()},
        envoy_log_level=cfg.envoy_log_level,
        wan_address=wan_address,
        expose_servers=topology.traits.gateways_expose_servers,
    )
    return render_template("mesh-gateway.yml", info=info)


def sidecar_boot_args(cfg: Config, node: Node, service: Service) -> list[str]:
    """arguments for the sidecar bootstrap script"""
    proxy_type = "builtin" if node.use_builtin_proxy else "envoy"
    registration = f"/secrets/servicereg__{node.name}__{service.name}.hcl"
    if cfg.kubernetes_enabled:
        return [
            "/secrets/ready.val",
            proxy_type,
            "login",
            "-t",
            f"/secrets/k8s/service_jwt_token.{service.name}",
            "-s",
            "/tmp/consul.token",
            "-r",
            registration,
        ]
    return [
        "/secrets/ready.val",
        proxy_type,
        "direct",
        "-t",
        f"/secrets/service-token--{service.name}.val",
        "-r",
        registration,
    ]


@dataclass
class SidecarInfo:
    app_name: str
    sidecar_name: str
    pod_name: str
    service_name: str
    display_name: str
    port: int
    upstream_local_port: int
    app_depends_on: list[str]
    sidecar_depends_on: list[str]
    app_labels: dict[str, str]
    sidecar_labels: dict[str, str]
    boot_args: list[str]
    use_builtin_proxy: bool
    envoy_log_level: str


def render_sidecar_yaml(cfg: Config, node: Node, graph: nx.DiGraph) -> str:
    """renders the application and sidecar containers, empty without a service"""
    service = node.service
    if service is None:
        return ""
    display_name = service.name
    if service.meta:
        display_name += "--" + ",".join(
            f"{k}={v}" for k, v in sorted(service.meta.items())
        )
    info = SidecarInfo(
        app_name=app_service_name(node),
        sidecar_name=sidecar_service_name(node),
        pod_name=node.pod_name,
        service_name=service.name,
        display_name=display_name,
        port=service.port,
        upstream_local_port=service.upstream_local_port,
        app_depends_on=depends_on(graph, app_service_name(node)),
        sidecar_depends_on=depends_on(graph, sidecar_service_name(node)),
        app_labels={"meshgen.type": "app", **node.labels()},
        sidecar_labels={"meshgen.type": "sidecar", **node.labels()},
        boot_args=sidecar_boot_args(cfg, node, service),
        use_builtin_proxy=node.use_builtin_proxy,
        envoy_log_level=cfg.envoy_log_level,
    )
    return render_template("sidecar.yml", info=info)


def render_compose(cfg: Config, topology: Topology) -> str:
    """renders the orchestration manifest with every agent config inline"""
    graph = startup_graph(topology)

    volumes: list[str] = []
    if cfg.prometheus_enabled:
        volumes.extend(INFRA_VOLUMES)

    pods = []
    for node in topology:
        extra = [
            render_mesh_gateway_yaml(cfg, topology, node, graph),
            render_sidecar_yaml(cfg, node, graph),
        ]
        pods.append(
            {
                "pod_name": node.pod_name,
                "node_name": node.name,
                "addresses": node.addresses,
                "pod_labels": {"meshgen.type": "pod", **node.labels()},
                "agent_labels": {"meshgen.type": "consul", **node.labels()},
                "agent_depends_on": depends_on(graph, node.name),
                "hcl": indent(render_agent_hcl(cfg, topology, node), 8),
                "extra_yaml": "\n".join(e for e in extra if e),
            }
        )
        volumes.append(node.name)

    return render_template(
        "compose.yml",
        networks=topology.networks,
        volumes=volumes,
        pods=pods,
        consul_image=cfg.consul_image,
        prometheus_enabled=cfg.prometheus_enabled,
    )


# ---------------------------------------------------------------------------
# service registrations


def render_service_registration(node: Node) -> str:
    """renders the service definition the sidecar bootstrap registers"""
    if node.service is None:
        raise RenderError(f"{node.name} does not host a service")
    return render_template(
        "servicereg.hcl",
        service=node.service,
        extra_hcl=indent(node.service.upstream_extra_hcl, 14).rstrip("\n"),
    )


# ---------------------------------------------------------------------------
# metrics


@dataclass
class ScrapeJob:
    """a prometheus job, labels are (key, value) pairs"""

    name: str
    metrics_path: str
    targets: list[str]
    labels: list[tuple[str, str]]
    params: dict[str, list[str]] = field(default_factory=dict)


class ScrapeJobs:
    """jobs keyed by name, adding to a known name only adds its targets"""

    def __init__(self):
        self._jobs: dict[str, ScrapeJob] = {}

    def add(self, job: ScrapeJob):
        prev = self._jobs.get(job.name)
        if prev is not None:
            prev.targets.extend(job.targets)
            prev.targets.sort()
            return
        self._jobs[job.name] = ScrapeJob(
            name=job.name,
            metrics_path=job.metrics_path,
            targets=sorted(job.targets),
            labels=sorted(job.labels),
            params=dict(job.params),
        )

    def jobs(self) -> list[ScrapeJob]:
        return [self._jobs[name] for name in sorted(self._jobs)]


def collect_scrape_jobs(cfg: Config, topology: Topology) -> list[ScrapeJob]:
    """group the metrics endpoints of the topology into jobs"""
    agent_params = {
        "format": ["prometheus"],
        "token": [cfg.agent_master_token],
    }
    jobs = ScrapeJobs()
    for node in topology:
        agent_target = f"{node.local_address}:{AGENT_HTTP_PORT}"
        envoy_target = f"{node.local_address}:{ENVOY_METRICS_PORT}"
        if node.server:
            jobs.add(
                ScrapeJob(
                    name=f"consul-servers-{node.datacenter}",
                    metrics_path="/v1/agent/metrics",
                    params=agent_params,
                    targets=[agent_target],
                    labels=[("dc", node.datacenter), ("role", "consul-server")],
                )
            )
            continue

        jobs.add(
            ScrapeJob(
                name=f"consul-clients-{node.datacenter}",
                metrics_path="/v1/agent/metrics",
                params=agent_params,
                targets=[agent_target],
                labels=[("dc", node.datacenter), ("role", "consul-client")],
            )
        )
        if node.mesh_gateway:
            jobs.add(
                ScrapeJob(
                    name=f"mesh-gateways-{node.datacenter}",
                    metrics_path="/metrics",
                    targets=[envoy_target],
                    labels=[("dc", node.datacenter), ("role", "mesh-gateway")],
                )
            )
        elif node.service is not None:
            jobs.add(
                ScrapeJob(
                    name=f"{node.service.name}-proxy",
                    metrics_path="/metrics",
                    targets=[envoy_target],
                    labels=[
                        ("dc", node.datacenter),
                        ("role", f"{node.service.name}-proxy"),
                    ],
                )
            )
    return jobs.jobs()


def render_prometheus(cfg: Config, topology: Topology) -> str:
    """renders the prometheus scrape configuration"""
    return render_template("prometheus.yml", jobs=collect_scrape_jobs(cfg, topology))


# ---------------------------------------------------------------------------


class Renderer:
    """Renders every artifact of one run from a configuration and its
    topology, and persists the ones that changed."""

    def __init__(self, cfg: Config, topology: Topology):
        self.config = cfg
        self.topology = topology

    def log_nodes(self):
        """emit one event per synthesized node"""
        for node in self.topology:
            _LOGGER.info(
                "Generating node",
                extra={
                    "fields": {
                        "name": node.name,
                        "server": node.server,
                        "dc": node.datacenter,
                        "ip": node.local_address,
                    }
                },
            )

    def render(self) -> dict[str, bytes]:
        """render all artifacts in memory, keyed by their relative path"""
        artifacts = {COMPOSE_FILE: render_compose(self.config, self.topology)}
        for node in self.topology:
            if node.service is not None:
                artifacts[service_registration_path(node)] = (
                    render_service_registration(node)
                )
        if self.config.prometheus_enabled:
            artifacts[PROMETHEUS_FILE] = render_prometheus(self.config, self.topology)
            artifacts.update(GRAFANA_FILES)
        return {path: text.encode("utf-8") for path, text in artifacts.items()}

    def write(self, output_dir: Path, progress: bool = False) -> list[Path]:
        """render everything, then write what differs from disk, returns
        the paths that were written"""
        artifacts = self.render()

        manager = None
        ticks = None
        if progress:
            manager = enlighten.get_manager()
            ticks = manager.counter(
                total=len(artifacts),
                desc="artifacts",
                unit="files",
                color="cyan",
                leave=False,
            )

        written: list[Path] = []
        try:
            for relpath in sorted(artifacts):
                path = Path(output_dir) / relpath
                if update_file_if_different(artifacts[relpath], path):
                    written.append(path)
                if ticks is not None:
                    ticks.update()
        finally:
            if ticks is not None:
                ticks.close()
            if manager is not None:
                manager.stop()

        _LOGGER.info(
            "generation finished",
            extra={"fields": {"artifacts": len(artifacts), "written": len(written)}},
        )
        return written
