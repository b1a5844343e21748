"""
File Chain (see DEVELOPER.md):
Doc Version: v1.0.0

- Called by: Python import system (when `import meshgen` is executed), entry_points (CLI commands)
- Reads from: importlib.metadata (package metadata), config.py, topology.py, render.py, main.py
- Writes to: None (package initialization only, exports public API)

Purpose: Package initialization for MeshGen. Defines public API exports and
         loads package metadata (__version__, __description__).

Package Structure:
    - main.py: CLI entry point and argument parsing
    - config.py: Declarative cluster description (TOML)
    - models.py: Entities, network shapes, error taxonomy
    - topology.py: Topology builder and query surface
    - render.py: Artifact renderers (manifest, agent config, metrics)
    - persist.py: Atomic write-if-different persistence
    - colorlog.py: Colored log output formatter
    - templates/: Jinja2 templates for the rendered artifacts

Network Shapes:
    - flat: all datacenters on one shared network
    - dual: per-datacenter networks plus a shared WAN network
    - islands: per-datacenter networks, WAN federation through mesh gateways

Public API Exports:
    - Config: Configuration class
    - Topology, build_topology(): Topology synthesis
    - Renderer: Artifact renderer
    - main(): CLI entry point
"""

import importlib.metadata as importlib_metadata

from .config import Config
from .topology import Topology, build_topology
from .render import Renderer
from .main import main

_metadata = importlib_metadata.metadata("meshgen")
__version__ = _metadata["Version"]
__description__ = _metadata["Summary"]


__all__ = ["Config", "Topology", "build_topology", "Renderer", "main"]
