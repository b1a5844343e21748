# File Chain (see DEVELOPER.md):
# Doc Version: v1.0.0
#
"""
MeshGen Main Entry Point - CLI Argument Parsing and Application Bootstrap

PURPOSE:
    Entry point for the meshgen CLI tool. Handles argument parsing, logging
    setup and configuration loading, then runs the single batch pass:
    configuration -> topology -> artifacts -> persistence.

WHO READS ME:
    - Users: via CLI command `meshgen` or `python -m meshgen`

WHO I READ:
    - config.py: Configuration loading and defaults
    - topology.py: build_topology()
    - render.py: Renderer
    - models.py: MeshgenError exception handling
    - colorlog.py: Custom log formatting

FLOW:
    1. Parse CLI arguments (create_argparser)
    2. Load configuration from config.toml (or defaults)
    3. Build the topology, any ConfigurationError aborts before rendering
    4. Render all artifacts in memory, then write the changed ones
"""

import argparse
import logging
import os
import sys
from pathlib import Path

import meshgen
from meshgen.colorlog import CustomFormatter
from meshgen.config import Config
from meshgen.models import MeshgenError
from meshgen.render import Renderer
from meshgen.topology import build_topology

_LOGGER = logging.getLogger(__name__)


def create_argparser(parser_class=argparse.ArgumentParser):
    """create the argparser for meshgen"""
    parser = parser_class(
        prog=meshgen.__name__, description=meshgen.__description__
    )
    config_settings = parser.add_argument_group("configuration")

    config_settings.add_argument(
        "-c",
        "--config",
        dest="configfile",
        help="Use the configuration from this file, defaults to %(default)s",
        default="config.toml",
    )
    config_settings.add_argument(
        "-w",
        "--write",
        dest="writeconfig",
        action="store_true",
        help="Write the default configuration to a file and exit",
        default=False,
    )
    config_settings.add_argument(
        "-v", "--version", action="version", version=f"%(prog)s {meshgen.__version__}"
    )
    config_settings.add_argument(
        "-l",
        "--loglevel",
        type=str,
        default=os.environ.get("LOG_LEVEL", "WARN"),
        help="DEBUG, INFO, WARN, ERROR, CRITICAL, defaults to %(default)s",
    )
    config_settings.add_argument(
        "-p",
        "--progress",
        action="store_true",
        help="show a progress bar",
    )

    parser.add_argument(
        "--verbose",
        action="store_true",
        default=False,
        help="Log every synthesized node, implies at least -l info",
    )
    parser.add_argument(
        "-o",
        "--output-dir",
        dest="output_dir",
        type=Path,
        default=Path("."),
        help="Directory the artifacts are written to, defaults to %(default)s",
    )
    return parser


def get_log_level(level_name: str) -> tuple[int, bool]:
    log_levels = {
        "CRITICAL": logging.CRITICAL,
        "ERROR": logging.ERROR,
        "WARN": logging.WARNING,
        "WARNING": logging.WARNING,
        "INFO": logging.INFO,
        "DEBUG": logging.DEBUG,
        "NOTSET": logging.NOTSET,
    }
    level_name = level_name.upper()
    if level_name in log_levels:
        return log_levels[level_name], False
    else:
        return logging.WARNING, True


def setup_logging(loglevel: str, verbose: bool = False):
    """sets up the logging, takes the given loglevel and uses the custom,
    colorful log formatter, verbose raises the level to at least INFO
    """
    logging.basicConfig(level=logging.WARN)
    level, unknown_loglevel = get_log_level(loglevel)
    if verbose and level > logging.INFO:
        level = logging.INFO
    logging.root.setLevel(level)
    custom_formatter = CustomFormatter(color=sys.stderr.isatty())
    for handler in logging.root.handlers:
        handler.setFormatter(custom_formatter)
    if unknown_loglevel:
        _LOGGER.warning("Unknown log level: %s", loglevel.upper())


def generate(cfg: Config, output_dir: Path, verbose=False, progress=False) -> list[Path]:
    """one batch pass, returns the paths that were written"""
    topology = build_topology(cfg.topology)
    renderer = Renderer(cfg, topology)
    if verbose:
        renderer.log_nodes()
    return renderer.write(output_dir, progress=progress)


def main(argv: list[str] | None = None):
    """main function, returns 0 on success, 1 otherwise"""
    parser = create_argparser()
    args = parser.parse_args(argv)
    setup_logging(args.loglevel, verbose=args.verbose)

    try:
        cfg = Config.load(args.configfile)
        if args.writeconfig:
            cfg.save(args.configfile)
            return 0

        generate(cfg, args.output_dir, verbose=args.verbose, progress=args.progress)
    except MeshgenError as exc:
        _LOGGER.error(exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
