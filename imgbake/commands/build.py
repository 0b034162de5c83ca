"""Build and validate commands: run an image build from a YAML config."""

import asyncio
import contextlib
import json
import logging
import signal
import sys
from pathlib import Path

from imgbake.build import Builder
from imgbake.config import load_config, prepare_config
from imgbake.errors import BuildCancelledError, ConfigError, ImgBakeError

logger = logging.getLogger(__name__)


def _load_or_exit(config_path):
    """Load and prepare the config, printing every problem and exiting on failure."""
    try:
        return prepare_config(load_config(config_path))
    except ConfigError as e:
        logger.error(f"Invalid configuration in {config_path}:")
        for err in e.errors:
            logger.error(f"  * {err}")
        sys.exit(1)


# ── CLI handlers ───────────────────────────────────────────────────


def handle_build(args):
    """CLI handler for 'build'."""
    config = _load_or_exit(args.config)
    try:
        asyncio.run(_handle_build(args, config))
    except KeyboardInterrupt:
        logger.error("Build interrupted.")
        sys.exit(130)


async def _handle_build(args, config):
    builder = Builder(config)

    loop = asyncio.get_running_loop()
    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGTERM, builder.cancel)

    logger.info(f"Building image '{config.image_name}' in {config.datacenter_name} (communicator: {config.communicator.type})")
    try:
        artifact = await builder.run()
    except BuildCancelledError:
        logger.error("Build cancelled.")
        sys.exit(1)
    except ImgBakeError as e:
        logger.error(f"Build failed: {e}")
        sys.exit(1)

    logger.info("")
    logger.info(f"Image:      {artifact.image_name}")
    logger.info(f"Image ID:   {artifact.image_id}")
    logger.info(f"Datacenter: {artifact.datacenter_name}")

    if args.manifest:
        manifest_path = Path(args.manifest)
        manifest_path.write_text(json.dumps(artifact.to_dict(), indent=2) + "\n")
        logger.info(f"Wrote {manifest_path}")


def handle_validate(args):
    """CLI handler for 'validate'."""
    config = _load_or_exit(args.config)
    logger.info(f"Configuration OK: image '{config.image_name}', communicator {config.communicator.type}")


# ── Registration ───────────────────────────────────────────────────


def register_build_command(subparsers):
    """Register the 'build' subcommand."""
    parser = subparsers.add_parser("build", help="Provision an instance, run provisioners and capture an image")
    parser.add_argument("config", help="Path to the build config YAML")
    parser.add_argument("--manifest", default=None, help="Write the resulting artifact as JSON to this path")
    parser.set_defaults(func=handle_build)


def register_validate_command(subparsers):
    """Register the 'validate' subcommand."""
    parser = subparsers.add_parser("validate", help="Check a build config without creating anything")
    parser.add_argument("config", help="Path to the build config YAML")
    parser.set_defaults(func=handle_validate)
