"""Image command: delete an image captured by an earlier build."""

import asyncio
import logging
import os
import sys

from imgbake.build import Artifact
from imgbake.errors import ProviderError
from imgbake.provisioning.softlayer import DEFAULT_API_URL, SoftLayerClient
from imgbake.redact import register_secret

logger = logging.getLogger(__name__)


def _resolve_credentials(args):
    """Return (username, api_key) from CLI flags or SOFTLAYER_* env vars.

    Raises SystemExit if either is missing.
    """
    username = args.username or os.environ.get("SOFTLAYER_USERNAME")
    api_key = args.api_key or os.environ.get("SOFTLAYER_API_KEY")
    if not username or not api_key:
        logger.error("Error: SoftLayer credentials required. Use --username/--api-key or set SOFTLAYER_USERNAME/SOFTLAYER_API_KEY.")
        sys.exit(1)
    register_secret(api_key)
    return username, api_key


def handle_delete(args):
    """CLI handler for 'image delete'."""
    asyncio.run(_handle_delete(args))


async def _handle_delete(args):
    username, api_key = _resolve_credentials(args)
    client = SoftLayerClient(username, api_key, api_url=args.api_url)
    artifact = Artifact(image_name="", image_id=args.image_id, datacenter_name=args.datacenter, client=client)
    try:
        await artifact.destroy()
    except ProviderError as e:
        logger.error(f"Error deleting image {args.image_id}: {e}")
        sys.exit(1)
    logger.info("Image deleted.")


def register_image_command(subparsers):
    """Register the 'image' command with its 'delete' action."""
    image_parser = subparsers.add_parser("image", help="Manage captured images")
    action_subparsers = image_parser.add_subparsers(dest="action", required=True)

    parser = action_subparsers.add_parser("delete", help="Delete a captured image")
    parser.add_argument("--image-id", required=True, help="Image template group id")
    parser.add_argument("--datacenter", default="", help="Datacenter the image was built in (informational)")
    parser.add_argument("--username", default=None, help="SoftLayer username (fallback: SOFTLAYER_USERNAME env var)")
    parser.add_argument("--api-key", default=None, help="SoftLayer API key (fallback: SOFTLAYER_API_KEY env var)")
    parser.add_argument("--api-url", default=DEFAULT_API_URL, help=f"API base URL (default: {DEFAULT_API_URL})")
    parser.set_defaults(func=handle_delete)
