#!/usr/bin/env python3
"""Image builder — CLI entrypoint."""

import argparse

from imgbake.commands.build import register_build_command, register_validate_command
from imgbake.commands.image import register_image_command
from imgbake.logging_setup import setup_cli_logging


def main():
    parser = argparse.ArgumentParser(description="Build reusable IBM Cloud images")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug output")
    subparsers = parser.add_subparsers(dest="command", required=True)

    register_build_command(subparsers)
    register_validate_command(subparsers)
    register_image_command(subparsers)

    args = parser.parse_args()
    setup_cli_logging(verbose=args.verbose)
    args.func(args)


if __name__ == "__main__":
    main()
