#!/usr/bin/env python3

# This file is part of ec2net. See LICENSE file for license information.
"""Configure policy routing for an EC2 network interface event."""
import argparse
import logging
import os
import sys

from ec2net import log
from ec2net.policy_routes import remove_interface, setup_interface
from ec2net.reloader import ReloadCoordinator
from ec2net.settings import DEFAULT_CONFIG_PATH, load_settings

LOG = logging.getLogger(__name__)
NAME = "ec2net"


def handle_args(name, args):
    """
    Handle the parsed command-line arguments.

    :param name: The name of the utility.
    :param args: The parsed arguments.
    :return: The number of configuration changes made.
    """
    settings = load_settings(args.config, debug=args.debug or None)
    log.setup_logging(settings.debug)

    LOG.debug(
        "%s called with the following arguments: {"
        "action: %s, iface: %s, mac: %s}",
        name,
        args.action,
        args.iface,
        args.mac,
    )

    coordinator = ReloadCoordinator(settings)
    with coordinator.register(args.iface):
        try:
            if args.action == "remove":
                changes = remove_interface(settings, args.iface, args.mac)
            else:
                changes = setup_interface(
                    settings,
                    args.iface,
                    args.mac,
                    initial_setup=args.action == "start",
                )
            if changes > 0:
                coordinator.flag_reload()
        except Exception:
            LOG.exception(
                "Received fatal exception handling %s of %s",
                args.action,
                args.iface,
            )
            raise
    return changes


def get_parser(parser=None):
    """
    Build or extend an arg parser for the ec2net utility.

    :param parser: Optional existing ArgumentParser instance.
    :return: ArgumentParser with proper argument configuration.
    """
    if not parser:
        parser = argparse.ArgumentParser(prog=NAME, description=__doc__)

    parser.add_argument(
        "action",
        choices=["start", "refresh", "remove"],
        help=(
            "start: initial setup of a newly attached interface, waiting "
            "for IMDS to catch up; refresh: regenerate without waiting; "
            "remove: drop the configuration of a detached interface"
        ),
    )
    parser.add_argument("iface", help="Kernel name of the interface")
    parser.add_argument("mac", help="Hardware address of the interface")
    parser.add_argument(
        "--config",
        help="YAML settings file (default: {0} if present)".format(
            DEFAULT_CONFIG_PATH
        ),
        default=None,
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=False,
        help="Log debug messages",
    )
    return parser


def main(argv=None):
    args = get_parser().parse_args(argv)
    if os.getuid() != 0:
        sys.stderr.write(
            "Root is required. Try prepending your command with sudo.\n"
        )
        return 1
    handle_args(NAME, args)
    return 0


if __name__ == "__main__":
    sys.exit(main())
