# This file is part of ec2net. See LICENSE file for license information.
"""Per-interface policy routing setup.

Interfaces get addresses and routes from DHCP. Routes land in the main
table with metrics derived from the device number so that route ordering
is deterministic. Every non-primary interface also gets source based
policy rules, so that egress traffic from any of its addresses (primary
or secondary, IPv4 or IPv6, including delegated prefixes) is routed
through an interface specific table.
"""
import dataclasses
import logging
import time
from typing import Callable, Optional

from ec2net.imds import MetadataClient
from ec2net.net.networkd import InterfaceConfigurator
from ec2net.settings import Settings

LOG = logging.getLogger(__name__)


@dataclasses.dataclass
class RetryPolicy:
    """Bounded polling: at most max_wait seconds, interval between tries."""

    max_wait: float = 30.0
    interval: float = 1.0
    time_fn: Callable[[], float] = time.monotonic
    sleep_fn: Callable[[float], None] = time.sleep

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "RetryPolicy":
        return cls(
            max_wait=settings.setup_max_wait,
            interval=settings.setup_interval,
            **kwargs,
        )

    def deadline(self) -> float:
        return self.time_fn() + self.max_wait

    def expired(self, deadline: float) -> bool:
        return self.time_fn() >= deadline


def is_primary_interface(
    mac: str, device_number: int, primary_mac: Optional[str]
) -> bool:
    return device_number == 0 and mac == primary_mac


def configure_once(
    configurator: InterfaceConfigurator, primary: bool
) -> int:
    """Run every generator once and return how many artifacts changed."""
    changes = configurator.create_interface_config()
    for family in (4, 6):
        if primary:
            LOG.debug(
                "Skipping ipv%s rules for primary interface %s",
                family,
                configurator.iface,
            )
        else:
            changes += configurator.create_rules(family)
    changes += configurator.create_ipv4_aliases()
    return changes


def setup_interface(
    settings: Settings,
    iface: str,
    mac: str,
    initial_setup: bool = False,
    imds: Optional[MetadataClient] = None,
    retry: Optional[RetryPolicy] = None,
) -> int:
    """Configure one interface, returning the number of changed artifacts.

    New attachments take a while to be fully reflected in IMDS, so during
    initial setup the generators are re-run until something changes or
    the retry policy runs out. Refreshes of an existing attachment run
    them once.
    """
    if imds is None:
        imds = MetadataClient(settings, initial_setup=initial_setup)
    if retry is None:
        retry = RetryPolicy.from_settings(settings)

    primary_mac = imds.fetch("mac").strip()
    device_number = int(imds.fetch_for_interface(mac, "device-number"))
    configurator = InterfaceConfigurator(
        settings, imds, iface, mac, device_number
    )
    primary = is_primary_interface(mac, device_number, primary_mac)

    deadline = retry.deadline()
    while True:
        changes = configure_once(configurator, primary)
        if not initial_setup or changes > 0:
            break
        if retry.expired(deadline):
            LOG.debug(
                "No configuration changes for %s after %ss",
                iface,
                retry.max_wait,
            )
            break
        retry.sleep_fn(retry.interval)
    LOG.info("Configured %s with %d change(s)", iface, changes)
    return changes


def remove_interface(
    settings: Settings,
    iface: str,
    mac: str,
) -> int:
    """Forget the generated configuration of a detached interface."""
    configurator = InterfaceConfigurator(
        settings, MetadataClient(settings), iface, mac
    )
    return configurator.remove_interface_config()
