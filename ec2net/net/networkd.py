# This file is part of ec2net. See LICENSE file for license information.
"""Generate systemd-networkd configuration for one EC2 network interface.

Every artifact is rendered from IMDS data and published through
atomic_helper.install_content so that regenerating identical data is a
no-op which does not trigger a networkd reload.
"""
import contextlib
import logging
import os
from typing import List, Optional, Sequence, Tuple

from ec2net import atomic_helper, net
from ec2net.imds import MetadataClient, MetadataUnavailable
from ec2net.settings import Settings
from ec2net.subp import ProcessExecutionError

LOG = logging.getLogger(__name__)

Section = Tuple[str, Sequence[Tuple[str, object]]]

BASE_DROPIN = "eni.conf"
ALIAS_DROPIN = "ec2net_alias.conf"
POLICY_DROPIN = "ec2net_policy_{family}.conf"

# IMDS keys holding an interface's own addresses and delegated prefixes
FAMILY_KEYS = {
    4: ("local-ipv4s", "ipv4-prefix"),
    6: ("ipv6s", "ipv6-prefix"),
}


class InvalidArgument(ValueError):
    pass


def render_sections(sections: List[Section], header: str = "") -> str:
    """Render networkd ini sections, keeping order and repeated sections."""
    lines = [header] if header else []
    for name, items in sections:
        lines.append("[{0}]".format(name))
        lines.extend("{0}={1}".format(key, value) for key, value in items)
    return "\n".join(lines) + "\n" if lines else ""


def _require(**kwargs):
    for name, value in kwargs.items():
        if value is None or value == "":
            raise InvalidArgument("Invalid {0}: {1!r}".format(name, value))


class InterfaceConfigurator:
    """networkd config generators for a single interface.

    @param iface: kernel name of the interface.
    @param mac: its hardware address, as used in IMDS paths.
    @param device_number: the platform slot index of the attachment.
    """

    def __init__(
        self,
        settings: Settings,
        imds: MetadataClient,
        iface: str,
        mac: str,
        device_number: Optional[int] = None,
    ):
        _require(iface=iface, mac=mac)
        self.settings = settings
        self.imds = imds
        self.iface = iface
        self.mac = mac
        self.device_number = device_number

    @property
    def cfgfile(self) -> str:
        return os.path.join(
            self.settings.unitdir, "70-{0}.network".format(self.iface)
        )

    @property
    def dropin_dir(self) -> str:
        return self.cfgfile + ".d"

    def _device_number(self) -> int:
        _require(device_number=self.device_number)
        return int(self.device_number)

    def render_overrides(self, supports_ipv4: bool) -> str:
        """Render the base drop-in for this interface."""
        device_number = self._device_number()
        metric = self.settings.route_metric(device_number)
        table = 0
        dhcp = "yes"
        if device_number > 0:
            table = self.settings.rule_id(device_number)
            dhcp = "ipv6"

        sections: List[Section] = [
            ("Match", [("MACAddress", self.mac)]),
            ("Network", [("DHCP", dhcp)]),
            ("DHCPv4", [("RouteMetric", metric)]),
            ("DHCPv6", [("RouteMetric", metric)]),
        ]
        if table > 0:
            sections += [
                ("Route", [("Table", table), ("Gateway", "_ipv6ra")]),
                ("DHCPv4", [("RouteTable", table)]),
                ("IPv6AcceptRA", [("RouteTable", table)]),
            ]
            # v6-only subnets get no IPv4 routes in the private table
            if supports_ipv4:
                sections.append(
                    ("Route", [("Gateway", "_dhcp4"), ("Table", table)])
                )
        header = (
            "# Configuration for {0} generated by ec2net".format(self.iface)
        )
        return render_sections(sections, header=header)

    def create_interface_config(self) -> int:
        """Link the default config for the interface and add its drop-in.

        An existing config file is owned by the administrator and left
        alone.
        """
        _require(cfgfile=self.cfgfile)
        if os.path.lexists(self.cfgfile):
            LOG.debug("Using existing cfgfile %s", self.cfgfile)
            return 0

        content = self.render_overrides(net.subnet_supports_ipv4(self.iface))
        # The link must only exist once its drop-in is installed.
        atomic_helper.install_content(
            os.path.join(self.dropin_dir, BASE_DROPIN), content
        )
        LOG.debug(
            "Linking %s to %s", self.cfgfile, self.settings.default_config
        )
        os.symlink(self.settings.default_config, self.cfgfile)
        self.add_altnames()
        return 1

    def _fetch_sources(self, family: int) -> List[str]:
        address_key, prefix_key = FAMILY_KEYS[family]
        # IMDS cannot tell a propagation delay from an empty answer, so a
        # failure here means "no addresses yet" rather than an error.
        try:
            addresses = self.imds.fetch_interface_list(self.mac, address_key)
        except MetadataUnavailable as e:
            LOG.debug("No %s for %s: %s", address_key, self.mac, e)
            addresses = []
        # IMDS answers with an error when no prefix is delegated, so a
        # single attempt is made.
        try:
            prefixes = self.imds.fetch_interface_list(
                self.mac, prefix_key, max_attempts=1
            )
        except MetadataUnavailable as e:
            LOG.debug("No %s for %s: %s", prefix_key, self.mac, e)
            prefixes = []
        return addresses + prefixes

    def render_rules(self, sources: Sequence[str]) -> str:
        rule_id = self.settings.rule_id(self._device_number())
        return render_sections(
            [
                (
                    "RoutingPolicyRule",
                    [("From", source), ("Priority", rule_id),
                     ("Table", rule_id)],
                )
                for source in sources
            ]
        )

    def create_rules(self, family: int) -> int:
        """Write source based routing policy rules for one address family."""
        self._device_number()
        if family == 4:
            supported = net.subnet_supports_ipv4(self.iface)
        elif family == 6:
            supported = net.subnet_supports_ipv6(self.iface)
        else:
            raise InvalidArgument(
                "Unable to determine protocol for family {0!r}".format(family)
            )
        if not supported:
            LOG.debug("Subnet of %s has no IPv%s", self.iface, family)
            return 0

        content = self.render_rules(self._fetch_sources(family))
        target = os.path.join(
            self.dropin_dir, POLICY_DROPIN.format(family=family)
        )
        return int(atomic_helper.install_content(target, content))

    @staticmethod
    def render_aliases(local_ipv4s: Sequence[str]) -> str:
        # The first address is the primary one, assigned by DHCP.
        return render_sections(
            [
                ("Address", [("Address", "{0}/32".format(addr)),
                             ("AddPrefixRoute", "false")])
                for addr in sorted(local_ipv4s[1:])
            ]
        )

    def create_ipv4_aliases(self) -> int:
        """Add secondary private IPv4 addresses as static addresses."""
        if not net.subnet_supports_ipv4(self.iface):
            return 0
        try:
            addresses = self.imds.fetch_interface_list(
                self.mac, "local-ipv4s"
            )
        except MetadataUnavailable as e:
            LOG.debug("No local-ipv4s for %s: %s", self.mac, e)
            addresses = []
        target = os.path.join(self.dropin_dir, ALIAS_DROPIN)
        return int(
            atomic_helper.install_content(
                target, self.render_aliases(addresses)
            )
        )

    def add_altnames(self):
        """Name the link after its ENI id and device number, best effort.

        Adding the altnames with ip(8) avoids waiting for a networkd
        reload and a udev "move" event, which .link files would need.
        """
        try:
            existing = net.get_link_altnames(self.iface)
        except ProcessExecutionError as e:
            LOG.debug("Unable to list altnames of %s: %s", self.iface, e)
            existing = []
        self._add_altname("interface-id", "{0}", existing)
        self._add_altname(
            "device-number",
            "device-number-{0}",
            existing,
            prefix="device-number",
        )

    def _add_altname(self, key, template, existing, prefix=None):
        try:
            value = self.imds.fetch_for_interface(self.mac, key)
        except MetadataUnavailable as e:
            LOG.debug("No %s for %s: %s", key, self.mac, e)
            return
        if not value:
            return
        altname = template.format(value)
        if altname in existing:
            return
        # A link keeps the device-number altname it was first given.
        if prefix and any(name.startswith(prefix) for name in existing):
            return
        try:
            net.add_link_altname(self.iface, altname)
        except ProcessExecutionError as e:
            LOG.debug(
                "Unable to add altname %s to %s: %s", altname, self.iface, e
            )

    def remove_interface_config(self) -> int:
        """Drop the generated config of a detached interface.

        Only a config file that is our link to the default config is
        removed, along with the drop-ins we generate.
        """
        removed = 0
        if (
            os.path.islink(self.cfgfile)
            and os.readlink(self.cfgfile) == self.settings.default_config
        ):
            LOG.debug("Removing %s", self.cfgfile)
            os.unlink(self.cfgfile)
            removed = 1
        generated = [BASE_DROPIN, ALIAS_DROPIN] + [
            POLICY_DROPIN.format(family=family) for family in FAMILY_KEYS
        ]
        for name in generated:
            path = os.path.join(self.dropin_dir, name)
            if os.path.exists(path):
                LOG.debug("Removing %s", path)
                os.unlink(path)
                removed = 1
        # Drop-ins added by the administrator keep the directory alive.
        with contextlib.suppress(OSError):
            os.rmdir(self.dropin_dir)
        return removed
