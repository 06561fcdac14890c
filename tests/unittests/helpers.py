# This file is part of ec2net. See LICENSE file for license information.
import dataclasses

from ec2net.imds import MetadataClient, MetadataUnavailable
from ec2net.settings import Settings


def settings_for(tmp_path, **kwargs) -> Settings:
    """Settings whose shared paths all live under tmp_path."""
    values = dict(
        unitdir=str(tmp_path / "network"),
        default_config=str(tmp_path / "lib" / "80-ec2.network"),
        lockdir=str(tmp_path / "lock" / "setup-policy-routes"),
        reload_flag=str(tmp_path / "lock" / ".reload-networkd"),
        token_max_wait=0,
        token_sleep_time=0,
    )
    values.update(kwargs)
    return dataclasses.replace(Settings(), **values)


class FakeMetadataClient(MetadataClient):
    """MetadataClient serving values from a dict of metadata paths.

    List values are returned newline separated, like IMDS does. Paths
    missing from the dict fail like an exhausted IMDS read.
    """

    def __init__(self, settings, data, initial_setup=False):
        super().__init__(settings, initial_setup=initial_setup)
        self.data = data
        self.requests = []

    def fetch(self, path, max_attempts=None):
        self.requests.append((path, max_attempts))
        if path not in self.data:
            raise MetadataUnavailable("404 for {0}".format(path), code=404)
        value = self.data[path]
        if isinstance(value, (list, tuple)):
            return "\n".join(value)
        return str(value)


def interface_metadata(mac, **keys):
    prefix = "network/interfaces/macs/{0}/".format(mac)
    return {prefix + key: value for key, value in keys.items()}
