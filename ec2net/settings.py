# This file is part of ec2net. See LICENSE file for license information.
"""Runtime settings shared by every ec2net component.

Settings are immutable. They are built once per process, optionally
merged with a YAML file, and handed to each component's constructor.
"""
import dataclasses
import logging
import os
import shlex
from typing import Optional, Tuple

import yaml

LOG = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "/etc/ec2net/ec2net.cfg"
IMDS_ENDPOINTS = (
    "http://169.254.169.254/latest",
    "http://[fd00:ec2::254]/latest",
)
RULE_BASE = 10000
METRIC_BASE = 512


@dataclasses.dataclass(frozen=True)
class Settings:
    imds_endpoints: Tuple[str, ...] = IMDS_ENDPOINTS
    imds_token_path: str = "api/token"
    imds_token_ttl: int = 60
    imds_connect_timeout: float = 0.15
    imds_timeout: float = 5.0
    imds_max_attempts: int = 10
    token_max_wait: float = 30.0
    token_sleep_time: float = 0.5
    setup_max_wait: float = 30.0
    setup_interval: float = 1.0
    rule_base: int = RULE_BASE
    metric_base: int = METRIC_BASE
    unitdir: str = "/run/systemd/network"
    default_config: str = "/usr/lib/systemd/network/80-ec2.network"
    lockdir: str = "/run/amazon-ec2-net-utils/setup-policy-routes"
    reload_flag: str = (
        "/run/amazon-ec2-net-utils/.policy-routes-reload-networkd"
    )
    reload_command: Tuple[str, ...] = ("networkctl", "reload")
    reload_timeout: float = 30.0
    register_max_attempts: int = 100
    debug: bool = False

    def rule_id(self, device_number: int) -> int:
        """Policy rule priority and routing table id for a device slot."""
        return self.rule_base + device_number

    def route_metric(self, device_number: int) -> int:
        return self.metric_base + 10 * device_number


_TUPLE_FIELDS = ("imds_endpoints", "reload_command")


def _coerce(name, value):
    if name in _TUPLE_FIELDS:
        if isinstance(value, str):
            if name == "reload_command":
                return tuple(shlex.split(value))
            return (value,)
        return tuple(value)
    return value


def load_settings(path: Optional[str] = None, **overrides) -> Settings:
    """Build Settings from defaults, an optional YAML file and overrides.

    A missing file at the default location is not an error. Keys which
    are not Settings fields are ignored with a warning.
    """
    cfg = {}
    if path is None and os.path.exists(DEFAULT_CONFIG_PATH):
        path = DEFAULT_CONFIG_PATH
    if path is not None:
        with open(path, "r") as stream:
            loaded = yaml.safe_load(stream) or {}
        if not isinstance(loaded, dict):
            raise ValueError(
                "Expected a mapping in {0}, found {1}".format(
                    path, type(loaded).__name__
                )
            )
        cfg.update(loaded)
    cfg.update({k: v for k, v in overrides.items() if v is not None})

    known = {field.name for field in dataclasses.fields(Settings)}
    values = {}
    for key, value in cfg.items():
        if key not in known:
            LOG.warning("Ignoring unknown setting '%s'", key)
            continue
        values[key] = _coerce(key, value)
    return Settings(**values)
