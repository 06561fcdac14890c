# This file is part of ec2net. See LICENSE file for license information.
import os
from unittest import mock

import pytest

from ec2net import policy_routes
from ec2net.imds import MetadataUnavailable
from ec2net.subp import ProcessExecutionError
from tests.unittests.helpers import (
    FakeMetadataClient,
    interface_metadata,
    settings_for,
)

M_PATH = "ec2net.policy_routes."
NETWORKD = "ec2net.net.networkd."
PRIMARY_MAC = "aa:bb:cc:dd:ee:00"
MAC = "aa:bb:cc:dd:ee:01"


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def time(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def ipv4_only(mocker):
    mocker.patch(NETWORKD + "net.subnet_supports_ipv4", return_value=True)
    mocker.patch(NETWORKD + "net.subnet_supports_ipv6", return_value=False)
    mocker.patch(NETWORKD + "net.get_link_altnames", return_value=[])
    mocker.patch(NETWORKD + "net.add_link_altname")


def read(path):
    with open(path) as stream:
        return stream.read()


class TestSetupInterface:
    def test_secondary_interface_end_to_end(self, tmp_path, ipv4_only):
        settings = settings_for(tmp_path)
        data = {"mac": PRIMARY_MAC}
        data.update(
            interface_metadata(
                MAC,
                **{
                    "device-number": "1",
                    "interface-id": "eni-0abc",
                    "local-ipv4s": ["10.0.1.10"],
                }
            )
        )
        imds = FakeMetadataClient(settings, data)

        changes = policy_routes.setup_interface(
            settings, "eth1", MAC, imds=imds
        )

        assert 2 == changes
        dropin_dir = os.path.join(settings.unitdir, "70-eth1.network.d")
        eni = read(os.path.join(dropin_dir, "eni.conf"))
        assert "DHCP=ipv6\n" in eni
        assert "RouteMetric=522\n" in eni
        assert "[DHCPv4]\nRouteTable=10001\n" in eni
        assert "[IPv6AcceptRA]\nRouteTable=10001\n" in eni
        assert "[Route]\nTable=10001\nGateway=_ipv6ra\n" in eni
        assert "[Route]\nGateway=_dhcp4\nTable=10001\n" in eni
        assert (
            "[RoutingPolicyRule]\nFrom=10.0.1.10\nPriority=10001\n"
            "Table=10001\n"
        ) == read(os.path.join(dropin_dir, "ec2net_policy_4.conf"))
        assert ["eni.conf", "ec2net_policy_4.conf"] == sorted(
            os.listdir(dropin_dir), reverse=True
        )

    def test_refresh_without_changes(self, tmp_path, ipv4_only):
        settings = settings_for(tmp_path)
        data = {"mac": PRIMARY_MAC}
        data.update(
            interface_metadata(
                MAC, **{"device-number": "1", "local-ipv4s": ["10.0.1.10"]}
            )
        )
        imds = FakeMetadataClient(settings, data)
        policy_routes.setup_interface(settings, "eth1", MAC, imds=imds)

        assert 0 == policy_routes.setup_interface(
            settings, "eth1", MAC, imds=imds
        )

    @mock.patch(
        "ec2net.net.subp.subp", side_effect=ProcessExecutionError(exit_code=1)
    )
    def test_link_query_failures_do_not_escape(self, m_subp, tmp_path):
        settings = settings_for(tmp_path)
        data = {"mac": PRIMARY_MAC}
        data.update(
            interface_metadata(
                MAC,
                **{
                    "device-number": "1",
                    "interface-id": "eni-0abc",
                    "local-ipv4s": ["10.0.1.10"],
                    "ipv6s": ["2600::10"],
                }
            )
        )
        imds = FakeMetadataClient(settings, data)

        # IPv4 is assumed and IPv6 is not when ip(8) cannot be queried
        assert 2 == policy_routes.setup_interface(
            settings, "eth1", MAC, imds=imds
        )
        dropin_dir = os.path.join(settings.unitdir, "70-eth1.network.d")
        assert ["eni.conf", "ec2net_policy_4.conf"] == sorted(
            os.listdir(dropin_dir), reverse=True
        )

    def test_primary_interface_has_no_rules(self, tmp_path, ipv4_only):
        settings = settings_for(tmp_path)
        data = {"mac": MAC}
        data.update(
            interface_metadata(
                MAC,
                **{
                    "device-number": "0",
                    "local-ipv4s": ["10.0.0.5"],
                    "ipv6s": ["2600::5"],
                }
            )
        )
        imds = FakeMetadataClient(settings, data)

        with mock.patch(
            M_PATH + "InterfaceConfigurator.create_rules"
        ) as m_rules:
            policy_routes.setup_interface(settings, "eth0", MAC, imds=imds)
        m_rules.assert_not_called()

    def test_device_zero_with_other_mac_gets_rules(self, tmp_path, ipv4_only):
        settings = settings_for(tmp_path)
        data = {"mac": PRIMARY_MAC}
        data.update(
            interface_metadata(
                MAC, **{"device-number": "0", "local-ipv4s": ["10.0.0.5"]}
            )
        )
        imds = FakeMetadataClient(settings, data)

        policy_routes.setup_interface(settings, "eth0", MAC, imds=imds)
        assert os.path.exists(
            os.path.join(
                settings.unitdir, "70-eth0.network.d", "ec2net_policy_4.conf"
            )
        )

    def test_initial_setup_polls_until_changes(self, tmp_path, mocker):
        settings = settings_for(tmp_path)
        imds = FakeMetadataClient(
            settings,
            {"mac": PRIMARY_MAC,
             "network/interfaces/macs/{0}/device-number".format(MAC): "1"},
        )
        m_once = mocker.patch(
            M_PATH + "configure_once", side_effect=[0, 0, 3]
        )
        clock = FakeClock()
        retry = policy_routes.RetryPolicy(
            max_wait=30, interval=1.0, time_fn=clock.time,
            sleep_fn=clock.sleep,
        )

        changes = policy_routes.setup_interface(
            settings, "eth1", MAC, initial_setup=True, imds=imds,
            retry=retry,
        )
        assert 3 == changes
        assert 3 == m_once.call_count
        assert [1.0, 1.0] == clock.sleeps

    def test_initial_setup_gives_up_at_deadline(self, tmp_path, mocker):
        settings = settings_for(tmp_path)
        imds = FakeMetadataClient(
            settings,
            {"mac": PRIMARY_MAC,
             "network/interfaces/macs/{0}/device-number".format(MAC): "1"},
        )
        m_once = mocker.patch(M_PATH + "configure_once", return_value=0)
        clock = FakeClock()
        retry = policy_routes.RetryPolicy(
            max_wait=5, interval=2.0, time_fn=clock.time,
            sleep_fn=clock.sleep,
        )

        assert 0 == policy_routes.setup_interface(
            settings, "eth1", MAC, initial_setup=True, imds=imds,
            retry=retry,
        )
        assert 4 == m_once.call_count
        assert 6.0 == clock.now

    def test_refresh_runs_once(self, tmp_path, mocker):
        settings = settings_for(tmp_path)
        imds = FakeMetadataClient(
            settings,
            {"mac": PRIMARY_MAC,
             "network/interfaces/macs/{0}/device-number".format(MAC): "1"},
        )
        m_once = mocker.patch(M_PATH + "configure_once", return_value=0)
        m_sleep = mock.Mock()
        retry = policy_routes.RetryPolicy(sleep_fn=m_sleep)

        policy_routes.setup_interface(
            settings, "eth1", MAC, imds=imds, retry=retry
        )
        m_once.assert_called_once()
        m_sleep.assert_not_called()

    def test_missing_device_number_propagates(self, tmp_path):
        settings = settings_for(tmp_path)
        imds = FakeMetadataClient(settings, {"mac": PRIMARY_MAC})
        with pytest.raises(MetadataUnavailable):
            policy_routes.setup_interface(settings, "eth1", MAC, imds=imds)


class TestIsPrimaryInterface:
    @pytest.mark.parametrize(
        "mac, device_number, expected",
        [
            (PRIMARY_MAC, 0, True),
            (PRIMARY_MAC, 1, False),
            (MAC, 0, False),
        ],
    )
    def test_is_primary_interface(self, mac, device_number, expected):
        assert expected is policy_routes.is_primary_interface(
            mac, device_number, PRIMARY_MAC
        )


class TestRemoveInterface:
    def test_remove_after_setup(self, tmp_path, ipv4_only):
        settings = settings_for(tmp_path)
        data = {"mac": PRIMARY_MAC}
        data.update(
            interface_metadata(
                MAC, **{"device-number": "1", "local-ipv4s": ["10.0.1.10"]}
            )
        )
        policy_routes.setup_interface(
            settings, "eth1", MAC, imds=FakeMetadataClient(settings, data)
        )

        assert 1 == policy_routes.remove_interface(settings, "eth1", MAC)
        assert [] == os.listdir(settings.unitdir)
