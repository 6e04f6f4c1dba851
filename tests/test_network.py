"""
노드 네트워크 식별 모듈 테스트
"""

import ipaddress
import json

import pytest

from conftest import FakeNetwork, FakeRunner, interface
from hybrid_node_agent.cluster import ClusterDetails, RemoteNetworkConfig
from hybrid_node_agent.errors import ConfigurationError, ExternalDependencyError
from hybrid_node_agent.network import (
    NODE_IP_VALIDATION,
    DefaultNetwork,
    NodeIPValidator,
    check_interface_mtu,
    check_ip_in_cidrs,
    check_mtu,
    get_node_ip,
    node_ip_from_flags,
    parse_ip_addr_json,
)
from hybrid_node_agent.validation import is_remediable, is_skipped


def ip(value):
    return ipaddress.ip_address(value)


def cluster_with(cidrs, remote=True):
    return ClusterDetails(
        name="hybrid-cluster",
        status="ACTIVE",
        remote_network_config=RemoteNetworkConfig(remote_node_networks=[cidrs]) if remote else None,
    )


def test_flag_wins_over_other_sources():
    network = FakeNetwork(lookups={"node": ["10.1.0.5"]}, bind="10.2.0.5")
    assert get_node_ip(["--node-ip=10.0.0.5"], "node", network) == ip("10.0.0.5")
    assert network.lookup_calls == []


def test_invalid_flag_values():
    with pytest.raises(ConfigurationError):
        node_ip_from_flags(["--node-ip=not-an-ip"])
    with pytest.raises(ConfigurationError, match="IPv6"):
        node_ip_from_flags(["--node-ip=fd00::1"])
    with pytest.raises(ConfigurationError, match="unspecified"):
        node_ip_from_flags(["--node-ip=0.0.0.0"])


def test_dns_candidate_must_be_bound_to_interface():
    network = FakeNetwork(
        lookups={"node": ["127.0.0.1", "fd00::5", "10.1.0.9", "10.1.0.5"]},
        bind="10.2.0.5",
        addrs=[interface("10.1.0.5")],
    )
    assert get_node_ip([], "node", network) == ip("10.1.0.5")


def test_falls_back_to_bind_address():
    network = FakeNetwork(lookups={"node": ["169.254.0.10"]}, bind="10.2.0.5",
                          addrs=[interface("169.254.0.10")])
    assert get_node_ip([], "node", network) == ip("10.2.0.5")


def test_no_dns_lookup_without_node_name():
    network = FakeNetwork(bind="10.2.0.5")
    assert get_node_ip([], "", network) == ip("10.2.0.5")
    assert network.lookup_calls == []


def test_no_source_is_fatal():
    network = FakeNetwork(bind_error=ExternalDependencyError("no route"))
    with pytest.raises(ExternalDependencyError, match="couldn't get ip address of node"):
        get_node_ip([], "", network)


def test_ip_in_cidrs():
    check_ip_in_cidrs(ip("10.80.0.10"), ["192.168.0.0/16", "10.80.0.0/16"])

    with pytest.raises(ExternalDependencyError) as excinfo:
        check_ip_in_cidrs(ip("172.16.0.1"), ["10.80.0.0/16", "192.168.0.0/16"])
    assert "node IP 172.16.0.1 is not in any of the remote network CIDR blocks: [10.80.0.0/16, 192.168.0.0/16]" \
        in str(excinfo.value)


@pytest.mark.parametrize("mtu", [68, 1500, 8000, 9001])
def test_mtu_boundaries_accepted(mtu):
    check_mtu(mtu)


@pytest.mark.parametrize("mtu", [0, -1, 67, 1501, 7999, 9002])
def test_mtu_boundaries_rejected(mtu):
    with pytest.raises(ValueError):
        check_mtu(mtu)


def test_interface_mtu_for_node_ip():
    addrs = [interface("10.0.0.1", mtu=9100, name="eth1"), interface("10.0.0.5", mtu=1450)]
    check_interface_mtu(ip("10.0.0.5"), addrs)

    with pytest.raises(ExternalDependencyError, match="eth1"):
        check_interface_mtu(ip("10.0.0.1"), addrs)
    with pytest.raises(ExternalDependencyError, match="no active network interface"):
        check_interface_mtu(ip("10.0.0.9"), addrs)


def test_parse_ip_addr_json_skips_loopback_and_down():
    output = json.dumps([
        {"ifname": "lo", "flags": ["LOOPBACK", "UP"], "mtu": 65536, "addr_info": [{"local": "127.0.0.1"}]},
        {"ifname": "eth0", "flags": ["BROADCAST", "UP"], "mtu": 1500,
         "addr_info": [{"local": "10.0.0.5"}, {"local": "fe80::1"}]},
        {"ifname": "eth1", "flags": ["BROADCAST"], "mtu": 1500, "addr_info": [{"local": "10.0.1.5"}]},
    ])
    addrs = parse_ip_addr_json(output)
    assert [(a.interface, a.ip, a.mtu) for a in addrs] == [("eth0", "10.0.0.5", 1500), ("eth0", "fe80::1", 1500)]


def test_default_network_bind_address_uses_prefsrc():
    runner = FakeRunner().add(["ip", "-j", "route", "get"], stdout=json.dumps([{"dst": "1.1.1.1", "prefsrc": "10.0.0.5"}]))
    assert DefaultNetwork(runner).resolve_bind_address() == "10.0.0.5"


def test_validator_skips_without_cluster(informer, iam_config):
    validator = NodeIPValidator(lambda: None, FakeNetwork())
    validator.run(informer, iam_config)
    assert informer.events[0] == ("starting", NODE_IP_VALIDATION)
    assert informer.events[1][:2] == ("done", NODE_IP_VALIDATION)
    assert is_skipped(informer.events[1][2])


def test_validator_passes(informer, iam_config):
    iam_config.kubelet.flags = ["--node-ip=10.80.0.10"]
    network = FakeNetwork(addrs=[interface("10.80.0.10", mtu=9001)])
    NodeIPValidator(lambda: cluster_with(["10.80.0.0/16"]), network).run(informer, iam_config)
    assert informer.events[-1] == ("done", NODE_IP_VALIDATION, None)


def test_validator_ip_outside_cidrs_is_remediable(informer, iam_config):
    iam_config.kubelet.flags = ["--node-ip=172.16.0.1"]
    validator = NodeIPValidator(lambda: cluster_with(["10.80.0.0/16"]), FakeNetwork())

    with pytest.raises(Exception) as excinfo:
        validator.run(informer, iam_config)

    assert is_remediable(excinfo.value)
    assert informer.events[-1][2] is excinfo.value


def test_validator_requires_remote_network_config(informer, iam_config):
    validator = NodeIPValidator(lambda: cluster_with([], remote=False), FakeNetwork(bind="10.0.0.1"))
    with pytest.raises(Exception, match="remote network config is not set"):
        validator.run(informer, iam_config)


def test_validator_mtu_check_can_be_disabled(informer, iam_config):
    iam_config.kubelet.flags = ["--node-ip=10.80.0.10"]
    network = FakeNetwork(addrs=[interface("10.80.0.10", mtu=9500)])

    NodeIPValidator(lambda: cluster_with(["10.80.0.0/16"]), network, validate_mtu=False).run(informer, iam_config)

    with pytest.raises(Exception, match="invalid MTU"):
        NodeIPValidator(lambda: cluster_with(["10.80.0.0/16"]), network).run(informer, iam_config)


def test_validator_malformed_interface_output_is_remediable(informer, iam_config):
    iam_config.status.node_name = "mock-hybrid-node"
    runner = FakeRunner().add(["ip", "-j", "addr"], stdout="not json")
    network = DefaultNetwork(runner)
    network.lookup_ip = lambda host: ["10.80.0.10"]

    with pytest.raises(Exception) as excinfo:
        NodeIPValidator(lambda: cluster_with(["10.80.0.0/16"]), network).run(informer, iam_config)

    assert is_remediable(excinfo.value)
    assert informer.events[-1][2] is excinfo.value
