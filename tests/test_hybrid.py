"""
하이브리드 노드 프로바이더 및 init/upgrade/uninstall/debug 흐름 테스트
"""

import base64
import json
import os

import pytest
import yaml

from conftest import FakeManager, FakeNetwork, interface, no_sleep, pem
from hybrid_node_agent import flows
from hybrid_node_agent.aws import AWS_AUTH
from hybrid_node_agent.certificate import KUBELET_CERT_VALIDATION
from hybrid_node_agent.cluster import ClusterDetails, RemoteNetworkConfig
from hybrid_node_agent.daemon import DaemonStatus
from hybrid_node_agent.errors import ConfigurationError, ExternalDependencyError
from hybrid_node_agent.flows import NodeAgent
from hybrid_node_agent.hybrid import HybridNodeProvider
from hybrid_node_agent.network import NODE_IP_VALIDATION
from hybrid_node_agent.ssm import REGISTRATION_FILE_PATH
from hybrid_node_agent.system import NTP_SYNC, RHEL, SWAP
from hybrid_node_agent.kubernetes import K8S_ENDPOINT_ACCESS, KUBELET_VERSION_SKEW
from hybrid_node_agent.tracker import TRACKER_PATH, Tracker
from hybrid_node_agent.validation import is_remediable, with_remediation

SKIP = [NTP_SYNC, K8S_ENDPOINT_ACCESS]


def cluster_details(ca_pem, status="ACTIVE", remote=True):
    return ClusterDetails(
        name="hybrid-cluster",
        status=status,
        endpoint="https://ABCD.gr7.us-west-2.eks.amazonaws.com",
        certificate_authority_data=base64.b64encode(ca_pem).decode(),
        service_ipv4_cidr="172.16.0.0/16",
        version="1.31",
        remote_network_config=RemoteNetworkConfig(remote_node_networks=[["10.80.0.0/16"]]) if remote else None,
    )


def make_provider(config, tmp_path, cluster=None, reader=None, network=None, manager=None, skip=SKIP,
                  session=None):
    calls = []

    def read(session, cfg):
        calls.append(session)
        if reader is not None:
            return reader(session, cfg)
        return cluster

    provider = HybridNodeProvider(
        config,
        skip=skip,
        manager=manager or FakeManager(),
        network=network or FakeNetwork(lookups={"mock-hybrid-node": ["10.80.0.10"]},
                                       bind="10.80.0.20",
                                       addrs=[interface("10.80.0.10"), interface("10.80.0.20")]),
        install_root=str(tmp_path),
        session=session,
        cert_path=str(tmp_path / "var/lib/kubelet/pki/kubelet-server-current.pem"),
        os_name=RHEL,
        cluster_reader=read,
        kubelet_version_reader=lambda: "v1.30.2",
        caller_identity=lambda session: {"Arn": "arn:aws:sts::123456789010:assumed-role/hybrid/node"},
        sleep=no_sleep,
    )
    return provider, calls


def test_iam_roles_anywhere_init_end_to_end(tmp_path, iam_config, ca):
    _, ca_cert = ca
    cluster = cluster_details(pem(ca_cert))
    provider, reads = make_provider(iam_config, tmp_path, cluster=cluster)
    agent = NodeAgent(provider)

    tracker = agent.init()

    assert provider.session.region_name == iam_config.cluster.region == "us-west-2"
    assert len(reads) == 1

    iam = iam_config.hybrid.iam_roles_anywhere
    expected = (
        "[profile hybrid]\n"
        "region = us-west-2\n"
        "credential_process = /usr/local/bin/aws_signing_helper credential-process"
        f" --certificate {iam.certificate_path}"
        f" --private-key {iam.private_key_path}"
        f" --profile-arn {iam.profile_arn}"
        f" --role-arn {iam.role_arn}"
        f" --trust-anchor-arn {iam.trust_anchor_arn}"
        " --role-session-name mock-hybrid-node\n"
    ).encode()
    assert (tmp_path / "etc/aws/hybrid/config").read_bytes() == expected

    assert iam_config.status.node_name == "mock-hybrid-node"
    assert iam_config.cluster.api_server_endpoint == cluster.endpoint
    assert iam_config.cluster.certificate_authority == pem(ca_cert)
    assert iam_config.cluster.cidr == "172.16.0.0/16"

    kubeconfig = (tmp_path / "var/lib/kubelet/kubeconfig").read_text()
    assert "value: hybrid" in kubeconfig
    assert cluster.endpoint in kubeconfig

    assert provider.manager.names("enable") == ["containerd", "kubelet"]
    assert tracker.credential_strategy == "iam-roles-anywhere"
    assert tracker.daemons == ["containerd", "kubelet"]
    assert "/etc/aws/hybrid/config" in tracker.files
    assert Tracker.load(str(tmp_path)) == tracker

    statuses = {r.name: r.status for report in agent.reports for r in report.results}
    assert statuses[NODE_IP_VALIDATION] == "passed"
    assert NTP_SYNC not in statuses


def test_init_is_idempotent(tmp_path, iam_config, ca):
    _, ca_cert = ca
    provider, _ = make_provider(iam_config, tmp_path, cluster=cluster_details(pem(ca_cert)),
                                skip=SKIP + ["node-inactive"])
    NodeAgent(provider).init()
    snapshot = {p: open(p, 'rb').read() for p in _files(tmp_path) if not p.endswith("tracker.yaml")}

    NodeAgent(provider).init()

    assert {p: open(p, 'rb').read() for p in _files(tmp_path) if not p.endswith("tracker.yaml")} == snapshot


def _files(root):
    for dirpath, _, names in os.walk(root):
        for name in names:
            yield os.path.join(dirpath, name)


def test_uninstall_reverses_init(tmp_path, iam_config, ca):
    _, ca_cert = ca
    provider, _ = make_provider(iam_config, tmp_path, cluster=cluster_details(pem(ca_cert)))
    NodeAgent(provider).init()

    NodeAgent(provider).uninstall()

    assert provider.manager.names("stop") == ["kubelet", "containerd"]
    assert not (tmp_path / "etc/aws/hybrid/config").exists()
    assert not (tmp_path / "var/lib/kubelet/kubeconfig").exists()
    assert not (tmp_path / TRACKER_PATH.lstrip("/")).exists()


def test_inactive_cluster_is_fatal_before_daemons(tmp_path, iam_config, ca):
    _, ca_cert = ca
    provider, _ = make_provider(iam_config, tmp_path, cluster=cluster_details(pem(ca_cert), status="CREATING"))
    agent = NodeAgent(provider)

    with pytest.raises(ExternalDependencyError, match="is not active"):
        agent.init()

    assert agent.steps[-1].step == "cluster-details"
    assert agent.steps[-1].status == "failed"
    assert provider.manager.names("enable") == []


def test_missing_remote_network_config_is_fatal(tmp_path, iam_config, ca):
    _, ca_cert = ca
    provider, _ = make_provider(iam_config, tmp_path, cluster=cluster_details(pem(ca_cert), remote=False))
    with pytest.raises(ConfigurationError, match="remoteNetworkConfig"):
        NodeAgent(provider).init()


def test_describe_permission_failure_skips_cluster_validations(tmp_path, iam_config, ca):
    _, ca_cert = ca
    iam_config.cluster.api_server_endpoint = "https://example"
    iam_config.cluster.certificate_authority = pem(ca_cert)
    iam_config.cluster.cidr = "172.16.0.0/16"

    def denied(session, cfg):
        raise with_remediation(ExternalDependencyError("AccessDenied"), "grant DescribeCluster")

    provider, _ = make_provider(iam_config, tmp_path, reader=denied, network=FakeNetwork(bind=None))
    agent = NodeAgent(provider)

    agent.init()

    assert provider.get_cluster() is None
    statuses = {r.name: r.status for report in agent.reports for r in report.results}
    assert statuses[NODE_IP_VALIDATION] == "skipped"
    assert statuses[KUBELET_VERSION_SKEW] == "skipped"


def test_enrich_without_cluster_propagates_describe_error(tmp_path, iam_config):
    def denied(session, cfg):
        raise with_remediation(ExternalDependencyError("AccessDenied"), "grant DescribeCluster")

    provider, _ = make_provider(iam_config, tmp_path, reader=denied)
    with pytest.raises(Exception) as excinfo:
        NodeAgent(provider).init()
    assert is_remediable(excinfo.value)
    assert "AccessDenied" in str(excinfo.value)


def test_iam_certificate_is_validated_before_side_effects(tmp_path, iam_config):
    path = iam_config.hybrid.iam_roles_anywhere.certificate_path
    with open(path, 'w') as f:
        f.write("garbage")
    provider, _ = make_provider(iam_config, tmp_path)

    with pytest.raises(Exception) as excinfo:
        NodeAgent(provider).init()

    assert is_remediable(excinfo.value)
    assert not (tmp_path / "etc").exists()


def test_ssm_init_end_to_end(tmp_path, ssm_config, ca, monkeypatch):
    monkeypatch.delenv("AWS_SHARED_CREDENTIALS_FILE", raising=False)
    _, ca_cert = ca
    ssm_config.cluster.api_server_endpoint = "https://example"
    ssm_config.cluster.certificate_authority = pem(ca_cert)
    ssm_config.cluster.cidr = "172.16.0.0/16"

    registration = tmp_path / REGISTRATION_FILE_PATH.lstrip("/")
    registration.parent.mkdir(parents=True)
    registration.write_text(json.dumps({"ManagedInstanceID": "mi-0123456789", "Region": "us-west-2"}))
    creds = tmp_path / "root/.aws/credentials"
    creds.parent.mkdir(parents=True)
    creds.write_text("[default]\naws_access_key_id = AKIA\naws_secret_access_key = secret\n")

    provider, reads = make_provider(ssm_config, tmp_path, cluster=cluster_details(pem(ca_cert)))
    tracker = NodeAgent(provider).init()

    assert ssm_config.status.node_name == "mi-0123456789"
    assert provider.session.region_name == "us-west-2"
    assert provider.manager.names("enable") == ["amazon-ssm-agent", "containerd", "kubelet"]
    assert tracker.daemons == ["amazon-ssm-agent", "containerd", "kubelet"]
    assert "mi-0123456789" in (tmp_path / "etc/eks/kubelet/environment").read_text()

    deregistered = []
    monkeypatch.setattr(flows, "deregister", lambda registration, factory: deregistered.append(registration.read()))
    NodeAgent(provider).uninstall()

    assert deregistered[0].instance_id == "mi-0123456789"
    assert provider.manager.names("stop") == ["kubelet", "amazon-ssm-agent", "containerd"]


def test_upgrade_restarts_node_daemons(tmp_path, iam_config, ca):
    _, ca_cert = ca
    manager = FakeManager(statuses={"kubelet": DaemonStatus.RUNNING, "containerd": DaemonStatus.RUNNING})
    provider, _ = make_provider(iam_config, tmp_path, cluster=cluster_details(pem(ca_cert)), manager=manager)

    started = NodeAgent(provider).upgrade()

    assert started == ["containerd", "kubelet"]
    assert manager.names("stop") == ["kubelet", "containerd"]


def test_debug_is_read_only(tmp_path, iam_config, ca):
    _, ca_cert = ca
    iam_config.cluster.certificate_authority = pem(ca_cert)
    provider, reads = make_provider(iam_config, tmp_path, cluster=cluster_details(pem(ca_cert)),
                                    session=object())

    report = NodeAgent(provider).debug()

    statuses = {r.name: r.status for r in report.results}
    assert statuses == {
        SWAP: "passed",
        AWS_AUTH: "passed",
        NODE_IP_VALIDATION: "passed",
        KUBELET_CERT_VALIDATION: "passed",
        KUBELET_VERSION_SKEW: "passed",
    }
    assert report.passed
    assert len(reads) == 1
    assert provider.manager.calls == []
    assert not (tmp_path / "etc").exists()


def test_debug_reports_every_check_after_a_failure(tmp_path, iam_config, ca):
    _, ca_cert = ca
    iam_config.cluster.certificate_authority = pem(ca_cert)
    network = FakeNetwork(bind="192.168.1.1", addrs=[interface("192.168.1.1")])
    provider, _ = make_provider(iam_config, tmp_path, cluster=cluster_details(pem(ca_cert)),
                                network=network, session=object())

    report = NodeAgent(provider).debug()

    statuses = {r.name: r.status for r in report.results}
    assert statuses[NODE_IP_VALIDATION] == "failed"
    assert statuses[KUBELET_CERT_VALIDATION] == "passed"
    assert statuses[KUBELET_VERSION_SKEW] == "passed"
    assert not report.passed
    assert [r.name for r in report.failures] == [NODE_IP_VALIDATION]


def test_tracker_round_trip(tmp_path):
    tracker = Tracker(credential_strategy="ssm")
    tracker.add_daemon("kubelet")
    tracker.add_daemon("kubelet")
    tracker.add_file("/etc/containerd/config.toml")
    tracker.save(str(tmp_path))

    data = yaml.safe_load((tmp_path / TRACKER_PATH.lstrip("/")).read_text())
    assert data["daemons"] == ["kubelet"]
    assert Tracker.load(str(tmp_path)) == tracker
    Tracker.remove(str(tmp_path))
    assert Tracker.load(str(tmp_path)) is None
