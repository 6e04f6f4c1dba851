"""
공용 테스트 픽스처
서비스 매니저, 네트워크, 명령 실행기, 인증서 생성 헬퍼
"""

import subprocess
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from hybrid_node_agent.daemon import DaemonManager, DaemonStatus  # noqa: E402
from hybrid_node_agent.network import InterfaceAddress  # noqa: E402
from hybrid_node_agent.validation import Informer  # noqa: E402


class FakeManager(DaemonManager):
    """호출을 기록하는 서비스 매니저"""

    def __init__(self, statuses=None, restart_failures=0):
        self.calls = []
        self.statuses = dict(statuses or {})
        self.restart_failures = restart_failures

    def reload(self):
        self.calls.append(("reload",))

    def enable(self, name):
        self.calls.append(("enable", name))

    def start(self, name):
        self.calls.append(("start", name))
        self.statuses[name] = DaemonStatus.RUNNING

    def restart(self, name):
        self.calls.append(("restart", name))
        if self.restart_failures > 0:
            self.restart_failures -= 1
            raise RuntimeError(f"restart {name} failed")
        self.statuses[name] = DaemonStatus.RUNNING

    def stop(self, name):
        self.calls.append(("stop", name))
        self.statuses[name] = DaemonStatus.STOPPED

    def status(self, name):
        return self.statuses.get(name, DaemonStatus.NOT_LOADED)

    def names(self, action):
        return [c[1] for c in self.calls if c[0] == action]


class FakeNetwork:
    def __init__(self, lookups=None, bind=None, addrs=None, bind_error=None):
        self.lookups = lookups or {}
        self.bind = bind
        self.addrs = addrs or []
        self.bind_error = bind_error
        self.lookup_calls = []

    def lookup_ip(self, host):
        self.lookup_calls.append(host)
        return list(self.lookups.get(host, []))

    def resolve_bind_address(self):
        if self.bind_error is not None:
            raise self.bind_error
        return self.bind

    def interface_addrs(self):
        return list(self.addrs)


class RecordingInformer(Informer):
    def __init__(self):
        self.events = []

    def starting(self, name, message):
        self.events.append(("starting", name))

    def done(self, name, error):
        self.events.append(("done", name, error))


class FakeRunner:
    """argv 앞부분으로 결과를 찾는 subprocess.run 대체"""

    def __init__(self, results=None):
        self.results = list(results or [])
        self.calls = []

    def add(self, prefix, stdout="", returncode=0, stderr=""):
        self.results.append((list(prefix), stdout, returncode, stderr))
        return self

    def __call__(self, args, **kwargs):
        self.calls.append(list(args))
        for prefix, stdout, returncode, stderr in self.results:
            if args[:len(prefix)] == prefix:
                return subprocess.CompletedProcess(args, returncode, stdout, stderr)
        return subprocess.CompletedProcess(args, 0, "", "")


def no_sleep(seconds):
    pass


def interface(ip, mtu=1500, name="eth0"):
    return InterfaceAddress(name, ip, mtu)


def _name(common_name):
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


def make_ca(common_name="kubernetes"):
    """자체 서명 CA (키, 인증서)"""
    key = ec.generate_private_key(ec.SECP256R1())
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(_name(common_name))
        .issuer_name(_name(common_name))
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=365))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )
    return key, cert


def make_leaf(ca_key, ca_cert, not_before=None, not_after=None, common_name="node"):
    key = ec.generate_private_key(ec.SECP256R1())
    now = datetime.now(timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(_name(common_name))
        .issuer_name(ca_cert.subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before or now - timedelta(days=1))
        .not_valid_after(not_after or now + timedelta(days=30))
        .sign(ca_key, hashes.SHA256())
    )


def pem(cert):
    return cert.public_bytes(serialization.Encoding.PEM)


@pytest.fixture
def manager():
    return FakeManager()


@pytest.fixture
def informer():
    return RecordingInformer()


@pytest.fixture
def ca():
    return make_ca()


@pytest.fixture
def iam_config(tmp_path, ca):
    """유효한 IAM Roles Anywhere 노드 설정"""
    from hybrid_node_agent.config import Config, IAMRolesAnywhereConfig

    ca_key, ca_cert = ca
    cert_path = tmp_path / "server.pem"
    key_path = tmp_path / "server.key"
    cert_path.write_bytes(pem(make_leaf(ca_key, ca_cert)))
    key_path.write_text("key")

    cfg = Config()
    cfg.cluster.name = "hybrid-cluster"
    cfg.cluster.region = "us-west-2"
    cfg.hybrid.iam_roles_anywhere = IAMRolesAnywhereConfig(
        node_name="mock-hybrid-node",
        trust_anchor_arn="arn:aws:rolesanywhere:us-west-2:123456789010:trust-anchor/ta",
        profile_arn="arn:aws:rolesanywhere:us-west-2:123456789010:profile/p",
        role_arn="arn:aws:iam::123456789010:role/mockHybridNodeRole",
        certificate_path=str(cert_path),
        private_key_path=str(key_path),
    )
    return cfg


@pytest.fixture
def ssm_config():
    from hybrid_node_agent.config import Config, SSMConfig

    cfg = Config()
    cfg.cluster.name = "hybrid-cluster"
    cfg.cluster.region = "us-west-2"
    cfg.hybrid.ssm = SSMConfig(
        activation_code="abcdefghijklmnopqrstuvwxyz",
        activation_id="12345678-1234-1234-1234-123456789012",
    )
    return cfg
