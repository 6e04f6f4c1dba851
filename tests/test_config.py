"""
설정 관리 모듈 테스트
"""

import base64
import os
import tempfile

import pytest

from hybrid_node_agent.config import Config, CredentialStrategy, SSMConfig, extract_flag_value
from hybrid_node_agent.errors import ConfigurationError


def test_default_config():
    """기본 설정 테스트"""
    config = Config()
    assert config.cluster.name == ""
    assert config.hybrid.ssm is None
    assert config.hybrid.iam_roles_anywhere is None
    assert config.agent.ssm_registration_attempts == 6
    assert config.agent.credentials_timeout == 120.0
    assert config.credential_strategy is None


def test_config_load_yaml():
    """YAML 설정 파일 로드 테스트"""
    ca = base64.b64encode(b"-----BEGIN CERTIFICATE-----").decode()
    yaml_content = f"""
cluster:
  name: "test-cluster"
  region: "eu-west-1"
  certificate_authority: "{ca}"
hybrid:
  ssm:
    activation_code: "abcdefghijklmnopqrstuvwxyz"
    activation_id: "12345678-1234-1234-1234-123456789012"
kubelet:
  flags: ["--node-ip=10.0.0.5"]
"""

    with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
        f.write(yaml_content)
        temp_path = f.name

    try:
        config = Config(temp_path)
        assert config.cluster.name == "test-cluster"
        assert config.cluster.region == "eu-west-1"
        assert config.cluster.certificate_authority == b"-----BEGIN CERTIFICATE-----"
        assert config.kubelet.flags == ["--node-ip=10.0.0.5"]
        assert config.credential_strategy is CredentialStrategy.SSM
    finally:
        os.unlink(temp_path)


def test_config_load_missing_file():
    with pytest.raises(ConfigurationError):
        Config("/nonexistent/config.yaml")


def test_config_save(tmp_path):
    """설정 저장 테스트"""
    config = Config()
    config.cluster.name = "saved"
    config.cluster.certificate_authority = b"ca-bytes"
    path = tmp_path / "config.yaml"

    config.save(str(path))

    config2 = Config(str(path))
    assert config2.cluster.name == "saved"
    assert config2.cluster.certificate_authority == b"ca-bytes"


def test_config_to_dict():
    """딕셔너리 변환 테스트"""
    data = Config().to_dict()
    assert set(data) == {"cluster", "hybrid", "kubelet", "agent"}
    assert data["agent"]["validate_mtu"] is True


def test_extract_flag_value_last_wins():
    flags = ["--node-ip=10.0.0.1", "--v=2", "--node-ip=10.0.0.2"]
    assert extract_flag_value(flags, "node-ip") == "10.0.0.2"
    assert extract_flag_value(flags, "hostname-override") == ""


def test_validate_requires_cluster_name_and_region(ssm_config):
    ssm_config.cluster.name = ""
    with pytest.raises(ConfigurationError, match="Name is missing in cluster configuration"):
        ssm_config.validate()

    ssm_config.cluster.name = "c"
    ssm_config.cluster.region = ""
    with pytest.raises(ConfigurationError, match="Region is missing"):
        ssm_config.validate()


def test_validate_rejects_hostname_override(ssm_config):
    ssm_config.kubelet.flags = ["--hostname-override=custom"]
    with pytest.raises(ConfigurationError, match="found override: custom"):
        ssm_config.validate()


def test_validate_exactly_one_strategy(ssm_config, iam_config):
    ssm_config.hybrid.ssm = None
    with pytest.raises(ConfigurationError, match="Either IAMRolesAnywhere or SSM"):
        ssm_config.validate()

    iam_config.hybrid.ssm = SSMConfig("abcdefghijklmnopqrstuvwxyz", "12345678-1234-1234-1234-123456789012")
    with pytest.raises(ConfigurationError, match="Only one of IAMRolesAnywhere or SSM"):
        iam_config.validate()


def test_validate_ssm_formats(ssm_config):
    ssm_config.validate()

    ssm_config.hybrid.ssm.activation_code = "short"
    with pytest.raises(ConfigurationError, match="invalid ActivationCode format"):
        ssm_config.validate()

    ssm_config.hybrid.ssm.activation_code = "abcdefghijklmnopqrstuvwxyz"
    ssm_config.hybrid.ssm.activation_id = "not-a-uuid"
    with pytest.raises(ConfigurationError, match="invalid ActivationID format"):
        ssm_config.validate()


def test_validate_iam_roles_anywhere_fields(iam_config):
    iam_config.validate()

    iam_config.hybrid.iam_roles_anywhere.node_name = "n" * 65
    with pytest.raises(ConfigurationError, match="longer than 64"):
        iam_config.validate()

    iam_config.hybrid.iam_roles_anywhere.node_name = "node"
    iam_config.hybrid.iam_roles_anywhere.role_arn = ""
    with pytest.raises(ConfigurationError, match="RoleARN is missing"):
        iam_config.validate()


def test_validate_iam_roles_anywhere_missing_certificate(iam_config):
    iam_config.hybrid.iam_roles_anywhere.certificate_path = "/nonexistent/server.pem"
    with pytest.raises(ConfigurationError, match="certificate /nonexistent/server.pem not found"):
        iam_config.validate()


def test_create_sample(tmp_path):
    path = tmp_path / "sample" / "config.yaml"
    Config().create_sample(str(path))

    config = Config(str(path))
    assert config.cluster.name == "my-cluster"
    assert config.is_ssm()
