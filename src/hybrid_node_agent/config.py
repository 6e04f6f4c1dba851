"""
설정 관리 모듈
YAML/JSON 기반 노드 설정 파일 관리 및 기본값 제공
"""

import base64
import os
import re
import yaml
import json
from enum import Enum
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field, asdict

from .errors import ConfigurationError


class CredentialStrategy(Enum):
    """자격 증명 발급 방식"""
    SSM = "ssm"
    IAM_ROLES_ANYWHERE = "iam-roles-anywhere"


@dataclass
class ClusterConfig:
    """클러스터 설정"""
    name: str = ""
    region: str = ""
    api_server_endpoint: str = ""
    certificate_authority: Optional[bytes] = None
    cidr: str = ""


@dataclass
class SSMConfig:
    """SSM 하이브리드 활성화 설정"""
    activation_code: str = ""
    activation_id: str = ""


@dataclass
class IAMRolesAnywhereConfig:
    """IAM Roles Anywhere 설정"""
    node_name: str = ""
    trust_anchor_arn: str = ""
    profile_arn: str = ""
    role_arn: str = ""
    certificate_path: str = "/etc/iam/pki/server.pem"
    private_key_path: str = "/etc/iam/pki/server.key"
    aws_config_path: str = "/etc/aws/hybrid/config"


@dataclass
class HybridConfig:
    """하이브리드 노드 설정"""
    enable_credentials_file: bool = False
    ssm: Optional[SSMConfig] = None
    iam_roles_anywhere: Optional[IAMRolesAnywhereConfig] = None


@dataclass
class KubeletConfig:
    """Kubelet 설정"""
    flags: List[str] = field(default_factory=list)
    config: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AgentConfig:
    """에이전트 설정"""
    log_dir: str = "/var/log/hybrid-node-agent"
    log_level: str = "INFO"
    ssm_registration_attempts: int = 6
    ssm_registration_backoff: float = 10.0
    credentials_poll_interval: float = 2.0
    credentials_timeout: float = 120.0
    daemon_status_interval: float = 5.0
    daemon_status_timeout: float = 300.0
    validate_mtu: bool = True


@dataclass
class NodeStatus:
    """부트스트랩 중 채워지는 노드 상태"""
    node_name: str = ""


SSM_ACTIVATION_ID_PATTERN = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")
SSM_ACTIVATION_CODE_PATTERN = re.compile(r"^.{20,250}$")
HOSTNAME_OVERRIDE_FLAG = "hostname-override"


def extract_flag_value(args: List[str], flag: str) -> str:
    """kubelet 플래그 목록에서 마지막으로 지정된 값을 반환"""
    prefix = f"--{flag}="
    value = ""
    for arg in args:
        if arg.startswith(prefix):
            value = arg[len(prefix):]
    return value


class Config:
    """전체 설정 관리 클래스"""

    DEFAULT_CONFIG_PATHS = [
        "/etc/hybrid-node-agent/config.yaml",
        "~/.hybrid-node-agent/config.yaml",
        "./config.yaml",
    ]

    SECTIONS = ("cluster", "hybrid", "kubelet", "agent")

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path
        self.cluster = ClusterConfig()
        self.hybrid = HybridConfig()
        self.kubelet = KubeletConfig()
        self.agent = AgentConfig()
        self.status = NodeStatus()

        if config_path:
            self.load(config_path)

    def __eq__(self, other):
        if not isinstance(other, Config):
            return NotImplemented
        return self.to_dict() == other.to_dict() and self.status == other.status

    @classmethod
    def from_default_paths(cls) -> "Config":
        """기본 경로에서 설정 파일 로드"""
        for path in cls.DEFAULT_CONFIG_PATHS:
            expanded_path = os.path.expanduser(path)
            if os.path.exists(expanded_path):
                return cls(expanded_path)
        return cls()

    def load(self, path: str):
        """설정 파일 로드"""
        path = os.path.expanduser(path)
        if not os.path.exists(path):
            raise ConfigurationError(f"config file {path} not found")

        with open(path, 'r', encoding='utf-8') as f:
            if path.endswith('.json'):
                data = json.load(f)
            else:
                data = yaml.safe_load(f) or {}

        self.update_from_dict(data)
        self.config_path = path

    def update_from_dict(self, data: Dict[str, Any]):
        """딕셔너리에서 설정 업데이트"""
        if 'cluster' in data:
            cluster = dict(data['cluster'] or {})
            ca = cluster.pop('certificate_authority', None)
            _set_fields(self.cluster, cluster)
            if ca:
                try:
                    self.cluster.certificate_authority = base64.b64decode(ca)
                except ValueError as e:
                    raise ConfigurationError(f"certificate_authority is not valid base64: {e}") from e

        if 'hybrid' in data:
            hybrid = dict(data['hybrid'] or {})
            if 'enable_credentials_file' in hybrid:
                self.hybrid.enable_credentials_file = bool(hybrid['enable_credentials_file'])
            if hybrid.get('ssm'):
                self.hybrid.ssm = SSMConfig()
                _set_fields(self.hybrid.ssm, hybrid['ssm'])
            if hybrid.get('iam_roles_anywhere'):
                self.hybrid.iam_roles_anywhere = IAMRolesAnywhereConfig()
                _set_fields(self.hybrid.iam_roles_anywhere, hybrid['iam_roles_anywhere'])

        if 'kubelet' in data:
            _set_fields(self.kubelet, data['kubelet'] or {})

        if 'agent' in data:
            _set_fields(self.agent, data['agent'] or {})

    def to_dict(self) -> Dict[str, Any]:
        """딕셔너리로 변환"""
        cluster = asdict(self.cluster)
        if self.cluster.certificate_authority:
            cluster['certificate_authority'] = base64.b64encode(self.cluster.certificate_authority).decode()
        return {
            'cluster': cluster,
            'hybrid': asdict(self.hybrid),
            'kubelet': asdict(self.kubelet),
            'agent': asdict(self.agent),
        }

    def save(self, path: Optional[str] = None):
        """설정 파일 저장"""
        save_path = path or self.config_path or self.DEFAULT_CONFIG_PATHS[0]
        save_path = os.path.expanduser(save_path)

        directory = os.path.dirname(save_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        with open(save_path, 'w', encoding='utf-8') as f:
            if save_path.endswith('.json'):
                json.dump(self.to_dict(), f, indent=2)
            else:
                yaml.safe_dump(self.to_dict(), f, default_flow_style=False, allow_unicode=True)

    @property
    def credential_strategy(self) -> Optional[CredentialStrategy]:
        """활성 자격 증명 방식 (둘 다 있거나 없으면 None)"""
        if self.is_ssm() and not self.is_iam_roles_anywhere():
            return CredentialStrategy.SSM
        if self.is_iam_roles_anywhere() and not self.is_ssm():
            return CredentialStrategy.IAM_ROLES_ANYWHERE
        return None

    def is_ssm(self) -> bool:
        return self.hybrid.ssm is not None

    def is_iam_roles_anywhere(self) -> bool:
        return self.hybrid.iam_roles_anywhere is not None

    def validate(self):
        """부작용 없이 수행하는 설정 검증. 첫 번째 오류에서 ConfigurationError 발생"""
        if not self.cluster.name:
            raise ConfigurationError("Name is missing in cluster configuration")
        if not self.cluster.region:
            raise ConfigurationError("Region is missing in cluster configuration")

        override = extract_flag_value(self.kubelet.flags, HOSTNAME_OVERRIDE_FLAG)
        if override:
            raise ConfigurationError(
                f"hostname-override kubelet flag is not supported for hybrid nodes but found override: {override}"
            )

        if not self.is_ssm() and not self.is_iam_roles_anywhere():
            raise ConfigurationError("Either IAMRolesAnywhere or SSM must be provided for hybrid node configuration")
        if self.is_ssm() and self.is_iam_roles_anywhere():
            raise ConfigurationError("Only one of IAMRolesAnywhere or SSM must be provided for hybrid node configuration")

        if self.is_ssm():
            self._validate_ssm()
        else:
            self._validate_iam_roles_anywhere()

    def _validate_ssm(self):
        ssm = self.hybrid.ssm
        if not ssm.activation_code:
            raise ConfigurationError("ActivationCode is missing in hybrid ssm configuration")
        if not ssm.activation_id:
            raise ConfigurationError("ActivationID is missing in hybrid ssm configuration")
        if not SSM_ACTIVATION_CODE_PATTERN.match(ssm.activation_code):
            raise ConfigurationError(
                f"invalid ActivationCode format: {ssm.activation_code}. Must be 20-250 characters"
            )
        if not SSM_ACTIVATION_ID_PATTERN.match(ssm.activation_id):
            raise ConfigurationError(
                f"invalid ActivationID format: {ssm.activation_id}. Must be in format: {SSM_ACTIVATION_ID_PATTERN.pattern}"
            )

    def _validate_iam_roles_anywhere(self):
        iam = self.hybrid.iam_roles_anywhere
        if not iam.role_arn:
            raise ConfigurationError("RoleARN is missing in hybrid iam roles anywhere configuration")
        if not iam.profile_arn:
            raise ConfigurationError("ProfileARN is missing in hybrid iam roles anywhere configuration")
        if not iam.trust_anchor_arn:
            raise ConfigurationError("TrustAnchorARN is missing in hybrid iam roles anywhere configuration")
        if not iam.node_name:
            raise ConfigurationError("NodeName can't be empty in hybrid iam roles anywhere configuration")
        if len(iam.node_name) > 64:
            raise ConfigurationError("NodeName can't be longer than 64 characters in hybrid iam roles anywhere configuration")
        if not iam.certificate_path:
            raise ConfigurationError("CertificatePath is missing in hybrid iam roles anywhere configuration")
        if not os.path.exists(iam.certificate_path):
            raise ConfigurationError(f"IAM Roles Anywhere certificate {iam.certificate_path} not found")
        if not iam.private_key_path:
            raise ConfigurationError("PrivateKeyPath is missing in hybrid iam roles anywhere configuration")
        if not os.path.exists(iam.private_key_path):
            raise ConfigurationError(f"IAM Roles Anywhere private key {iam.private_key_path} not found")

    def create_sample(self, output_path: str):
        """샘플 설정 파일 생성"""
        template = """# Hybrid Node Agent Configuration File
# 이 파일을 복사하여 config.yaml로 사용하세요

# 클러스터 설정 (endpoint/CA/CIDR은 비워두면 DescribeCluster로 채워짐)
cluster:
  name: "my-cluster"
  region: "us-west-2"
  api_server_endpoint: ""
  certificate_authority: ""  # base64 인코딩된 CA
  cidr: ""

# 하이브리드 노드 자격 증명 (ssm 또는 iam_roles_anywhere 중 하나만 설정)
hybrid:
  enable_credentials_file: false
  ssm:
    activation_code: ""
    activation_id: ""
  # iam_roles_anywhere:
  #   node_name: "hybrid-node-01"
  #   trust_anchor_arn: ""
  #   profile_arn: ""
  #   role_arn: ""
  #   certificate_path: "/etc/iam/pki/server.pem"
  #   private_key_path: "/etc/iam/pki/server.key"

# Kubelet 설정
kubelet:
  flags: []  # 예: ["--node-ip=10.80.0.10"]
  config: {}

# 에이전트 설정
agent:
  log_dir: "/var/log/hybrid-node-agent"
  log_level: "INFO"  # DEBUG, INFO, WARN, ERROR
  ssm_registration_attempts: 6
  ssm_registration_backoff: 10
  credentials_poll_interval: 2
  credentials_timeout: 120
  validate_mtu: true
"""

        directory = os.path.dirname(output_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(output_path, 'w', encoding='utf-8') as f:
            f.write(template)


def _set_fields(target, values: Dict[str, Any]):
    for key, value in values.items():
        if hasattr(target, key):
            setattr(target, key, value)
