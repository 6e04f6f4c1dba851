"""
클러스터 정보 조회 및 설정 보강 모듈
EKS DescribeCluster 결과로 누락된 클러스터 정보를 채운다.
"""

import base64
import binascii
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import Config
from .errors import ConfigurationError, ExternalDependencyError
from .logger import get_logger
from .validation import with_remediation

CLUSTER_STATUS_ACTIVE = "ACTIVE"

DESCRIBE_CLUSTER_REMEDIATION = (
    "Ensure the node has access and permissions to call DescribeCluster EKS API. "
    "Check AWS credentials and IAM permissions."
)


@dataclass
class RemoteNetworkConfig:
    """하이브리드 노드/파드용 원격 네트워크 CIDR"""
    remote_node_networks: List[List[str]] = field(default_factory=list)
    remote_pod_networks: List[List[str]] = field(default_factory=list)

    def node_cidrs(self) -> List[str]:
        return [cidr for network in self.remote_node_networks for cidr in network if cidr]


@dataclass
class ClusterDetails:
    """DescribeCluster 응답 중 에이전트가 사용하는 부분"""
    name: str
    status: str = ""
    endpoint: str = ""
    certificate_authority_data: str = ""
    service_ipv4_cidr: str = ""
    version: str = ""
    remote_network_config: Optional[RemoteNetworkConfig] = None

    @classmethod
    def from_api(cls, cluster: Dict[str, Any]) -> "ClusterDetails":
        remote = cluster.get("remoteNetworkConfig")
        remote_config = None
        if remote is not None:
            remote_config = RemoteNetworkConfig(
                remote_node_networks=[n.get("cidrs", []) for n in remote.get("remoteNodeNetworks") or []],
                remote_pod_networks=[n.get("cidrs", []) for n in remote.get("remotePodNetworks") or []],
            )
        return cls(
            name=cluster.get("name", ""),
            status=cluster.get("status", ""),
            endpoint=cluster.get("endpoint", ""),
            certificate_authority_data=(cluster.get("certificateAuthority") or {}).get("data", ""),
            service_ipv4_cidr=(cluster.get("kubernetesNetworkConfig") or {}).get("serviceIpv4Cidr", ""),
            version=cluster.get("version", ""),
            remote_network_config=remote_config,
        )


def read_cluster(session: boto3.Session, config: Config) -> ClusterDetails:
    """DescribeCluster 호출. 실패 시 조치 안내가 붙은 오류 발생"""
    logger = get_logger()
    logger.debug(f"Describing cluster {config.cluster.name} in {config.cluster.region}")

    client = session.client("eks", region_name=config.cluster.region)
    try:
        response = client.describe_cluster(name=config.cluster.name)
    except (ClientError, BotoCoreError) as e:
        err = ExternalDependencyError(f"describing cluster {config.cluster.name}: {e}")
        err.__cause__ = e
        raise with_remediation(err, DESCRIBE_CLUSTER_REMEDIATION)

    return ClusterDetails.from_api(response["cluster"])


def needs_cluster_details(config: Config) -> bool:
    """엔드포인트, CA, 서비스 CIDR 중 하나라도 비어 있으면 True"""
    return (not config.cluster.api_server_endpoint
            or config.cluster.certificate_authority is None
            or not config.cluster.cidr)


def validate_remote_network_config(cluster: ClusterDetails):
    if cluster.remote_network_config is None:
        raise ConfigurationError(f"remote network config is not set for cluster {cluster.name}")
    if not cluster.remote_network_config.remote_node_networks:
        raise ConfigurationError(
            f"remote node networks not found in remote network config for cluster {cluster.name}"
        )


def enrich_config(config: Config, cluster: ClusterDetails):
    """비어 있는 클러스터 필드만 채운다. 이미 채워진 설정에서는 아무 것도 바꾸지 않는다"""
    if cluster.status != CLUSTER_STATUS_ACTIVE:
        raise ExternalDependencyError(f"eks cluster {cluster.name} is not active")
    if cluster.remote_network_config is None:
        raise ConfigurationError(
            "eks cluster does not have remoteNetworkConfig enabled, which is required for Hybrid Nodes"
        )

    if not config.cluster.api_server_endpoint:
        config.cluster.api_server_endpoint = cluster.endpoint

    if config.cluster.certificate_authority is None:
        try:
            config.cluster.certificate_authority = base64.b64decode(cluster.certificate_authority_data, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ExternalDependencyError(f"decoding cluster certificate authority: {e}") from e

    if not config.cluster.cidr:
        config.cluster.cidr = cluster.service_ipv4_cidr
