"""
노드 네트워크 식별 모듈
노드 IP 결정(플래그 → DNS → 기본 바인드 주소), 원격 노드 CIDR 포함 여부 및 MTU 검증
"""

import ipaddress
import json
import socket
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol

import requests

from .cluster import ClusterDetails, validate_remote_network_config
from .config import Config, extract_flag_value
from .errors import ConfigurationError, ExternalDependencyError
from .logger import get_logger
from .utils import Runner, run_command
from .validation import Informer, informing, skip_unavailable, with_remediation

NODE_IP_FLAG = "node-ip"
NODE_IP_VALIDATION = "node-ip-validation"
TROUBLESHOOTING_URL = "https://docs.aws.amazon.com/eks/latest/userguide/hybrid-nodes-troubleshooting.html"

MTU_RANGES = ((68, 1500), (8000, 9001))

NODE_IP_REMEDIATION = (
    "Ensure the node has a valid network interface configuration. "
    "Check that the node can resolve its hostname or has a valid --node-ip flag set. "
    f"See {TROUBLESHOOTING_URL}"
)
CIDR_REMEDIATION = (
    "Ensure the node IP is within the configured remote network CIDR blocks. "
    "Update the remote network configuration in the EKS cluster or adjust the node's network configuration. "
    f"See {TROUBLESHOOTING_URL}"
)
MTU_REMEDIATION = (
    "Ensure the network interface with the node IP has a valid MTU value. "
    "MTU should be <= 1500 (standard Ethernet) or between 8000-9001 (jumbo frames). "
    "Update the network interface configuration to use acceptable MTU values. "
    "See https://docs.aws.amazon.com/vpc/latest/tgw/transit-gateway-quotas.html#mtu-quotas"
)
REMOTE_NETWORK_REMEDIATION = (
    "Ensure the EKS cluster has remote network configuration set up properly. "
    "The cluster must have remote node networks configured to validate hybrid node connectivity."
)


@dataclass(frozen=True)
class InterfaceAddress:
    """인터페이스에 바인딩된 주소"""
    interface: str
    ip: str
    mtu: int


class Network(Protocol):
    """호스트 네트워크 스택 조회"""

    def lookup_ip(self, host: str) -> List[str]:
        ...

    def resolve_bind_address(self) -> Optional[str]:
        ...

    def interface_addrs(self) -> List[InterfaceAddress]:
        ...


class DefaultNetwork:
    """socket 및 `ip -j` 명령 기반 구현"""

    def __init__(self, runner: Optional[Runner] = None):
        self.runner = runner
        self.logger = get_logger()

    def lookup_ip(self, host: str) -> List[str]:
        try:
            infos = socket.getaddrinfo(host, None)
        except socket.gaierror as e:
            self.logger.debug(f"DNS lookup for {host} failed: {e}")
            return []
        addrs = []
        for info in infos:
            addr = info[4][0]
            if addr not in addrs:
                addrs.append(addr)
        return addrs

    def resolve_bind_address(self) -> Optional[str]:
        """기본 경로로 나갈 때 OS가 선택하는 출발지 주소"""
        output = run_command(["ip", "-j", "route", "get", "1.1.1.1"], timeout=10, runner=self.runner)
        routes = json.loads(output or "[]")
        for route in routes:
            if route.get("prefsrc"):
                return route["prefsrc"]
        return None

    def interface_addrs(self) -> List[InterfaceAddress]:
        output = run_command(["ip", "-j", "addr", "show"], timeout=10, runner=self.runner)
        return parse_ip_addr_json(output)


def parse_ip_addr_json(output: str) -> List[InterfaceAddress]:
    """`ip -j addr show` 출력 해석 (loopback 및 down 인터페이스 제외)"""
    addrs = []
    for link in json.loads(output or "[]"):
        flags = link.get("flags", [])
        if "LOOPBACK" in flags or "UP" not in flags:
            continue
        for info in link.get("addr_info", []):
            if info.get("local"):
                addrs.append(InterfaceAddress(link.get("ifname", ""), info["local"], int(link.get("mtu", 0))))
    return addrs


def check_node_ip_usable(ip: ipaddress.IPv4Address, addrs: List[InterfaceAddress]):
    """노드 IP가 특수 주소가 아니고 로컬 인터페이스에 바인딩되어 있는지 확인"""
    if ip.is_loopback:
        raise ValueError("nodeIP can't be loopback address")
    if ip.is_multicast:
        raise ValueError("nodeIP can't be a multicast address")
    if ip.is_link_local:
        raise ValueError("nodeIP can't be a link-local unicast address")
    if ip.is_unspecified:
        raise ValueError("nodeIP can't be an all zeros address")
    if not any(a.ip == str(ip) for a in addrs):
        raise ValueError(f"node IP: \"{ip}\" not found in the host's network interfaces")


def node_ip_from_flags(kubelet_flags: List[str]) -> Optional[ipaddress.IPv4Address]:
    """--node-ip 플래그 값 (마지막 값 우선)"""
    value = extract_flag_value(kubelet_flags, NODE_IP_FLAG)
    if not value:
        return None

    try:
        ip = ipaddress.ip_address(value)
    except ValueError:
        raise ConfigurationError(f"invalid ip {value} in --node-ip flag. only 1 IPv4 address is allowed")
    if ip.version != 4:
        raise ConfigurationError(f"invalid IPv6 address {value} in --node-ip flag. only IPv4 is supported")
    if ip.is_unspecified:
        raise ConfigurationError(f"invalid ip {value} in --node-ip flag. unspecified address is not allowed")
    return ip


def get_node_ip(kubelet_flags: List[str], node_name: str, network: Network) -> ipaddress.IPv4Address:
    """kubelet과 같은 순서로 노드 IP 결정"""
    logger = get_logger()

    flag_ip = node_ip_from_flags(kubelet_flags)
    if flag_ip is not None:
        logger.debug(f"Using node IP {flag_ip} from --node-ip flag")
        return flag_ip

    # SSM 인스턴스 ID는 DNS로 해석되지 않으므로 IAM-RA 노드 이름만 조회
    if node_name:
        addrs = None
        for candidate in network.lookup_ip(node_name):
            try:
                ip = ipaddress.ip_address(candidate)
            except ValueError:
                continue
            if ip.version != 4:
                continue
            if addrs is None:
                addrs = network.interface_addrs()
            try:
                check_node_ip_usable(ip, addrs)
            except ValueError as e:
                logger.debug(f"Skipping resolved address {ip}: {e}")
                continue
            logger.debug(f"Using node IP {ip} resolved from {node_name}")
            return ip

    cause = "no usable address"
    try:
        bind = network.resolve_bind_address()
    except (ExternalDependencyError, ValueError) as e:
        bind = None
        cause = str(e)

    if bind:
        try:
            ip = ipaddress.ip_address(bind)
        except ValueError:
            cause = f"invalid bind address {bind}"
        else:
            if ip.version == 4 and not ip.is_unspecified:
                logger.debug(f"Using default bind address {ip} as node IP")
                return ip
            cause = f"unusable bind address {bind}"

    raise ExternalDependencyError(f"couldn't get ip address of node: {cause}")


def check_ip_in_cidrs(ip: ipaddress.IPv4Address, cidrs: List[str]):
    """IP가 하나 이상의 CIDR에 포함되는지 확인"""
    for cidr in cidrs:
        try:
            network = ipaddress.ip_network(cidr, strict=False)
        except ValueError as e:
            raise ConfigurationError(f"error checking IP in CIDR {cidr}: {e}") from e
        if ip in network:
            return

    raise ExternalDependencyError(
        f"node IP {ip} is not in any of the remote network CIDR blocks: [{', '.join(cidrs)}]. "
        f"See {TROUBLESHOOTING_URL} or use --skip {NODE_IP_VALIDATION}"
    )


def check_mtu(mtu: int):
    if mtu <= 0:
        raise ValueError(f"MTU must be a positive value, got {mtu}")
    for low, high in MTU_RANGES:
        if low <= mtu <= high:
            return
    raise ValueError(f"MTU {mtu} is not in acceptable ranges: 68-1500 (standard) or 8000-9001 (jumbo frames)")


def check_interface_mtu(ip: ipaddress.IPv4Address, addrs: List[InterfaceAddress]):
    """노드 IP를 가진 인터페이스의 MTU 확인"""
    for addr in addrs:
        if addr.ip == str(ip):
            try:
                check_mtu(addr.mtu)
            except ValueError as e:
                raise ExternalDependencyError(
                    f"interface {addr.interface} (IP: {ip}) has invalid MTU {addr.mtu}: {e}"
                ) from e
            return
    raise ExternalDependencyError(f"no active network interface found with IP {ip}")


class NodeIPValidator:
    """노드 IP를 결정하고 클러스터 원격 노드 네트워크 및 MTU 기준으로 검증"""

    def __init__(self, get_cluster: Callable[[], Optional[ClusterDetails]],
                 network: Optional[Network] = None, validate_mtu: bool = True):
        self.get_cluster = get_cluster
        self.network = network or DefaultNetwork()
        self.validate_mtu = validate_mtu
        self.logger = get_logger()

    def run(self, informer: Informer, config: Config):
        cluster = self.get_cluster()
        if cluster is None:
            self.logger.info("Node IP validation skipped, cluster details are unavailable")
            skip_unavailable(informer, NODE_IP_VALIDATION, "Skipping node IP validation (cluster unavailable)")
            return

        with informing(informer, NODE_IP_VALIDATION, "Validating node IP"):
            try:
                validate_remote_network_config(cluster)
            except ConfigurationError as e:
                raise with_remediation(e, REMOTE_NETWORK_REMEDIATION)

            node_name = config.status.node_name if config.is_iam_roles_anywhere() else ""
            try:
                ip = get_node_ip(config.kubelet.flags, node_name, self.network)
            except (ConfigurationError, ExternalDependencyError, ValueError) as e:
                raise with_remediation(e, NODE_IP_REMEDIATION)

            try:
                check_ip_in_cidrs(ip, cluster.remote_network_config.node_cidrs())
            except (ConfigurationError, ExternalDependencyError) as e:
                raise with_remediation(e, CIDR_REMEDIATION)

            if self.validate_mtu:
                try:
                    check_interface_mtu(ip, self.network.interface_addrs())
                except (ExternalDependencyError, ValueError) as e:
                    raise with_remediation(e, MTU_REMEDIATION)


def check_connection_to_host(url: str, timeout: float = 5.0, verify=True):
    """HTTPS 엔드포인트에 도달 가능한지 확인 (HTTP 상태 코드는 무시)"""
    try:
        requests.get(url, timeout=timeout, verify=verify)
    except requests.exceptions.RequestException as e:
        raise ExternalDependencyError(f"connecting to {url}: {e}") from e
