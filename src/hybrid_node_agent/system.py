"""
시스템 정보, 시간 동기화 및 swap 검증
"""

import os
import shutil
from dataclasses import dataclass
from typing import Callable, List, Optional

from .errors import CommandError, ExternalDependencyError
from .logger import get_logger
from .utils import Runner, rooted, run_command
from .validation import Informer, ValidationError, informing, with_remediation, with_warning

UBUNTU = "ubuntu"
RHEL = "rhel"
AMAZON_LINUX = "amzn"

OS_RELEASE_PATH = "/etc/os-release"
PROC_SWAPS_PATH = "/proc/swaps"
NTP_SYNC = "ntp-sync"
SWAP = "swap"

SWAP_TYPE_PARTITION = "partition"

LOCALHOST_REFERENCE_IDS = ("(00000000)", "(0.0.0.0)", "(127.0.0.1)")

CHRONY_REMEDIATION = (
    "Ensure the hybrid node is synchronized with NTP through chronyd services. "
    "Verify NTP server configuration in /etc/chrony.conf. "
    "If using airgapped networks, ensure chrony is configured with local NTP sources and adjusted manually."
)
TIMEDATECTL_REMEDIATION = "Ensure the hybrid node is synchronized with NTP by running `timedatectl set-ntp true`."
PARTITION_SWAP_REMEDIATION = (
    "Partition swap must be disabled manually before running init. "
    "Run 'sudo swapoff -a' and remove swap entries from /etc/fstab to make the change persistent."
)
SWAP_REMEDIATION = (
    "kubelet requires swap to be disabled. Run 'sudo swapoff -a' and remove swap entries from /etc/fstab."
)


def get_os_name(path: str = OS_RELEASE_PATH) -> str:
    """/etc/os-release의 ID 값 (없으면 빈 문자열)"""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            for line in f:
                key, _, value = line.strip().partition("=")
                if key == "ID":
                    return value.strip().strip('"').strip("'")
    except OSError:
        return ""
    return ""


class ClockNotSynchronized(Exception):
    """시스템 시계가 NTP와 동기화되지 않음"""


def chrony_synchronized(output: str) -> bool:
    """`chronyc tracking` 출력에 외부 참조와 정상 leap 상태가 있는지 확인"""
    has_reference = False
    leap_normal = False
    for line in output.splitlines():
        line = line.strip()
        if "Reference ID" in line:
            parts = line.split()
            if len(parts) >= 5 and parts[4] not in LOCALHOST_REFERENCE_IDS:
                has_reference = True
        if "Leap status" in line and "Normal" in line:
            leap_normal = True
    return has_reference and leap_normal


def timedatectl_synchronized(output: str) -> bool:
    return any("System clock synchronized: yes" in line for line in output.splitlines())


class NTPValidator:
    """chronyc / timedatectl로 시간 동기화 확인 (실패는 경고)"""

    def __init__(self, runner: Optional[Runner] = None,
                 which: Callable[[str], Optional[str]] = shutil.which):
        self.runner = runner
        self.which = which
        self.logger = get_logger()

    def check(self) -> Optional[ValidationError]:
        """동기화 문제를 경고로 반환 (명령 실행 자체의 실패는 예외 전파)"""
        if self.which("chronyc"):
            output = run_command(["chronyc", "tracking"], timeout=30, runner=self.runner)
            if not chrony_synchronized(output):
                return with_warning(
                    ClockNotSynchronized("validating NTP synchronization via chronyc: chronyd not synchronized"),
                    CHRONY_REMEDIATION,
                )

        if self.which("timedatectl"):
            output = run_command(["timedatectl", "status"], timeout=30, runner=self.runner)
            if not timedatectl_synchronized(output):
                return with_warning(
                    ClockNotSynchronized("validating NTP synchronization via timedatectl: System clock not synchronized"),
                    TIMEDATECTL_REMEDIATION,
                )
        return None

    def run(self, informer: Informer, config):
        with informing(informer, NTP_SYNC, "Validating NTP synchronization status"):
            try:
                warning = self.check()
            except CommandError as e:
                raise with_warning(e, "Verify chronyc or timedatectl can report the clock status.")
            if warning is not None:
                raise warning


@dataclass(frozen=True)
class SwapEntry:
    path: str
    swap_type: str


def parse_proc_swaps(content: str) -> List[SwapEntry]:
    """/proc/swaps 해석 (첫 줄은 헤더)

    Filename    Type    Size    Used    Priority
    """
    entries = []
    for line_no, line in enumerate(content.splitlines()[1:], start=2):
        if not line.strip():
            continue
        fields = line.split()
        if len(fields) < 2:
            raise ValueError(f"/proc/swaps syntax error at line {line_no}: {line!r}")
        entries.append(SwapEntry(fields[0], fields[1]))
    return entries


class SwapValidator:
    """활성화된 swap이 없는지 확인"""

    def __init__(self, install_root: str = "/"):
        self.install_root = install_root
        self.logger = get_logger()

    def read_entries(self) -> List[SwapEntry]:
        path = rooted(self.install_root, PROC_SWAPS_PATH)
        if not os.path.exists(path):
            self.logger.debug(f"{path} not found, assuming swap is unsupported")
            return []
        with open(path, 'r', encoding='utf-8') as f:
            return parse_proc_swaps(f.read())

    def run(self, informer: Informer, config):
        with informing(informer, SWAP, "Validating swap configuration"):
            try:
                entries = self.read_entries()
            except (OSError, ValueError) as e:
                raise ExternalDependencyError(f"reading swap configuration: {e}") from e

            if any(e.swap_type == SWAP_TYPE_PARTITION for e in entries):
                raise with_remediation(ExternalDependencyError("partition swap detected on host"),
                                       PARTITION_SWAP_REMEDIATION)
            if entries:
                paths = ", ".join(e.path for e in entries)
                raise with_remediation(
                    ExternalDependencyError(f"swap still active on host: {len(entries)} swap entries found ({paths})"),
                    SWAP_REMEDIATION,
                )
