"""
설치 기록 관리
init이 설정한 데몬과 작성한 파일을 YAML로 기록하고 uninstall에서 사용한다.
"""

import os
from dataclasses import asdict, dataclass, field
from typing import List, Optional

import yaml

from .utils import rooted

TRACKER_PATH = "/opt/hybrid-node-agent/tracker.yaml"


@dataclass
class Tracker:
    credential_strategy: str = ""
    daemons: List[str] = field(default_factory=list)
    files: List[str] = field(default_factory=list)

    def add_daemon(self, name: str):
        if name not in self.daemons:
            self.daemons.append(name)

    def add_file(self, path: str):
        if path not in self.files:
            self.files.append(path)

    @classmethod
    def load(cls, install_root: str = "/") -> Optional["Tracker"]:
        """기록 파일이 없으면 None"""
        path = rooted(install_root, TRACKER_PATH)
        if not os.path.exists(path):
            return None
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
        return cls(
            credential_strategy=data.get("credential_strategy", ""),
            daemons=list(data.get("daemons") or []),
            files=list(data.get("files") or []),
        )

    def save(self, install_root: str = "/"):
        path = rooted(install_root, TRACKER_PATH)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(asdict(self), f, default_flow_style=False)

    @staticmethod
    def remove(install_root: str = "/"):
        path = rooted(install_root, TRACKER_PATH)
        if os.path.exists(path):
            os.remove(path)
