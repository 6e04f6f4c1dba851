"""
Hybrid Node Agent
클라우드 외부(온프레미스/타 클라우드) 머신을 관리형 Kubernetes 클러스터에 조인시키는 에이전트

Features:
- SSM / IAM Roles Anywhere 기반 임시 자격 증명 발급
- kubelet, containerd, ssm-agent, signing helper 데몬 수명주기 관리
- 노드 IP, 인증서, 시간 동기화, 버전 스큐 검증 및 조치 안내
- idempotent 재실행 및 uninstall/upgrade 지원
"""

__version__ = "1.0.0"
__author__ = "DevOps Team"
