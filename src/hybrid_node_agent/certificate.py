"""
인증서 신뢰 검증 모듈
디스크의 PEM 인증서를 CA 및 현재 시각 기준으로 검증하고 결과를 분류한다.
"""

import os
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional

from cryptography import x509
from cryptography.exceptions import InvalidSignature

from .validation import with_remediation

KUBELET_CERT_VALIDATION = "kubelet-cert-validation"
IAM_RA_CERT_GUIDE = (
    "To generate a new IAM Roles Anywhere (IAM-RA) certificate, see the steps in the documentation: "
    "https://docs.aws.amazon.com/eks/latest/userguide/hybrid-nodes-creds.html#hybrid-nodes-role"
)


class CertificateOutcome(Enum):
    VALID = "valid"
    NO_CERTIFICATE = "no-certificate"
    UNREADABLE_FILE = "unreadable-file"
    INVALID_ENCODING = "invalid-encoding"
    NOT_YET_VALID = "not-yet-valid"
    EXPIRED = "expired"
    UNTRUSTED_CA = "untrusted-ca"

    @property
    def is_date_problem(self) -> bool:
        return self in (CertificateOutcome.NOT_YET_VALID, CertificateOutcome.EXPIRED)


@dataclass(frozen=True)
class CertificateCheck:
    """검증 결과 (outcome 태그 + 설명)"""
    outcome: CertificateOutcome
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome is CertificateOutcome.VALID


class CertificateValidationError(Exception):
    """검증 실패 결과를 담은 오류"""

    def __init__(self, check: CertificateCheck, context: str = "validating certificate"):
        super().__init__(f"{context}: {check.message}")
        self.check = check

    @property
    def outcome(self) -> CertificateOutcome:
        return self.check.outcome


def validate_certificate(cert_path: str, ca: Optional[bytes] = None,
                         now: Optional[datetime] = None) -> CertificateCheck:
    """인증서 파일을 검증해 결과를 반환 (예외를 던지지 않음)

    ca가 없으면 CA 체인 검증은 건너뛴다.
    """
    if not os.path.exists(cert_path):
        return CertificateCheck(CertificateOutcome.NO_CERTIFICATE, "no certificate found")

    try:
        with open(cert_path, 'rb') as f:
            data = f.read()
    except OSError as e:
        return CertificateCheck(CertificateOutcome.UNREADABLE_FILE, f"reading certificate: {e}")

    try:
        cert = x509.load_pem_x509_certificate(data)
    except ValueError as e:
        return CertificateCheck(CertificateOutcome.INVALID_ENCODING, f"parsing certificate: {e}")

    now = now or datetime.now(timezone.utc)
    if now < cert.not_valid_before_utc:
        return CertificateCheck(CertificateOutcome.NOT_YET_VALID, "server certificate is not yet valid")
    if now > cert.not_valid_after_utc:
        return CertificateCheck(CertificateOutcome.EXPIRED, "server certificate has expired")

    if ca:
        # CA 교체 중에는 번들에 여러 인증서가 있을 수 있다
        try:
            ca_certs = x509.load_pem_x509_certificates(ca)
        except ValueError as e:
            return CertificateCheck(CertificateOutcome.UNTRUSTED_CA, f"parsing cluster CA certificate: {e}")
        detail = "no CA certificate in bundle"
        for ca_cert in ca_certs:
            try:
                cert.verify_directly_issued_by(ca_cert)
            except (ValueError, TypeError, InvalidSignature) as e:
                detail = str(e) or type(e).__name__
                continue
            return CertificateCheck(CertificateOutcome.VALID)
        return CertificateCheck(
            CertificateOutcome.UNTRUSTED_CA,
            f"certificate is not valid for the current cluster: {detail}"
        )

    return CertificateCheck(CertificateOutcome.VALID)


def kubelet_remediations(cert_path: str) -> Dict[CertificateOutcome, str]:
    authenticate = ("Kubelet certificate will be created when the kubelet is able to authenticate "
                    "with the API server. Check previous authentication remediation advice.")
    return {
        CertificateOutcome.NO_CERTIFICATE: authenticate,
        CertificateOutcome.UNREADABLE_FILE: authenticate,
        CertificateOutcome.INVALID_ENCODING:
            f"Delete the kubelet server certificate file {cert_path} and restart kubelet",
        CertificateOutcome.NOT_YET_VALID: "Verify the system time is correct and restart the kubelet.",
        CertificateOutcome.EXPIRED:
            f"Delete the kubelet server certificate file {cert_path} and restart kubelet. "
            "Validate `serverTLSBootstrap` is true in the kubelet config /etc/kubernetes/kubelet/config.json "
            "to automatically rotate the certificate.",
        CertificateOutcome.UNTRUSTED_CA:
            f"Please remove the kubelet server certificate file {cert_path} "
            f"or use \"--skip {KUBELET_CERT_VALIDATION}\" if this is expected",
    }


def iam_roles_anywhere_remediations(cert_path: str) -> Dict[CertificateOutcome, str]:
    verify = f"Verify the IAM role anywhere certificate at {cert_path}. {IAM_RA_CERT_GUIDE}"
    return {
        CertificateOutcome.NO_CERTIFICATE: verify,
        CertificateOutcome.UNREADABLE_FILE: verify,
        CertificateOutcome.INVALID_ENCODING: f"Verify the IAM Role certificate format. {IAM_RA_CERT_GUIDE}",
        CertificateOutcome.NOT_YET_VALID:
            f"Verify the IAM Role certificate validity or system time is correct. {IAM_RA_CERT_GUIDE}",
        CertificateOutcome.EXPIRED:
            f"Generate a new IAM Roles Anywhere certificate as the current one has expired. {IAM_RA_CERT_GUIDE}",
        CertificateOutcome.UNTRUSTED_CA:
            f"Please remove the IAM Roles Anywhere certificate file at {cert_path}. {IAM_RA_CERT_GUIDE}",
    }


def remediable_error(check: CertificateCheck, table: Dict[CertificateOutcome, str], context: str):
    """실패 결과를 조치 안내가 붙은 ValidationError로 변환"""
    err = CertificateValidationError(check, context)
    return with_remediation(err, table.get(check.outcome, ""))
