"""
AWS 세션 생성 헬퍼 및 인증 검증
지정한 설정/자격 증명 파일만 사용하고 인스턴스 메타데이터(IMDS)로 폴백하지 않는다.
"""

import os
from typing import Callable, Iterable, Optional

import boto3
import botocore.session
from botocore.exceptions import BotoCoreError, ClientError, EndpointConnectionError

from .errors import ExternalDependencyError
from .logger import get_logger
from .validation import Informer, informing, skip_unavailable, with_remediation

AWS_AUTH = "aws-auth"
AUTH_REMEDIATION = "Check your AWS configuration and make sure you can obtain valid AWS credentials."

# EC2에서 실행되더라도 IMDS 자격 증명을 사용하지 않는다
IMDS_PROVIDERS = ("container-role", "iam-role")


def load_session(region: str, config_file: Optional[str] = None,
                 credentials_file: Optional[str] = None, profile: Optional[str] = None,
                 allowed_providers: Optional[Iterable[str]] = None) -> boto3.Session:
    """명시한 파일 기반 boto3 세션 생성

    allowed_providers를 지정하면 해당 자격 증명 공급자만 남긴다.
    """
    core = botocore.session.Session()
    core.set_config_variable("config_file", config_file or os.devnull)
    core.set_config_variable("credentials_file", credentials_file or os.devnull)
    core.set_config_variable("region", region)
    if profile:
        core.set_config_variable("profile", profile)

    resolver = core.get_component("credential_provider")
    allowed = set(allowed_providers) if allowed_providers is not None else None
    for provider in list(resolver.providers):
        method = provider.METHOD
        if method in IMDS_PROVIDERS or (allowed is not None and method not in allowed):
            resolver.remove(method)

    return boto3.Session(botocore_session=core, region_name=region)


def get_caller_identity(session: boto3.Session) -> dict:
    client = session.client("sts")
    return client.get_caller_identity()


class AuthenticationValidator:
    """현재 자격 증명으로 AWS 인증이 되는지 확인 (STS GetCallerIdentity)

    STS 엔드포인트에 도달할 수 없으면 필수 요건이 아니므로 건너뛴다.
    """

    def __init__(self, get_session: Callable[[], Optional[boto3.Session]],
                 caller_identity: Callable[[boto3.Session], dict] = get_caller_identity):
        self.get_session = get_session
        self.caller_identity = caller_identity
        self.logger = get_logger()

    def run(self, informer: Informer, config):
        session = self.get_session()
        if session is None:
            skip_unavailable(informer, AWS_AUTH, "Skipping AWS authentication validation (no AWS credentials)")
            return

        failure = None
        try:
            identity = self.caller_identity(session)
        except EndpointConnectionError as e:
            self.logger.info(f"STS endpoint is unreachable, skipping authentication check: {e}")
            skip_unavailable(informer, AWS_AUTH, "Skipping AWS authentication validation (STS endpoint unreachable)")
            return
        except (ClientError, BotoCoreError) as e:
            failure = e
            identity = {}

        with informing(informer, AWS_AUTH, "Validating authentication against AWS"):
            if failure is not None:
                err = ExternalDependencyError(f"authenticating against AWS: {failure}")
                err.__cause__ = failure
                raise with_remediation(err, AUTH_REMEDIATION)
            self.logger.debug(f"Authenticated as {identity.get('Arn', '')}")
