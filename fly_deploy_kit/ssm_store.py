"""
ssm_store
---------

AWS SSM Parameter Store 클라이언트.

GetParameters 는 한 번에 최대 10개 이름만 받으므로 fetch_many 에서
10개 단위로 잘라 순차적으로 호출한 뒤 이름 기준으로 결과를 합친다.
"""

from __future__ import annotations

from typing import Any, Dict, NoReturn, Optional, Sequence

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    NoCredentialsError,
    PartialCredentialsError,
    ProfileNotFound,
    SSOTokenLoadError,
    UnauthorizedSSOTokenError,
)

from .errors import CredentialError, NotFoundError, StoreCommunicationError
from .logging_utils import get_logger
from .secret_store import MAX_BATCH_SIZE, chunked


logger = get_logger(__name__)


_CREDENTIAL_EXCEPTIONS = (
    NoCredentialsError,
    PartialCredentialsError,
    ProfileNotFound,
    SSOTokenLoadError,
    UnauthorizedSSOTokenError,
)

_CREDENTIAL_ERROR_CODES = {
    "UnrecognizedClientException",
    "ExpiredTokenException",
    "InvalidSignatureException",
}


def _make_client(region: str, profile: Optional[str]) -> Any:
    try:
        session = boto3.Session(profile_name=profile, region_name=region)
    except ProfileNotFound as e:
        raise CredentialError(f"AWS 프로파일을 찾을 수 없습니다: {profile}") from e

    return session.client(
        "ssm",
        region_name=region,
        config=Config(retries={"mode": "adaptive"}),
    )


class SsmParameterStore:
    """
    SSM Parameter Store 용 SecretStore 구현.

    client 를 주입하면 그대로 사용한다 (테스트용).
    """

    def __init__(
        self,
        region: str = "",
        profile: Optional[str] = None,
        *,
        client: Any = None,
    ) -> None:
        self.region = region
        self.profile = profile
        self._client = client if client is not None else _make_client(region, profile)

    def _raise_for(self, e: Exception, action: str) -> NoReturn:
        if isinstance(e, _CREDENTIAL_EXCEPTIONS):
            raise CredentialError(
                f"AWS 자격 증명을 확인할 수 없습니다 (profile={self.profile or 'default'})"
            ) from e
        if isinstance(e, ClientError):
            code = e.response.get("Error", {}).get("Code", "")
            if code in _CREDENTIAL_ERROR_CODES:
                raise CredentialError(f"AWS 자격 증명이 유효하지 않습니다: {code}") from e
        raise StoreCommunicationError(f"SSM API 호출 실패 ({action}): {e}") from e

    def fetch_many(self, names: Sequence[str]) -> Dict[str, str]:
        """
        이름 목록을 10개 단위로 나눠 조회한다.

        - 한 청크라도 실패하면 전체를 StoreCommunicationError 로 중단한다.
        - 응답에 없는 이름(InvalidParameters)은 결과에서 빠질 뿐 오류가 아니다.
        """
        unique = list(dict.fromkeys(names))
        if not unique:
            return {}

        batches = list(chunked(unique, MAX_BATCH_SIZE))
        logger.debug("%d개 파라미터를 %d번에 나눠 조회합니다.", len(unique), len(batches))

        values: Dict[str, str] = {}
        for batch in batches:
            logger.debug("파라미터 조회: %s", batch)
            try:
                response = self._client.get_parameters(Names=batch, WithDecryption=True)
            except (BotoCoreError, ClientError) as e:
                self._raise_for(e, "GetParameters")

            parameters = response.get("Parameters")
            if parameters is None:
                raise NotFoundError(f"SSM 응답에 Parameters 가 없습니다: {batch}")

            invalid = response.get("InvalidParameters") or []
            if invalid:
                logger.debug("존재하지 않는 파라미터: %s", invalid)

            for param in parameters:
                name = param.get("Name")
                if name:
                    values[name] = param.get("Value") or ""

        return values

    def put_one(self, name: str, value: str) -> None:
        try:
            self._client.put_parameter(
                Name=name,
                Value=value,
                Overwrite=True,
                Type="String",
            )
        except (BotoCoreError, ClientError) as e:
            self._raise_for(e, f"PutParameter {name}")
        logger.debug("파라미터 업로드 완료: %s", name)
