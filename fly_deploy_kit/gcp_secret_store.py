"""
gcp_secret_store
----------------

Google Secret Manager 를 파라미터 스토어로 사용하는 SecretStore 구현.
(SECRET_STORE_BACKEND=gcp)

Secret Manager 에는 일괄 조회 API 가 없으므로 이름마다 latest 버전을 조회하되,
SSM 백엔드와 같은 청크 단위로 순차 진행하며 로그를 남긴다.
"""

from __future__ import annotations

from typing import Any, Dict, Sequence

from google.api_core.exceptions import GoogleAPICallError, NotFound
from google.auth.exceptions import DefaultCredentialsError
from google.cloud import secretmanager

from .errors import CredentialError, StoreCommunicationError
from .logging_utils import get_logger
from .secret_store import MAX_BATCH_SIZE, chunked


logger = get_logger(__name__)


def to_secret_id(name: str) -> str:
    """
    SSM 스타일 경로(`/app/prod/DB_URL`)를 Secret Manager 에서 허용하는 id 로 바꾼다.
    선행 `/` 는 제거하고 나머지 `/` 는 `_` 로 치환한다.
    """
    return name.lstrip("/").replace("/", "_")


class GcpSecretStore:
    def __init__(self, project_id: str, *, client: Any = None) -> None:
        if not project_id:
            raise ValueError("Secret Manager 백엔드에는 GCP_PROJECT_ID 가 필요합니다.")
        self.project_id = project_id
        self.parent = f"projects/{project_id}"

        if client is not None:
            self._client = client
        else:
            try:
                self._client = secretmanager.SecretManagerServiceClient()
            except DefaultCredentialsError as e:
                raise CredentialError(
                    "GCP 자격 증명(ADC)을 찾을 수 없습니다. `gcloud auth application-default login` 을 확인하세요."
                ) from e

    def _secret_name(self, name: str) -> str:
        return f"{self.parent}/secrets/{to_secret_id(name)}"

    def fetch_many(self, names: Sequence[str]) -> Dict[str, str]:
        unique = list(dict.fromkeys(names))
        values: Dict[str, str] = {}

        for batch in chunked(unique, MAX_BATCH_SIZE):
            logger.debug("Secret 조회: %s", batch)
            for name in batch:
                version = f"{self._secret_name(name)}/versions/latest"
                try:
                    response = self._client.access_secret_version(name=version)
                except NotFound:
                    logger.debug("존재하지 않는 Secret: %s", version)
                    continue
                except DefaultCredentialsError as e:
                    raise CredentialError("GCP 자격 증명을 확인할 수 없습니다.") from e
                except GoogleAPICallError as e:
                    raise StoreCommunicationError(
                        f"Secret Manager 호출 실패 (access {version}): {e}"
                    ) from e
                values[name] = response.payload.data.decode("utf-8")

        return values

    def put_one(self, name: str, value: str) -> None:
        secret_id = to_secret_id(name)
        secret_name = self._secret_name(name)

        try:
            # Secret 존재 여부 확인 후 없으면 생성
            try:
                self._client.get_secret(name=secret_name)
                logger.debug("기존 Secret 에 새 버전을 추가합니다: %s", secret_name)
            except NotFound:
                logger.info("Secret 이 없어 새로 생성합니다: %s", secret_name)
                self._client.create_secret(
                    parent=self.parent,
                    secret_id=secret_id,
                    secret={
                        "replication": {"automatic": {}},
                    },
                )

            # 새 버전 추가 (= 덮어쓰기)
            self._client.add_secret_version(
                parent=secret_name,
                payload={"data": value.encode("utf-8")},
            )
        except DefaultCredentialsError as e:
            raise CredentialError("GCP 자격 증명을 확인할 수 없습니다.") from e
        except GoogleAPICallError as e:
            raise StoreCommunicationError(
                f"Secret Manager 호출 실패 (put {secret_name}): {e}"
            ) from e
