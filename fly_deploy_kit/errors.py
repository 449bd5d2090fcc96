"""
errors
------

fly_deploy_kit 전체에서 사용하는 예외 계층.

CLI 는 DeployKitError 계열만 "예상된 실패"로 보고 [ERROR] 메시지로 출력하며,
그 외 예외는 스택트레이스와 함께 로그에 남긴다.
"""

from __future__ import annotations

from typing import Sequence


class DeployKitError(Exception):
    """패키지 공통 베이스 예외."""


class CredentialError(DeployKitError):
    """인증 정보(토큰/프로파일)를 찾을 수 없거나 유효하지 않음."""


class StoreCommunicationError(DeployKitError):
    """파라미터 스토어와 통신 중 실패."""


class NotFoundError(DeployKitError):
    """파라미터 스토어 응답에 파라미터 목록 자체가 없음."""


class ManifestReadError(DeployKitError):
    """secrets.json 매니페스트를 읽거나 파싱할 수 없음."""


class EnvFileReadError(DeployKitError):
    """.env 파일을 읽을 수 없음."""


class EnvFileWriteError(DeployKitError):
    """.env 파일에 쓸 수 없음."""


class MissingSecretValueError(DeployKitError):
    """매니페스트에는 있지만 .env 파일에 값이 없는 항목이 존재함."""

    def __init__(self, missing: Sequence[str]) -> None:
        self.missing = list(missing)
        super().__init__(
            ".env 파일에 값이 없는 항목이 있습니다: " + ", ".join(self.missing)
        )


class PlatformApiError(DeployKitError):
    """Fly GraphQL API 호출 실패 (전송 오류 또는 GraphQL errors)."""


class OrganizationNotFoundError(DeployKitError):
    """이름과 정확히 일치하는 organization 이 없음."""


class AppProvisioningError(DeployKitError):
    """앱 생성이 확인된 상태를 돌려주지 않음."""


class PartialDeployFailure(DeployKitError):
    """하나 이상의 리전 배포가 실패함. 성공한 리전은 롤백하지 않는다."""

    def __init__(self, failed_regions: Sequence[str], succeeded_regions: Sequence[str] = ()) -> None:
        self.failed_regions = list(failed_regions)
        self.succeeded_regions = list(succeeded_regions)
        super().__init__(
            "일부 리전 배포에 실패했습니다: " + ", ".join(self.failed_regions)
        )


class ReconciliationError(DeployKitError):
    """IP 주소 정리(allocate/release) 단계 실패."""
