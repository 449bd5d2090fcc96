"""
fly_apps
--------

Fly 앱 조회/생성/재시작과 organization 이름 -> id 변환.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .errors import (
    AppProvisioningError,
    DeployKitError,
    OrganizationNotFoundError,
    PlatformApiError,
)
from .fly_api import AppInfo, FlyApi, GraphQLError
from .logging_utils import get_logger


logger = get_logger(__name__)


FOUND = "found"
NOT_FOUND = "not_found"
TRANSPORT_ERROR = "transport_error"


@dataclass(frozen=True)
class AppLookup:
    """
    앱 조회 결과.

    not_found 는 "생성해도 안전함", transport_error 는 "재시도/확인 필요"를 뜻한다.
    """

    status: str
    app: Optional[AppInfo] = None
    detail: Optional[str] = None

    @classmethod
    def found(cls, app: AppInfo) -> "AppLookup":
        return cls(FOUND, app=app)

    @classmethod
    def not_found(cls) -> "AppLookup":
        return cls(NOT_FOUND)

    @classmethod
    def transport_error(cls, detail: str) -> "AppLookup":
        return cls(TRANSPORT_ERROR, detail=detail)

    @property
    def is_found(self) -> bool:
        return self.status == FOUND


class AppDirectory:
    def __init__(self, api: FlyApi) -> None:
        self.api = api

    async def lookup(self, name: str) -> AppLookup:
        try:
            app = await self.api.get_app(name)
        except GraphQLError as e:
            if e.is_not_found:
                return AppLookup.not_found()
            logger.debug("앱 조회 실패: %s", e)
            return AppLookup.transport_error(str(e))
        except PlatformApiError as e:
            logger.debug("앱 조회 실패: %s", e)
            return AppLookup.transport_error(str(e))

        if app is None:
            return AppLookup.not_found()
        return AppLookup.found(app)

    async def resolve_organization(self, name: str) -> str:
        """
        organization slug 또는 이름과 정확히 일치하는 항목의 id 를 반환한다.
        """
        orgs = await self.api.list_organizations()
        for org in orgs:
            if name in (org.slug, org.name):
                return org.id
        raise OrganizationNotFoundError(
            f"organization 을 찾을 수 없습니다: {name} "
            f"(사용 가능: {', '.join(o.slug for o in orgs) or '(none)'})"
        )

    async def ensure(self, name: str, organization: str, preferred_region: str) -> AppInfo:
        """
        앱이 있으면 그대로 반환하고, 없으면 preferred_region 에 생성한다.
        조회 자체가 실패한 경우에는 생성을 시도하지 않는다.
        """
        lookup = await self.lookup(name)
        if lookup.is_found and lookup.app is not None:
            logger.info("기존 앱을 사용합니다: %s", name)
            return lookup.app

        if lookup.status == TRANSPORT_ERROR:
            raise PlatformApiError(f"앱 상태를 확인할 수 없습니다: {name} ({lookup.detail})")

        logger.info("앱이 없어 새로 생성합니다: %s (org=%s region=%s)", name, organization, preferred_region)
        organization_id = await self.resolve_organization(organization)

        try:
            created = await self.api.create_app(name, preferred_region, organization_id)
        except PlatformApiError as e:
            raise AppProvisioningError(f"앱 생성 실패: {name} ({e})") from e

        if created is None:
            raise AppProvisioningError(
                f"앱 생성이 확인되지 않았습니다 (이름이 이미 사용 중일 수 있습니다): {name}"
            )

        logger.info("앱을 생성했습니다: %s (state=%s)", name, created.status)
        return created

    async def restart(self, name: str) -> bool:
        """재시작은 best-effort 이다. 실패해도 예외를 던지지 않고 False 를 반환한다."""
        try:
            await self.api.restart_app(name)
        except DeployKitError as e:
            logger.warning("앱 재시작 실패 (무시): %s (%s)", name, e)
            return False
        logger.info("앱을 재시작했습니다: %s", name)
        return True
