"""
fly_api
-------

Fly.io GraphQL API 비동기 클라이언트.

모든 호출은 Bearer 토큰이 필요하며, 토큰은 생성자에서 명시적으로 받는다.
(프로세스 환경변수는 CLI 의 FlyConfig.from_env() 에서 한 번만 읽는다)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

import httpx

from .config import FLY_API_URL_DEFAULT
from .errors import CredentialError, PlatformApiError
from .logging_utils import get_logger


logger = get_logger(__name__)


APP_QUERY = """
query ($name: String) {
  app(name: $name) {
    id
    name
    status
    regions {
      code
    }
    organization {
      id
      slug
    }
  }
}
"""

ORGANIZATIONS_QUERY = """
query {
  organizations {
    nodes {
      id
      slug
      name
    }
  }
}
"""

CREATE_APP_MUTATION = """
mutation ($input: CreateAppInput!) {
  createApp(input: $input) {
    app {
      id
      name
      state
      organization {
        id
      }
    }
  }
}
"""

SET_SECRETS_MUTATION = """
mutation ($input: SetSecretsInput!) {
  setSecrets(input: $input) {
    release {
      id
      version
      reason
      description
      createdAt
    }
  }
}
"""

RESTART_APP_MUTATION = """
mutation ($input: RestartAppInput!) {
  restartApp(input: $input) {
    app {
      name
    }
  }
}
"""

IP_ADDRESSES_QUERY = """
query ($name: String) {
  app(name: $name) {
    sharedIpAddress
    ipAddresses {
      nodes {
        id
        address
        type
        region
        createdAt
      }
    }
  }
}
"""

ALLOCATE_IP_MUTATION = """
mutation ($input: AllocateIPAddressInput!) {
  allocateIpAddress(input: $input) {
    ipAddress {
      id
      address
      type
      region
      createdAt
    }
    app {
      sharedIpAddress
    }
  }
}
"""

RELEASE_IP_MUTATION = """
mutation ($input: ReleaseIPAddressInput!) {
  releaseIpAddress(input: $input) {
    app {
      name
    }
  }
}
"""


@dataclass(frozen=True)
class AppInfo:
    id: str
    name: str
    status: Optional[str] = None
    organization_id: Optional[str] = None
    regions: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class Organization:
    id: str
    slug: str
    name: str


@dataclass(frozen=True)
class IpAddress:
    id: str
    address: str
    type: str
    region: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_node(cls, node: Mapping[str, Any]) -> "IpAddress":
        return cls(
            id=str(node.get("id") or ""),
            address=str(node.get("address") or ""),
            type=str(node.get("type") or ""),
            region=node.get("region"),
            created_at=node.get("createdAt"),
        )


@dataclass(frozen=True)
class IpInventory:
    addresses: List[IpAddress] = field(default_factory=list)
    # shared_v4 는 typed 목록과 별도 필드로 내려온다.
    shared_v4: Optional[str] = None


class GraphQLError(PlatformApiError):
    """응답 본문에 GraphQL errors 가 포함된 경우."""

    def __init__(self, errors: List[Mapping[str, Any]]) -> None:
        self.errors = errors
        messages = [str(e.get("message", e)) for e in errors]
        super().__init__("Fly API 오류: " + "; ".join(messages))

    @property
    def codes(self) -> List[str]:
        codes: List[str] = []
        for e in self.errors:
            ext = e.get("extensions") or {}
            if isinstance(ext, Mapping) and ext.get("code"):
                codes.append(str(ext["code"]))
        return codes

    @property
    def is_not_found(self) -> bool:
        if "NOT_FOUND" in self.codes:
            return True
        return any("could not find" in str(e.get("message", "")).lower() for e in self.errors)


class FlyApi:
    def __init__(
        self,
        token: Optional[str],
        *,
        api_url: str = FLY_API_URL_DEFAULT,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not token:
            raise CredentialError("FLY_API_TOKEN 이 설정되지 않았습니다.")
        self._token = token
        self.api_url = api_url
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "FlyApi":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        await self.aclose()

    async def execute(self, query: str, variables: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """GraphQL 요청 하나를 보내고 data 부분을 반환한다."""
        try:
            response = await self._client.post(
                self.api_url,
                json={"query": query, "variables": dict(variables or {})},
                headers={"Authorization": f"Bearer {self._token}"},
            )
        except httpx.HTTPError as e:
            raise PlatformApiError(f"Fly API 요청 실패: {e}") from e

        if response.status_code in (401, 403):
            raise CredentialError(
                f"Fly API 인증 실패 (HTTP {response.status_code}). FLY_API_TOKEN 을 확인하세요."
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise PlatformApiError(
                f"Fly API 응답을 해석할 수 없습니다 (HTTP {response.status_code})"
            ) from e

        logger.debug("Fly API 응답 (HTTP %s): %s", response.status_code, payload)

        errors = payload.get("errors") if isinstance(payload, dict) else None
        if errors:
            raise GraphQLError(errors)
        if response.status_code >= 400:
            raise PlatformApiError(f"Fly API 요청 실패 (HTTP {response.status_code})")

        return (payload or {}).get("data") or {}

    async def get_app(self, name: str) -> Optional[AppInfo]:
        data = await self.execute(APP_QUERY, {"name": name})
        app = data.get("app")
        if not app:
            return None
        org = app.get("organization") or {}
        return AppInfo(
            id=str(app.get("id") or name),
            name=str(app.get("name") or name),
            status=app.get("status"),
            organization_id=org.get("id"),
            regions=[r["code"] for r in (app.get("regions") or []) if r.get("code")],
        )

    async def list_organizations(self) -> List[Organization]:
        data = await self.execute(ORGANIZATIONS_QUERY)
        nodes = ((data.get("organizations") or {}).get("nodes")) or []
        return [
            Organization(
                id=str(n.get("id") or ""),
                slug=str(n.get("slug") or ""),
                name=str(n.get("name") or ""),
            )
            for n in nodes
        ]

    async def create_app(self, name: str, region: str, organization_id: str) -> Optional[AppInfo]:
        """앱을 생성한다. 응답에 앱 상태가 없으면 None."""
        data = await self.execute(
            CREATE_APP_MUTATION,
            {"input": {"name": name, "preferredRegion": region, "organizationId": organization_id}},
        )
        app = (data.get("createApp") or {}).get("app")
        if not app or not app.get("state"):
            return None
        return AppInfo(
            id=str(app.get("id") or name),
            name=str(app.get("name") or name),
            status=app.get("state"),
            organization_id=(app.get("organization") or {}).get("id") or organization_id,
            regions=[region],
        )

    async def set_secrets(self, app_id: str, secrets: Mapping[str, str], replace_all: bool = False) -> Optional[int]:
        """
        앱 secret 을 설정하고 새 release 버전을 반환한다.
        replace_all=True 이면 여기에 없는 secret 은 삭제된다.
        """
        data = await self.execute(
            SET_SECRETS_MUTATION,
            {
                "input": {
                    "appId": app_id,
                    "secrets": [{"key": k, "value": v} for k, v in secrets.items()],
                    "replaceAll": replace_all,
                }
            },
        )
        release = (data.get("setSecrets") or {}).get("release") or {}
        return release.get("version")

    async def restart_app(self, app_id: str) -> None:
        await self.execute(RESTART_APP_MUTATION, {"input": {"appId": app_id}})

    async def get_ip_addresses(self, app_name: str) -> IpInventory:
        data = await self.execute(IP_ADDRESSES_QUERY, {"name": app_name})
        app = data.get("app")
        if not app:
            raise PlatformApiError(f"앱을 찾을 수 없습니다: {app_name}")
        nodes = ((app.get("ipAddresses") or {}).get("nodes")) or []
        return IpInventory(
            addresses=[IpAddress.from_node(n) for n in nodes],
            shared_v4=app.get("sharedIpAddress") or None,
        )

    async def allocate_ip_address(
        self,
        app_id: str,
        *,
        ip_type: str,
        region: str,
        organization_id: Optional[str] = None,
    ) -> Optional[str]:
        """주소를 할당하고 할당된 주소 문자열을 반환한다."""
        payload: Dict[str, Any] = {"appId": app_id, "type": ip_type, "region": region}
        if organization_id:
            payload["organizationId"] = organization_id
        data = await self.execute(ALLOCATE_IP_MUTATION, {"input": payload})
        result = data.get("allocateIpAddress") or {}
        ip = result.get("ipAddress")
        if ip:
            return ip.get("address")
        return (result.get("app") or {}).get("sharedIpAddress")

    async def release_ip_address(
        self,
        app_id: str,
        *,
        address: Optional[str] = None,
        ip_address_id: Optional[str] = None,
    ) -> None:
        payload: Dict[str, Any] = {"appId": app_id}
        if ip_address_id:
            payload["ipAddressId"] = ip_address_id
        if address:
            payload["ip"] = address
        await self.execute(RELEASE_IP_MUTATION, {"input": payload})
