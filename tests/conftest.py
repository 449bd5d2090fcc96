"""
pytest 설정:

로컬 작업 환경에 설치된 다른 버전의 fly_deploy_kit 패키지가 존재할 때,
`pytest` 실행 시 site-packages 쪽이 먼저 import 되어 테스트가 깨질 수 있다.

테스트는 항상 현재 레포의 소스를 대상으로 해야 하므로, repo root 를 sys.path 최상단에 고정한다.
"""

from __future__ import annotations

import os
import sys

import pytest


def pytest_configure() -> None:
    repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    if repo_root not in sys.path:
        sys.path.insert(0, repo_root)


_CONFIG_ENV_VARS = [
    "AWS_REGION",
    "AWS_PROFILE",
    "SSM_PREFIX",
    "SECRET_STORE_BACKEND",
    "GCP_PROJECT_ID",
    "SECRETS_MANIFEST",
    "SECRETS_ENV_FILE",
    "SECRETS_ON_MISSING",
    "FLY_API_TOKEN",
    "FLY_API_URL",
    "FLY_APP_NAME",
    "FLY_ORG",
    "FLY_REGIONS",
    "FLY_TOML_FILE",
    "FLY_DOCKERFILE",
    "FLY_IP_ADDRESS_TYPES",
    "FLYCTL_BIN",
    "FLY_DEPLOY_TIMEOUT",
    "FLY_SECRETS_ENV_FILE",
    "FLY_REPLACE_ALL_SECRETS",
    "FLY_RESTART_AFTER_SECRETS",
]


@pytest.fixture(autouse=True)
def _clean_config_env(monkeypatch: pytest.MonkeyPatch) -> None:
    # 개발자 셸의 설정값이 테스트에 섞이지 않도록 한다.
    for name in _CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class FakeFlyApi:
    """
    FlyApi 와 같은 비동기 메서드를 가진 메모리 기반 가짜 구현.

    calls 에 (메서드, 인자) 를 기록하며, fail 에 메서드 이름(또는 "allocate:v6" 처럼
    메서드:타입)을 넣으면 해당 호출에서 PlatformApiError 를 던진다.
    """

    def __init__(self) -> None:
        from fly_deploy_kit.fly_api import Organization

        self.apps: dict = {}
        self.orgs = [Organization(id="org-1", slug="personal", name="Personal")]
        self.addresses: list = []
        self.shared_v4 = None
        self.calls: list = []
        self.fail: set = set()
        self.secrets: dict = {}
        self._seq = 0

    def _maybe_fail(self, key: str) -> None:
        from fly_deploy_kit.errors import PlatformApiError

        if key in self.fail:
            raise PlatformApiError(f"injected failure: {key}")

    def add_app(self, name: str, regions=("iad",), organization_id: str = "org-1") -> None:
        from fly_deploy_kit.fly_api import AppInfo

        self.apps[name] = AppInfo(
            id=name,
            name=name,
            status="deployed",
            organization_id=organization_id,
            regions=list(regions),
        )

    def add_address(self, ip_type: str, region: str = "iad") -> None:
        from fly_deploy_kit.fly_api import IpAddress

        self._seq += 1
        self.addresses.append(
            IpAddress(id=f"ip-{self._seq}", address=f"addr-{ip_type}-{self._seq}", type=ip_type, region=region)
        )

    async def get_app(self, name: str):
        self.calls.append(("get_app", name))
        self._maybe_fail("get_app")
        return self.apps.get(name)

    async def list_organizations(self):
        self.calls.append(("list_organizations",))
        return list(self.orgs)

    async def create_app(self, name: str, region: str, organization_id: str):
        self.calls.append(("create_app", name, region, organization_id))
        self._maybe_fail("create_app")
        self.add_app(name, regions=[region], organization_id=organization_id)
        return self.apps[name]

    async def set_secrets(self, app_id: str, secrets, replace_all: bool = False):
        self.calls.append(("set_secrets", app_id, dict(secrets), replace_all))
        self._maybe_fail("set_secrets")
        self.secrets.update(secrets)
        return 2

    async def restart_app(self, app_id: str) -> None:
        self.calls.append(("restart_app", app_id))
        self._maybe_fail("restart_app")

    async def get_ip_addresses(self, app_name: str):
        from fly_deploy_kit.fly_api import IpInventory

        self.calls.append(("get_ip_addresses", app_name))
        self._maybe_fail("get_ip_addresses")
        return IpInventory(addresses=list(self.addresses), shared_v4=self.shared_v4)

    async def allocate_ip_address(self, app_id: str, *, ip_type: str, region: str, organization_id=None):
        self.calls.append(("allocate", ip_type, region))
        self._maybe_fail(f"allocate:{ip_type}")
        if ip_type == "shared_v4":
            self.shared_v4 = "shared-addr"
            return self.shared_v4
        self.add_address(ip_type, region)
        return self.addresses[-1].address

    async def release_ip_address(self, app_id: str, *, address=None, ip_address_id=None) -> None:
        kind = "shared_v4"
        for a in self.addresses:
            if a.address == address:
                kind = a.type
        self.calls.append(("release", kind, address))
        self._maybe_fail(f"release:{kind}")
        if kind == "shared_v4":
            self.shared_v4 = None
        else:
            self.addresses = [a for a in self.addresses if a.address != address]

    def mutations(self) -> list:
        return [c for c in self.calls if c[0] in ("allocate", "release", "create_app")]


@pytest.fixture
def fake_fly() -> FakeFlyApi:
    return FakeFlyApi()
