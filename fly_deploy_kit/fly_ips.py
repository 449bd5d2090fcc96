"""
fly_ips
-------

앱에 할당된 IP 주소를 원하는 타입 집합에 맞춰 정리한다.

- v4 / v6 / private_v6 : ipAddresses 목록에서 타입별로 판단
- shared_v4            : 목록과 별도의 sharedIpAddress 필드로 판단

각 allocate/release 는 독립적으로 실행되며, 하나가 실패해도 나머지는 계속 시도한다.
롤백은 하지 않는다.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set

from .config import validate_ip_address_types
from .errors import DeployKitError, ReconciliationError
from .fly_api import FlyApi, IpAddress, IpInventory
from .logging_utils import get_logger


logger = get_logger(__name__)


TYPED_KINDS = ("v4", "v6", "private_v6")
SHARED_V4 = "shared_v4"

ALLOCATE = "allocate"
RELEASE = "release"


@dataclass(frozen=True)
class IpChange:
    action: str  # allocate | release
    kind: str
    address: Optional[IpAddress] = None


@dataclass
class IpActionResult:
    change: IpChange
    ok: bool
    address: Optional[str] = None
    detail: Optional[str] = None


@dataclass
class ReconciliationOutcome:
    app_name: str
    region: str
    results: List[IpActionResult] = field(default_factory=list)
    # 주소 목록 조회 자체가 실패한 경우
    error: Optional[str] = None

    @property
    def allocated(self) -> List[str]:
        return [r.change.kind for r in self.results if r.ok and r.change.action == ALLOCATE]

    @property
    def released(self) -> List[str]:
        return [r.change.kind for r in self.results if r.ok and r.change.action == RELEASE]

    @property
    def failures(self) -> List[IpActionResult]:
        return [r for r in self.results if not r.ok]

    @property
    def ok(self) -> bool:
        return self.error is None and not self.failures


def plan_ip_changes(inventory: IpInventory, desired: Iterable[str]) -> List[IpChange]:
    """
    현재 주소 목록과 원하는 타입 집합을 비교해 필요한 변경 목록을 만든다.
    결과 순서에는 의미가 없다.
    """
    wanted: Set[str] = set(validate_ip_address_types(list(desired)))
    changes: List[IpChange] = []

    for kind in TYPED_KINDS:
        existing = [a for a in inventory.addresses if a.type == kind]
        if existing and kind not in wanted:
            changes.extend(IpChange(RELEASE, kind, a) for a in existing)
        elif not existing and kind in wanted:
            changes.append(IpChange(ALLOCATE, kind))

    if inventory.shared_v4 and SHARED_V4 not in wanted:
        changes.append(
            IpChange(RELEASE, SHARED_V4, IpAddress(id="", address=inventory.shared_v4, type=SHARED_V4))
        )
    elif not inventory.shared_v4 and SHARED_V4 in wanted:
        changes.append(IpChange(ALLOCATE, SHARED_V4))

    return changes


async def _apply_change(
    api: FlyApi,
    change: IpChange,
    *,
    app_name: str,
    organization_id: Optional[str],
    region: str,
) -> IpActionResult:
    try:
        if change.action == ALLOCATE:
            address = await api.allocate_ip_address(
                app_name,
                ip_type=change.kind,
                region=region,
                organization_id=organization_id,
            )
            logger.info("IP 할당: %s %s (%s)", app_name, change.kind, address or "?")
            return IpActionResult(change, ok=True, address=address)

        assert change.address is not None
        await api.release_ip_address(
            app_name,
            address=change.address.address,
            ip_address_id=change.address.id or None,
        )
        logger.info("IP 해제: %s %s (%s)", app_name, change.kind, change.address.address)
        return IpActionResult(change, ok=True, address=change.address.address)
    except DeployKitError as e:
        logger.error("IP %s 실패 (계속 진행): %s %s: %s", change.action, app_name, change.kind, e)
        return IpActionResult(change, ok=False, detail=str(e))


async def reconcile_ips(
    api: FlyApi,
    *,
    app_name: str,
    organization_id: Optional[str],
    region: str,
    desired: Iterable[str],
) -> ReconciliationOutcome:
    """
    한 번의 패스로 주소 상태를 desired 에 맞춘다. 재시도는 하지 않는다.

    주소 목록 조회에 실패하면 ReconciliationError.
    """
    desired = list(desired)
    try:
        inventory = await api.get_ip_addresses(app_name)
    except DeployKitError as e:
        raise ReconciliationError(f"IP 주소 목록을 가져올 수 없습니다: {app_name} ({e})") from e

    changes = plan_ip_changes(inventory, desired)
    outcome = ReconciliationOutcome(app_name=app_name, region=region)
    if not changes:
        logger.info("IP 주소가 이미 원하는 상태입니다: %s %s", app_name, sorted(set(desired)))
        return outcome

    for change in changes:
        outcome.results.append(
            await _apply_change(
                api,
                change,
                app_name=app_name,
                organization_id=organization_id,
                region=region,
            )
        )

    return outcome


def connection_ip_types(connection: str) -> List[str]:
    """setup-ips 의 connection 옵션을 주소 타입 목록으로 변환한다."""
    if connection == "private":
        return ["private_v6"]
    if connection == "public":
        return [SHARED_V4, "v6"]
    raise ValueError(f"알 수 없는 connection 값입니다: {connection!r} (public | private)")
