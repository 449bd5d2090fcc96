from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from .config import FlyConfig, SecretsConfig, validate_ip_address_types
from .env_files import read_env_file, read_manifest
from .errors import DeployKitError, PartialDeployFailure, ReconciliationError
from .fly_api import FlyApi
from .fly_apps import NOT_FOUND, TRANSPORT_ERROR, AppDirectory
from .fly_ips import ReconciliationOutcome, reconcile_ips
from .logging_utils import get_logger
from . import subprocess_utils


logger = get_logger(__name__)


@dataclass
class DeployOptions:
    app_name: str
    organization: str
    regions: List[str]
    toml_file: str = "fly.toml"
    dockerfile: str = "Dockerfile"
    ip_address_types: List[str] = field(default_factory=list)
    cwd: Optional[str] = None
    flyctl_bin: str = "flyctl"
    timeout: Optional[float] = None

    def __post_init__(self) -> None:
        if not self.app_name:
            raise ValueError("배포할 앱 이름(FLY_APP_NAME / --app)이 필요합니다.")
        if not self.organization:
            raise ValueError("organization(FLY_ORG / --org)이 필요합니다.")
        if not self.regions:
            raise ValueError("최소 하나의 리전(FLY_REGIONS / --region)이 필요합니다.")
        # 중복 리전은 한 번만 배포
        self.regions = list(dict.fromkeys(self.regions))
        validate_ip_address_types(self.ip_address_types)

    @classmethod
    def from_config(cls, cfg: FlyConfig, cwd: Optional[str] = None) -> "DeployOptions":
        return cls(
            app_name=cfg.app_name or "",
            organization=cfg.organization or "",
            regions=list(cfg.regions),
            toml_file=cfg.toml_file,
            dockerfile=cfg.dockerfile,
            ip_address_types=list(cfg.ip_address_types),
            cwd=cwd,
            flyctl_bin=cfg.flyctl_bin,
            timeout=cfg.deploy_timeout,
        )


@dataclass(frozen=True)
class RegionResult:
    region: str
    ok: bool
    returncode: Optional[int] = None
    detail: Optional[str] = None


@dataclass
class DeployOutcome:
    results: List[RegionResult] = field(default_factory=list)

    @property
    def succeeded(self) -> List[str]:
        return [r.region for r in self.results if r.ok]

    @property
    def failed(self) -> List[str]:
        return [r.region for r in self.results if not r.ok]


@dataclass
class DeployReport:
    deploy: DeployOutcome
    # IP 타입을 요청하지 않았으면 None
    reconciliation: Optional[List[ReconciliationOutcome]] = None

    @property
    def reconciliation_ok(self) -> bool:
        return all(o.ok for o in (self.reconciliation or []))


@dataclass
class SecretsDeployResult:
    app_name: str
    keys: List[str] = field(default_factory=list)
    release_version: Optional[int] = None
    # restart 를 요청하지 않았으면 None
    restarted: Optional[bool] = None


def build_deploy_command(options: DeployOptions, region: str) -> List[str]:
    return [
        options.flyctl_bin,
        "deploy",
        f"--app={options.app_name}",
        "--auto-confirm",
        f"--config={options.toml_file}",
        f"--dockerfile={options.dockerfile}",
        f"--region={region}",
        "--local-only",
    ]


async def deploy_region(options: DeployOptions, region: str) -> RegionResult:
    """
    한 리전에 대해 flyctl deploy 를 실행한다. 실패는 예외 대신 RegionResult 로 돌려준다.
    """
    cmd = build_deploy_command(options, region)
    try:
        code = await subprocess_utils.run_inherited(cmd, cwd=options.cwd, timeout=options.timeout)
    except Exception as e:  # noqa: BLE001
        logger.error("리전 배포 실행 실패: %s (%s)", region, e)
        return RegionResult(region, ok=False, detail=str(e))

    if code != 0:
        logger.error("flyctl deploy 가 0 이 아닌 코드로 종료되었습니다: region=%s exit=%s", region, code)
        return RegionResult(region, ok=False, returncode=code, detail=f"exit={code}")

    logger.info("리전 배포 완료: %s", region)
    return RegionResult(region, ok=True, returncode=code)


async def deploy_all_regions(options: DeployOptions) -> DeployOutcome:
    """
    모든 리전을 동시에 배포하고, 전부 끝날 때까지 기다린다.
    한 리전이 실패해도 나머지 리전은 계속 진행된다.
    """
    logger.info("배포 대상 리전: %s", options.regions)
    async with asyncio.TaskGroup() as tg:
        tasks = [tg.create_task(deploy_region(options, region)) for region in options.regions]
    return DeployOutcome(results=[t.result() for t in tasks])


async def reconcile_app_regions(
    api: FlyApi,
    app_name: str,
    desired: Sequence[str],
    *,
    organization_id: Optional[str] = None,
) -> List[ReconciliationOutcome]:
    """
    앱이 현재 보고하는 모든 리전에 대해 IP 주소를 정리한다.
    실패는 결과 목록에 기록되며 예외로 올라오지 않는다.
    """
    lookup = await AppDirectory(api).lookup(app_name)
    if not lookup.is_found or lookup.app is None:
        detail = lookup.detail or "앱을 찾을 수 없습니다"
        logger.error("IP 정리를 위한 앱 조회 실패: %s (%s)", app_name, detail)
        return [ReconciliationOutcome(app_name=app_name, region="*", error=detail)]

    app = lookup.app
    if not app.regions:
        logger.error("앱에 리전이 없습니다: %s", app_name)
        return [ReconciliationOutcome(app_name=app_name, region="*", error="앱에 리전이 없습니다")]

    outcomes: List[ReconciliationOutcome] = []
    for region in app.regions:
        try:
            outcome = await reconcile_ips(
                api,
                app_name=app_name,
                organization_id=app.organization_id or organization_id,
                region=region,
                desired=desired,
            )
        except ReconciliationError as e:
            logger.error("IP 정리 실패: %s", e)
            outcome = ReconciliationOutcome(app_name=app_name, region=region, error=str(e))
        outcomes.append(outcome)
    return outcomes


async def deploy_app(api: FlyApi, options: DeployOptions) -> DeployReport:
    """
    1) 앱 확인/생성 (regions[0] 기준)
    2) 모든 리전 동시 배포
    3) 전부 성공했고 IP 타입이 지정되었으면 리전별 IP 정리

    하나 이상의 리전이 실패하면 PartialDeployFailure. 성공한 리전은 그대로 유지된다.
    """
    app = await AppDirectory(api).ensure(options.app_name, options.organization, options.regions[0])

    outcome = await deploy_all_regions(options)
    for r in outcome.results:
        if r.ok:
            logger.info("deployed to %s", r.region)
        else:
            logger.error("failed to deploy to %s (%s)", r.region, r.detail)

    if outcome.failed:
        raise PartialDeployFailure(outcome.failed, outcome.succeeded)

    report = DeployReport(deploy=outcome)
    if options.ip_address_types:
        report.reconciliation = await reconcile_app_regions(
            api,
            options.app_name,
            options.ip_address_types,
            organization_id=app.organization_id,
        )
    return report


async def deploy_secrets(
    api: FlyApi,
    *,
    app_name: str,
    env_file: str,
    organization: str,
    primary_region: str,
    replace_all: bool = False,
    restart: bool = False,
) -> SecretsDeployResult:
    """
    .env 파일의 값을 Fly 앱 secret 으로 설정한다.

    replace_all=True 이면 파일에 없는 기존 secret 은 삭제된다.
    restart 실패는 로그만 남기고 결과의 restarted=False 로 표시한다.
    """
    directory = AppDirectory(api)
    await directory.ensure(app_name, organization, primary_region)

    secrets = read_env_file(env_file)
    result = SecretsDeployResult(app_name=app_name, keys=sorted(secrets))
    if not secrets:
        logger.warning("설정할 secret 이 없어 건너뜁니다: %s", env_file)
        return result

    result.release_version = await api.set_secrets(app_name, secrets, replace_all=replace_all)
    logger.info(
        "%d개 secret 을 설정했습니다: %s (release=%s)",
        len(secrets),
        app_name,
        result.release_version,
    )

    if restart:
        result.restarted = await directory.restart(app_name)
    return result


async def setup_ips(api: FlyApi, app_name: str, ip_types: Sequence[str]) -> List[ReconciliationOutcome]:
    """앱의 모든 리전에 대해 IP 주소를 정리한다. 앱/리전이 없으면 ReconciliationError."""
    lookup = await AppDirectory(api).lookup(app_name)
    if lookup.status == NOT_FOUND:
        raise ReconciliationError(f"앱을 찾을 수 없습니다: {app_name}")
    if lookup.status == TRANSPORT_ERROR:
        raise ReconciliationError(f"앱 상태를 확인할 수 없습니다: {app_name} ({lookup.detail})")
    assert lookup.app is not None
    if not lookup.app.regions:
        raise ReconciliationError(f"앱에 리전이 없습니다: {app_name}")
    return await reconcile_app_regions(api, app_name, ip_types)


def run_flyctl(flyctl_bin: str, args: Sequence[str], *, cwd: Optional[str] = None) -> int:
    """임의의 flyctl 명령을 프로젝트 디렉토리에서 실행한다."""
    result = subprocess_utils.run_command(
        [flyctl_bin, *args],
        cwd=cwd,
        timeout=None,
        stream_output=True,
        check=False,
    )
    return result.returncode


def _section(lines: List[str], title: str, items: Sequence[str]) -> None:
    lines.append("")
    lines.append(f"## {title}")
    if items:
        for s in items:
            lines.append(f"- {s}")
    else:
        lines.append("- (none)")


def _reconciliation_lines(outcomes: Sequence[ReconciliationOutcome]) -> List[str]:
    items: List[str] = []
    for o in outcomes:
        if o.error:
            items.append(f"{o.region}: 실패 ({o.error})")
            continue
        parts = []
        if o.allocated:
            parts.append("allocated=" + ",".join(o.allocated))
        if o.released:
            parts.append("released=" + ",".join(o.released))
        for f in o.failures:
            parts.append(f"{f.change.action} {f.change.kind} 실패 ({f.detail})")
        items.append(f"{o.region}: " + ("; ".join(parts) if parts else "변경 없음"))
    return items


def render_deploy_summary(
    app_name: str,
    succeeded: Sequence[str],
    failed: Sequence[str],
    reconciliation: Optional[Sequence[ReconciliationOutcome]] = None,
) -> str:
    lines: List[str] = []
    lines.append("# Deploy summary")
    lines.append(f"- app: {app_name}")

    _section(lines, "Succeeded regions", succeeded)
    _section(lines, "Failed regions", failed)

    if reconciliation is not None:
        _section(lines, "IP addresses", _reconciliation_lines(reconciliation))

    return "\n".join(lines)


def render_ip_summary(app_name: str, outcomes: Sequence[ReconciliationOutcome]) -> str:
    lines: List[str] = ["# IP setup summary", f"- app: {app_name}"]
    _section(lines, "Regions", _reconciliation_lines(outcomes))
    return "\n".join(lines)


def plan_all(secrets_cfg: Optional[SecretsConfig], fly_cfg: FlyConfig, secrets_error: Optional[str] = None) -> str:
    """
    현재 설정 요약 텍스트를 리턴한다. 원격 호출은 하지 않는다.
    """
    lines: List[str] = []
    lines.append("# Deploy plan")
    lines.append("")

    lines.append("## Fly")
    lines.append(f"- api_token: {'(set)' if fly_cfg.api_token else '(not set)'}")
    lines.append(f"- api_url: {fly_cfg.api_url}")
    lines.append(f"- app_name: {fly_cfg.app_name or '(not set)'}")
    lines.append(f"- organization: {fly_cfg.organization or '(not set)'}")
    lines.append(f"- regions: {', '.join(fly_cfg.regions) or '(not set)'}")
    lines.append(f"- toml_file: {fly_cfg.toml_file}")
    lines.append(f"- dockerfile: {fly_cfg.dockerfile}")
    lines.append(f"- ip_address_types: {', '.join(fly_cfg.ip_address_types) or '(none)'}")
    lines.append(f"- flyctl_bin: {fly_cfg.flyctl_bin}")
    lines.append(f"- deploy_timeout: {fly_cfg.deploy_timeout or '(none)'}")
    lines.append("")

    lines.append("## Secrets")
    if secrets_cfg is None:
        lines.append(f"- (설정 로드 실패: {secrets_error})")
    else:
        lines.append(f"- store_backend: {secrets_cfg.store_backend}")
        lines.append(f"- ssm_prefix: {secrets_cfg.ssm_prefix or '(none)'}")
        lines.append(f"- aws_profile: {secrets_cfg.aws_profile or '(default)'}")
        lines.append(f"- aws_region: {secrets_cfg.aws_region or '(not set)'}")
        if secrets_cfg.store_backend == "gcp":
            lines.append(f"- gcp_project_id: {secrets_cfg.gcp_project_id}")
        lines.append(f"- manifest: {secrets_cfg.manifest_path}")
        lines.append(f"- env_file: {secrets_cfg.env_file}")
        lines.append(f"- on_missing: {secrets_cfg.on_missing}")

    return "\n".join(lines)


async def check_all(
    secrets_cfg: Optional[SecretsConfig],
    fly_cfg: FlyConfig,
    *,
    api: Optional[FlyApi] = None,
    secrets_error: Optional[str] = None,
) -> Tuple[str, bool]:
    """
    실제 리소스 변경 없이 설정과 원격 상태를 점검한다.

    Returns:
        summary: 사람이 읽기 좋은 텍스트 요약
        has_issues: 크리티컬 이슈가 있는지 여부
    """
    lines: List[str] = ["# Deploy pre-check", ""]
    critical: List[str] = []
    warnings: List[str] = []

    # 1) Fly
    lines.append("## Fly")
    if not fly_cfg.api_token:
        critical.append("Fly: FLY_API_TOKEN 이 설정되지 않았습니다.")
    elif not fly_cfg.app_name:
        warnings.append("Fly: FLY_APP_NAME 이 설정되지 않아 앱 상태를 확인하지 않습니다.")
    elif api is not None:
        try:
            lookup = await AppDirectory(api).lookup(fly_cfg.app_name)
        except DeployKitError as e:
            critical.append(f"Fly: 앱 조회 중 오류: {e}")
        else:
            if lookup.is_found and lookup.app is not None:
                regions = ", ".join(lookup.app.regions) or "(none)"
                lines.append(f"- app: 존재함 ({fly_cfg.app_name}, regions={regions})")
            elif lookup.status == NOT_FOUND:
                warnings.append(f"Fly: 앱 없음 (배포 시 생성됨) ({fly_cfg.app_name})")
            else:
                critical.append(f"Fly: 앱 상태 확인 불가 ({lookup.detail})")
    if fly_cfg.app_name and not fly_cfg.regions:
        warnings.append("Fly: FLY_REGIONS 가 비어 있어 deploy 에 --region 이 필요합니다.")
    lines.append("")

    # 2) Secrets
    lines.append("## Secrets")
    if secrets_cfg is None:
        critical.append(f"Secrets: 설정 로드 실패 ({secrets_error})")
    else:
        try:
            mapping = read_manifest(secrets_cfg.manifest_path)
            lines.append(f"- manifest: {len(mapping)}개 항목 ({secrets_cfg.manifest_path})")
            if not mapping:
                warnings.append(f"Secrets: 매니페스트가 비어 있습니다 ({secrets_cfg.manifest_path})")
        except DeployKitError as e:
            critical.append(f"Secrets: {e}")
        try:
            values = read_env_file(secrets_cfg.env_file)
            lines.append(f"- env_file: {len(values)}개 값 ({secrets_cfg.env_file})")
        except DeployKitError:
            warnings.append(f"Secrets: .env 파일 없음 (pull 시 생성됨) ({secrets_cfg.env_file})")
    lines.append("")

    lines.append("## Summary")
    if critical:
        lines.append("- 상태: 크리티컬 이슈가 있습니다. 배포 전 반드시 해결해야 합니다.")
    elif warnings:
        lines.append("- 상태: 경고만 있습니다.")
    else:
        lines.append("- 상태: 주요 이슈 없음")

    if critical:
        _section(lines, "Critical issues", critical)
    if warnings:
        _section(lines, "Warnings", warnings)

    return "\n".join(lines), bool(critical)
