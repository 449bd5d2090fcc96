import asyncio
import os
import sys
from dataclasses import replace
from typing import Any, Awaitable, Callable, NoReturn, Optional, Tuple, TypeVar

import click

from .config import (
    IP_ADDRESS_TYPES,
    MISSING_VALUE_POLICIES,
    FlyConfig,
    SecretsConfig,
    load_env_files,
)
from .errors import DeployKitError, PartialDeployFailure
from .fly_api import FlyApi
from .fly_ips import connection_ip_types
from .logging_utils import setup_logging, get_logger
from .orchestrator import (
    DeployOptions,
    check_all,
    deploy_app,
    deploy_secrets,
    plan_all,
    render_deploy_summary,
    render_ip_summary,
    run_flyctl,
    setup_ips,
)
from .secret_store import build_store
from .secrets_sync import pull_secrets, push_secrets


logger = get_logger(__name__)

T = TypeVar("T")


@click.group()
@click.option(
    "-C",
    "--chdir",
    "chdir",
    type=click.Path(file_okay=False, dir_okay=True, exists=True),
    default=".",
    help="작업 디렉토리 (기본: 현재 디렉토리). .env 파일과 상대 경로의 기준이 됩니다.",
)
@click.option(
    "-v",
    "--verbose",
    count=True,
    help="로그 레벨을 DEBUG로 올립니다. (-vv 는 boto/httpx 로그까지 출력)",
)
@click.option("-q", "--quiet", is_flag=True, help="WARNING 이상의 로그만 출력합니다.")
@click.pass_context
def main(ctx: click.Context, chdir: str, verbose: int, quiet: bool) -> None:
    """Fly.io 배포 및 SSM 파라미터 스토어 secret 동기화 CLI"""
    setup_logging(verbose, quiet=quiet)
    ctx.ensure_object(dict)
    ctx.obj["chdir"] = chdir
    ctx.obj["verbose"] = verbose


def _fail(message: str) -> NoReturn:
    click.echo(f"[ERROR] {message}", err=True)
    sys.exit(1)


def _resolve_path(ctx: click.Context, path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(ctx.obj["chdir"], path)


def _load_secrets_config(ctx: click.Context, **overrides: Any) -> SecretsConfig:
    load_env_files(ctx.obj["chdir"])
    try:
        # CLI 옵션은 필수값 검사 전에 반영한다 (--region 이 AWS_REGION 을 대신함)
        cfg = SecretsConfig.from_env(overrides)
    except ValueError as e:
        _fail(f"설정 로드 실패: {e}")
    cfg = replace(
        cfg,
        manifest_path=_resolve_path(ctx, cfg.manifest_path),
        env_file=_resolve_path(ctx, cfg.env_file),
    )
    logger.debug("Config loaded: %s", cfg)
    return cfg


def _load_fly_config(ctx: click.Context, **overrides: Any) -> FlyConfig:
    load_env_files(ctx.obj["chdir"])
    try:
        cfg = FlyConfig.from_env()
    except ValueError as e:
        _fail(f"설정 로드 실패: {e}")
    cfg = replace(cfg, **{k: v for k, v in overrides.items() if v is not None})
    logger.debug("Config loaded: %s", cfg)
    return cfg


async def _with_api(cfg: FlyConfig, func: Callable[[FlyApi], Awaitable[T]]) -> T:
    async with FlyApi(cfg.api_token, api_url=cfg.api_url) as api:
        return await func(api)


def _run(action: str, func: Callable[[], T]) -> T:
    """명령 경계에서 예외를 [ERROR] 메시지 + exit 1 로 변환한다."""
    try:
        return func()
    except DeployKitError as e:
        logger.debug("%s 실패", action, exc_info=True)
        _fail(f"{action} 실패: {e}")
    except ValueError as e:
        _fail(f"{action} 실패: {e}")
    except Exception as e:  # noqa: BLE001
        logger.exception("%s 중 오류 발생", action)
        _fail(f"{action} 실패: {e}")


# -----------------------------
# secrets
# -----------------------------


@main.group()
def secrets() -> None:
    """secrets.json 매니페스트 기준 파라미터 스토어 <-> .env 동기화"""


def _secrets_options(func: Callable[..., Any]) -> Callable[..., Any]:
    func = click.option("--manifest", "manifest_path", type=str, default=None,
                        help="매니페스트 JSON 경로 (기본: SECRETS_MANIFEST 또는 secrets.json)")(func)
    func = click.option("--env-file", "env_file", type=str, default=None,
                        help=".env 파일 경로 (기본: SECRETS_ENV_FILE 또는 .env.secrets)")(func)
    func = click.option("--prefix", "ssm_prefix", type=str, default=None,
                        help="원격 파라미터 이름 앞에 붙일 prefix (기본: SSM_PREFIX)")(func)
    func = click.option("--profile", "aws_profile", type=str, default=None,
                        help="AWS 프로파일 이름 (기본: AWS_PROFILE)")(func)
    func = click.option("--region", "aws_region", type=str, default=None,
                        help="AWS 리전 (기본: AWS_REGION)")(func)
    return func


@secrets.command(name="pull")
@_secrets_options
@click.pass_context
def secrets_pull(ctx: click.Context, **overrides: Optional[str]) -> None:
    """파라미터 스토어의 값을 .env 파일로 가져온다 (파일 전체 덮어쓰기)"""
    cfg = _load_secrets_config(ctx, **overrides)

    def _pull():
        store = build_store(cfg)
        return pull_secrets(
            store,
            manifest_path=cfg.manifest_path,
            env_file=cfg.env_file,
            prefix=cfg.ssm_prefix,
        )

    result = _run("secret 가져오기", _pull)
    click.echo(f"{len(result.written)}개 항목을 가져왔습니다: {cfg.env_file}")
    if result.missing:
        click.echo("스토어에 없는 항목: " + ", ".join(result.missing), err=True)


@secrets.command(name="push")
@_secrets_options
@click.option(
    "--on-missing",
    "on_missing",
    type=click.Choice(MISSING_VALUE_POLICIES),
    default=None,
    help=".env 에 값이 없는 항목 처리 (기본: SECRETS_ON_MISSING 또는 error)",
)
@click.pass_context
def secrets_push(ctx: click.Context, **overrides: Optional[str]) -> None:
    """.env 파일의 값을 파라미터 스토어에 업로드한다 (항상 덮어쓰기)"""
    cfg = _load_secrets_config(ctx, **overrides)

    def _push():
        store = build_store(cfg)
        return push_secrets(
            store,
            manifest_path=cfg.manifest_path,
            env_file=cfg.env_file,
            prefix=cfg.ssm_prefix,
            on_missing=cfg.on_missing,
        )

    result = _run("secret 업로드", _push)
    click.echo(f"{len(result.pushed)}개 항목을 업로드했습니다.")
    if result.skipped:
        click.echo("건너뛴 항목: " + ", ".join(result.skipped), err=True)


# -----------------------------
# fly
# -----------------------------


@main.command(name="deploy")
@click.option("--app", "app_name", type=str, default=None, help="Fly 앱 이름 (기본: FLY_APP_NAME)")
@click.option("--org", "organization", type=str, default=None, help="Fly organization (기본: FLY_ORG)")
@click.option("--region", "regions", type=str, multiple=True,
              help="배포 리전. 여러 번 지정 가능하며 첫 번째가 앱 생성 리전 (기본: FLY_REGIONS)")
@click.option("--config", "toml_file", type=str, default=None, help="fly.toml 경로 (기본: FLY_TOML_FILE)")
@click.option("--dockerfile", "dockerfile", type=str, default=None, help="Dockerfile 경로 (기본: FLY_DOCKERFILE)")
@click.option("--ip-type", "ip_types", type=click.Choice(IP_ADDRESS_TYPES), multiple=True,
              help="배포 후 맞출 IP 주소 타입. 여러 번 지정 가능 (기본: FLY_IP_ADDRESS_TYPES)")
@click.option("--timeout", "deploy_timeout", type=float, default=None,
              help="리전별 flyctl deploy 제한 시간(초)")
@click.pass_context
def deploy(
    ctx: click.Context,
    app_name: Optional[str],
    organization: Optional[str],
    regions: Tuple[str, ...],
    toml_file: Optional[str],
    dockerfile: Optional[str],
    ip_types: Tuple[str, ...],
    deploy_timeout: Optional[float],
) -> None:
    """모든 리전에 동시에 flyctl deploy 를 실행하고, 필요하면 IP 주소를 정리한다"""
    cfg = _load_fly_config(
        ctx,
        app_name=app_name,
        organization=organization,
        regions=list(regions) or None,
        toml_file=toml_file,
        dockerfile=dockerfile,
        ip_address_types=list(ip_types) or None,
        deploy_timeout=deploy_timeout,
    )

    try:
        options = DeployOptions.from_config(cfg, cwd=ctx.obj["chdir"])
    except ValueError as e:
        _fail(str(e))

    def _deploy():
        try:
            return asyncio.run(_with_api(cfg, lambda api: deploy_app(api, options)))
        except PartialDeployFailure as e:
            click.echo(render_deploy_summary(options.app_name, e.succeeded_regions, e.failed_regions))
            raise

    report = _run("배포", _deploy)
    click.echo(
        render_deploy_summary(
            options.app_name,
            report.deploy.succeeded,
            report.deploy.failed,
            report.reconciliation,
        )
    )
    # IP 정리 실패는 배포 실패로 보지 않는다 (요약에만 표시)
    if not report.reconciliation_ok:
        click.echo("[WARN] 일부 IP 주소 정리에 실패했습니다. 요약을 확인하세요.", err=True)


@main.command(name="deploy-secrets")
@click.option("--app", "app_name", type=str, default=None, help="Fly 앱 이름 (기본: FLY_APP_NAME)")
@click.option("--org", "organization", type=str, default=None, help="Fly organization (기본: FLY_ORG)")
@click.option("--primary-region", "primary_region", type=str, default=None,
              help="앱이 없을 때 생성할 리전 (기본: FLY_REGIONS 의 첫 번째)")
@click.option("--env-file", "env_file", type=str, default=None, help=".env 파일 경로 (기본: FLY_SECRETS_ENV_FILE)")
@click.option("--replace-all/--no-replace-all", "replace_all", default=None,
              help="파일에 없는 기존 secret 을 삭제합니다.")
@click.option("--restart/--no-restart", "restart", default=None,
              help="secret 설정 후 앱을 재시작합니다. (실패해도 명령은 성공)")
@click.pass_context
def deploy_secrets_cmd(
    ctx: click.Context,
    app_name: Optional[str],
    organization: Optional[str],
    primary_region: Optional[str],
    env_file: Optional[str],
    replace_all: Optional[bool],
    restart: Optional[bool],
) -> None:
    """.env 파일의 값을 Fly 앱 secret 으로 설정한다"""
    cfg = _load_fly_config(
        ctx,
        app_name=app_name,
        organization=organization,
        secrets_env_file=env_file,
        replace_all_secrets=replace_all,
        restart_after_secrets=restart,
    )
    region = primary_region or cfg.primary_region
    if not cfg.app_name or not cfg.organization or not region:
        _fail("--app, --org, --primary-region (또는 FLY_APP_NAME, FLY_ORG, FLY_REGIONS) 가 필요합니다.")

    def _deploy_secrets():
        return asyncio.run(
            _with_api(
                cfg,
                lambda api: deploy_secrets(
                    api,
                    app_name=cfg.app_name or "",
                    env_file=_resolve_path(ctx, cfg.secrets_env_file),
                    organization=cfg.organization or "",
                    primary_region=region,
                    replace_all=cfg.replace_all_secrets,
                    restart=cfg.restart_after_secrets,
                ),
            )
        )

    result = _run("secret 배포", _deploy_secrets)
    click.echo(f"{len(result.keys)}개 secret 을 설정했습니다: {result.app_name} (release={result.release_version})")
    if result.restarted is False:
        click.echo("[WARN] 앱 재시작에 실패했습니다. (secret 은 설정됨)", err=True)


@main.command(name="setup-ips")
@click.option("--app", "app_name", type=str, default=None, help="Fly 앱 이름 (기본: FLY_APP_NAME)")
@click.option(
    "--connection",
    type=click.Choice(["public", "private"]),
    default=None,
    help="public: shared_v4 + v6, private: private_v6",
)
@click.option("--ip-type", "ip_types", type=click.Choice(IP_ADDRESS_TYPES), multiple=True,
              help="원하는 IP 주소 타입을 직접 지정 (--connection 대신)")
@click.pass_context
def setup_ips_cmd(
    ctx: click.Context,
    app_name: Optional[str],
    connection: Optional[str],
    ip_types: Tuple[str, ...],
) -> None:
    """앱의 모든 리전에 대해 IP 주소를 원하는 타입 집합에 맞춘다"""
    cfg = _load_fly_config(ctx, app_name=app_name)
    if not cfg.app_name:
        _fail("--app (또는 FLY_APP_NAME) 이 필요합니다.")

    if ip_types:
        desired = list(ip_types)
    elif connection:
        desired = connection_ip_types(connection)
    else:
        desired = list(cfg.ip_address_types) or connection_ip_types("public")

    outcomes = _run(
        "IP 설정",
        lambda: asyncio.run(_with_api(cfg, lambda api: setup_ips(api, cfg.app_name or "", desired))),
    )
    click.echo(render_ip_summary(cfg.app_name, outcomes))
    if not all(o.ok for o in outcomes):
        sys.exit(1)


@main.command(
    name="fly",
    context_settings={"ignore_unknown_options": True, "allow_extra_args": True},
)
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def fly(ctx: click.Context, args: Tuple[str, ...]) -> None:
    """작업 디렉토리에서 flyctl 명령을 그대로 실행한다 (예: deploy-fly fly -- status)"""
    cfg = _load_fly_config(ctx)
    if not args:
        _fail("실행할 flyctl 인자가 필요합니다.")
    code = _run("flyctl 실행", lambda: run_flyctl(cfg.flyctl_bin, list(args), cwd=ctx.obj["chdir"]))
    if code != 0:
        sys.exit(code)


# -----------------------------
# plan / check
# -----------------------------


def _try_secrets_config(ctx: click.Context) -> Tuple[Optional[SecretsConfig], Optional[str]]:
    load_env_files(ctx.obj["chdir"])
    try:
        cfg = SecretsConfig.from_env()
    except ValueError as e:
        return None, str(e)
    return replace(
        cfg,
        manifest_path=_resolve_path(ctx, cfg.manifest_path),
        env_file=_resolve_path(ctx, cfg.env_file),
    ), None


@main.command()
@click.pass_context
def plan(ctx: click.Context) -> None:
    """현재 설정(.env / .env.fly / .env.aws + 환경변수)을 요약하여 출력"""
    fly_cfg = _load_fly_config(ctx)
    secrets_cfg, secrets_error = _try_secrets_config(ctx)
    click.echo(plan_all(secrets_cfg, fly_cfg, secrets_error=secrets_error))


@main.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """
    배포 전에 자격 증명/매니페스트/앱 상태를 점검한다.
    (실제 리소스 생성/변경은 하지 않는다)
    """
    fly_cfg = _load_fly_config(ctx)
    secrets_cfg, secrets_error = _try_secrets_config(ctx)

    async def _check() -> Tuple[str, bool]:
        if not fly_cfg.api_token:
            return await check_all(secrets_cfg, fly_cfg, secrets_error=secrets_error)
        return await _with_api(
            fly_cfg,
            lambda api: check_all(secrets_cfg, fly_cfg, api=api, secrets_error=secrets_error),
        )

    report, has_issues = _run("사전 체크", lambda: asyncio.run(_check()))
    click.echo(report)

    # 크리티컬 이슈가 있으면 exit 1 로 종료하여 CI 등에서 감지 가능하게 한다.
    if has_issues:
        sys.exit(1)
