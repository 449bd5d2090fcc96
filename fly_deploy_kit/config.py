from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from dotenv import load_dotenv


ENV_FILES_DEFAULT_ORDER = [".env", ".env.fly", ".env.aws"]

FLY_API_URL_DEFAULT = "https://api.fly.io/graphql"

IP_ADDRESS_TYPES = ("v4", "v6", "private_v6", "shared_v4")
MISSING_VALUE_POLICIES = ("error", "empty", "skip")
SECRET_STORE_BACKENDS = ("ssm", "gcp")


def load_env_files(base_dir: str = ".",
                   files: Optional[List[str]] = None) -> None:
    """
    주어진 디렉토리에서 .env 계열 파일을 순서대로 로드한다.
    후순위 파일이 같은 키를 덮어쓴다.
    """
    order = files or ENV_FILES_DEFAULT_ORDER
    for name in order:
        path = os.path.join(base_dir, name)
        if os.path.exists(path):
            load_dotenv(path, override=True)


def _get_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "y"}


def _get_float(name: str) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} 값이 숫자가 아닙니다: {raw!r}") from e


def split_list(raw: Optional[str]) -> List[str]:
    """쉼표로 구분된 문자열을 공백 제거된 리스트로 변환한다."""
    if not raw:
        return []
    return [p.strip() for p in raw.split(",") if p.strip()]


def validate_ip_address_types(types: List[str]) -> List[str]:
    invalid = sorted({t for t in types if t not in IP_ADDRESS_TYPES})
    if invalid:
        raise ValueError(
            "알 수 없는 IP 주소 타입입니다: "
            + ", ".join(invalid)
            + f" (허용: {', '.join(IP_ADDRESS_TYPES)})"
        )
    return types


def validate_missing_policy(policy: str) -> str:
    if policy not in MISSING_VALUE_POLICIES:
        raise ValueError(
            f"알 수 없는 SECRETS_ON_MISSING 값입니다: {policy!r} "
            f"({' | '.join(MISSING_VALUE_POLICIES)} 중 하나)"
        )
    return policy


@dataclass
class SecretsConfig:
    # 필수
    aws_region: str

    ssm_prefix: str = ""
    aws_profile: Optional[str] = None

    # 스토어 백엔드 (ssm | gcp)
    store_backend: str = "ssm"
    gcp_project_id: Optional[str] = None

    manifest_path: str = "secrets.json"
    env_file: str = ".env.secrets"

    # push 시 .env 에 값이 없는 항목 처리 (error | empty | skip)
    on_missing: str = "error"

    @classmethod
    def from_env(cls, overrides: Optional[Dict[str, Optional[str]]] = None) -> "SecretsConfig":
        """
        환경변수로 설정을 만든다. overrides 는 필드 이름 기준이며 (None 은 무시)
        필수값 검사 전에 환경변수보다 우선 적용된다.
        """
        given = {k: v for k, v in (overrides or {}).items() if v is not None}
        missing: List[str] = []

        def get(key: str, env_name: str, default: Optional[str] = None) -> Optional[str]:
            if key in given:
                return given[key]
            return os.getenv(env_name, default)

        def req(key: str, env_name: str) -> str:
            val = get(key, env_name)
            if not val:
                missing.append(env_name)
            return val or ""

        backend = (get("store_backend", "SECRET_STORE_BACKEND", "ssm") or "ssm").strip().lower()
        if backend not in SECRET_STORE_BACKENDS:
            raise ValueError(
                f"알 수 없는 SECRET_STORE_BACKEND 값입니다: {backend!r} "
                f"({' | '.join(SECRET_STORE_BACKENDS)} 중 하나)"
            )

        cfg = cls(
            aws_region=req("aws_region", "AWS_REGION") if backend == "ssm" else (get("aws_region", "AWS_REGION") or ""),
            ssm_prefix=get("ssm_prefix", "SSM_PREFIX") or "",
            aws_profile=get("aws_profile", "AWS_PROFILE") or None,
            store_backend=backend,
            gcp_project_id=req("gcp_project_id", "GCP_PROJECT_ID") if backend == "gcp" else get("gcp_project_id", "GCP_PROJECT_ID"),
            manifest_path=get("manifest_path", "SECRETS_MANIFEST") or "secrets.json",
            env_file=get("env_file", "SECRETS_ENV_FILE") or ".env.secrets",
            on_missing=validate_missing_policy(
                (get("on_missing", "SECRETS_ON_MISSING") or "error").strip().lower()
            ),
        )

        if missing:
            raise ValueError(
                "필수 환경변수가 누락되었습니다: " + ", ".join(sorted(set(missing)))
            )

        return cfg


@dataclass
class FlyConfig:
    # 토큰은 필수가 아니다. 없으면 FlyApi 생성 시 CredentialError 가 발생한다.
    api_token: Optional[str] = field(default=None, repr=False)
    api_url: str = FLY_API_URL_DEFAULT

    app_name: Optional[str] = None
    organization: Optional[str] = None
    regions: List[str] = field(default_factory=list)

    toml_file: str = "fly.toml"
    dockerfile: str = "Dockerfile"
    ip_address_types: List[str] = field(default_factory=list)

    flyctl_bin: str = "flyctl"
    # 리전별 flyctl deploy 제한 시간(초). None 이면 무제한.
    deploy_timeout: Optional[float] = None

    # deploy-secrets
    secrets_env_file: str = ".env.secrets"
    replace_all_secrets: bool = False
    restart_after_secrets: bool = False

    @property
    def primary_region(self) -> Optional[str]:
        return self.regions[0] if self.regions else None

    def require_app(self) -> str:
        if not self.app_name:
            raise ValueError("FLY_APP_NAME(또는 --app) 이 필요합니다.")
        return self.app_name

    @classmethod
    def from_env(cls) -> "FlyConfig":
        return cls(
            api_token=os.getenv("FLY_API_TOKEN") or None,
            api_url=os.getenv("FLY_API_URL", FLY_API_URL_DEFAULT),
            app_name=os.getenv("FLY_APP_NAME") or None,
            organization=os.getenv("FLY_ORG") or None,
            regions=split_list(os.getenv("FLY_REGIONS")),
            toml_file=os.getenv("FLY_TOML_FILE", "fly.toml"),
            dockerfile=os.getenv("FLY_DOCKERFILE", "Dockerfile"),
            ip_address_types=validate_ip_address_types(
                split_list(os.getenv("FLY_IP_ADDRESS_TYPES"))
            ),
            flyctl_bin=os.getenv("FLYCTL_BIN", "flyctl"),
            deploy_timeout=_get_float("FLY_DEPLOY_TIMEOUT"),
            secrets_env_file=os.getenv("FLY_SECRETS_ENV_FILE", ".env.secrets"),
            replace_all_secrets=_get_bool("FLY_REPLACE_ALL_SECRETS", False),
            restart_after_secrets=_get_bool("FLY_RESTART_AFTER_SECRETS", False),
        )
