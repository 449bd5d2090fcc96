"""
secrets_sync
------------

secrets.json 매니페스트를 기준으로 파라미터 스토어와 로컬 .env 파일을 동기화한다.

- pull: 스토어 -> .env (파일 전체 덮어쓰기)
- push: .env -> 스토어 (항목별 덮어쓰기)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from .config import validate_missing_policy
from .env_files import read_env_file, read_manifest, write_env_file
from .errors import MissingSecretValueError
from .logging_utils import get_logger
from .secret_store import SecretStore


logger = get_logger(__name__)


@dataclass
class PullResult:
    written: List[str] = field(default_factory=list)
    # 스토어에서 값이 돌아오지 않은 논리 이름
    missing: List[str] = field(default_factory=list)


@dataclass
class PushResult:
    pushed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


def resolve_remote_names(mapping: Dict[str, str], prefix: str) -> List[Tuple[str, str]]:
    """(논리 이름, prefix 가 붙은 원격 이름) 목록."""
    return [(logical, f"{prefix}{suffix}") for logical, suffix in mapping.items()]


def pull_secrets(
    store: SecretStore,
    *,
    manifest_path: str,
    env_file: str,
    prefix: str = "",
) -> PullResult:
    """
    매니페스트의 모든 항목을 스토어에서 조회하여 env_file 에 기록한다.

    매니페스트가 비어 있거나 조회된 값이 하나도 없으면 파일을 건드리지 않는다.
    """
    mapping = read_manifest(manifest_path)
    result = PullResult()

    if not mapping:
        logger.info("가져올 항목이 없습니다. %s 에 항목을 추가하세요.", manifest_path)
        return result

    pairs = resolve_remote_names(mapping, prefix)
    values = store.fetch_many([remote for _, remote in pairs])

    output: List[Tuple[str, str]] = []
    for logical, remote in pairs:
        if remote in values:
            output.append((logical, values[remote]))
            result.written.append(logical)
        else:
            result.missing.append(logical)

    if result.missing:
        logger.warning(
            "스토어에서 찾을 수 없는 항목: %s",
            ", ".join(result.missing),
        )

    if not output:
        logger.info("조회된 값이 없어 %s 기록을 건너뜁니다.", env_file)
        return result

    write_env_file(env_file, output)
    logger.info("%d개 항목을 %s 에 기록했습니다.", len(output), env_file)
    return result


def push_secrets(
    store: SecretStore,
    *,
    manifest_path: str,
    env_file: str,
    prefix: str = "",
    on_missing: str = "error",
) -> PushResult:
    """
    env_file 의 값을 매니페스트에 정의된 원격 이름으로 업로드한다.

    on_missing:
        error - .env 에 값이 없는 항목이 하나라도 있으면 업로드 전에 MissingSecretValueError
        empty - 빈 문자열로 업로드
        skip  - 해당 항목은 업로드하지 않음
    """
    validate_missing_policy(on_missing)
    mapping = read_manifest(manifest_path)
    env_values = read_env_file(env_file)
    result = PushResult()

    pairs = resolve_remote_names(mapping, prefix)
    missing = [logical for logical, _ in pairs if logical not in env_values]
    if missing and on_missing == "error":
        raise MissingSecretValueError(missing)

    for logical, remote in pairs:
        if logical not in env_values:
            if on_missing == "skip":
                logger.warning(".env 에 값이 없어 건너뜁니다: %s", logical)
                result.skipped.append(logical)
                continue
            logger.warning(".env 에 값이 없어 빈 문자열로 업로드합니다: %s", logical)

        store.put_one(remote, env_values.get(logical, ""))
        result.pushed.append(logical)

    logger.info("%d개 항목을 업로드했습니다.", len(result.pushed))
    return result
