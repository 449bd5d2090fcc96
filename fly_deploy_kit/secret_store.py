"""
secret_store
------------

파라미터 스토어 공통 계약과 백엔드 선택.

각 백엔드는 다음 두 메서드를 제공한다.

- fetch_many(names) -> {name: value}  (응답에 없는 이름은 결과에서 빠진다)
- put_one(name, value)                (항상 덮어쓰기)
"""

from __future__ import annotations

from typing import Dict, Iterator, List, Protocol, Sequence

from .config import SecretsConfig


# SSM GetParameters 한 번에 조회 가능한 최대 이름 수
MAX_BATCH_SIZE = 10


class SecretStore(Protocol):
    def fetch_many(self, names: Sequence[str]) -> Dict[str, str]: ...

    def put_one(self, name: str, value: str) -> None: ...


def chunked(names: Sequence[str], size: int = MAX_BATCH_SIZE) -> Iterator[List[str]]:
    if size < 1:
        raise ValueError("chunk size 는 1 이상이어야 합니다.")
    for i in range(0, len(names), size):
        yield list(names[i:i + size])


def build_store(cfg: SecretsConfig) -> SecretStore:
    """설정의 store_backend 에 맞는 스토어 클라이언트를 만든다."""
    if cfg.store_backend == "gcp":
        from .gcp_secret_store import GcpSecretStore

        return GcpSecretStore(project_id=cfg.gcp_project_id or "")

    from .ssm_store import SsmParameterStore

    return SsmParameterStore(region=cfg.aws_region, profile=cfg.aws_profile)
