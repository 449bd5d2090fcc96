"""
env_files
---------

secrets.json 매니페스트와 .env 파일 입출력.

- 매니페스트: {"논리 이름": "원격 파라미터 suffix"} 형태의 JSON 객체
- .env: KEY=VALUE 줄 단위. 쓸 때는 \\r\\n 줄바꿈, 항상 전체 덮어쓰기.
"""

from __future__ import annotations

import json
import os
from typing import Dict, Iterable, Tuple

from dotenv import dotenv_values

from .errors import EnvFileReadError, EnvFileWriteError, ManifestReadError
from .logging_utils import get_logger


logger = get_logger(__name__)


def read_manifest(path: str) -> Dict[str, str]:
    """
    매니페스트를 읽어 논리 이름 -> 원격 suffix 매핑(입력 순서 유지)을 반환한다.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.debug("매니페스트 읽기 실패: %s", e)
        raise ManifestReadError(f"매니페스트 파일을 읽을 수 없습니다: {path}") from e

    if not isinstance(data, dict):
        raise ManifestReadError(
            f"매니페스트는 JSON 객체여야 합니다: {path} (got {type(data).__name__})"
        )

    mapping: Dict[str, str] = {}
    for key, value in data.items():
        if not isinstance(value, str):
            raise ManifestReadError(
                f"매니페스트 값은 문자열이어야 합니다: {key}={value!r} ({path})"
            )
        mapping[key] = value
    return mapping


def read_env_file(path: str) -> Dict[str, str]:
    """
    .env 파일을 파싱하여 dict 로 반환. 값이 없는 키(`KEY` 만 있는 줄)는 빈 문자열로 본다.
    """
    if not os.path.isfile(path):
        raise EnvFileReadError(f".env 파일을 찾을 수 없습니다: {path}")
    try:
        values = dotenv_values(dotenv_path=path)
    except (OSError, UnicodeDecodeError) as e:
        logger.debug(".env 읽기 실패: %s", e)
        raise EnvFileReadError(f".env 파일을 읽을 수 없습니다: {path}") from e

    return {k: (v if v is not None else "") for k, v in values.items()}


def write_env_file(path: str, pairs: Iterable[Tuple[str, str]]) -> int:
    """
    (이름, 값) 목록을 `NAME=VALUE\\r\\n` 형태로 파일 전체를 덮어쓴다.
    값은 이스케이프 없이 그대로 기록한다. 기록한 줄 수를 반환.

    줄바꿈이 들어 있는 값은 한 줄 형식을 깨뜨리므로 파일을 건드리기 전에 EnvFileWriteError.
    """
    pairs = list(pairs)
    multiline = [name for name, value in pairs if "\n" in value or "\r" in value]
    if multiline:
        raise EnvFileWriteError(
            f"여러 줄 값은 .env 파일에 쓸 수 없습니다: {', '.join(multiline)} ({path})"
        )

    lines = [f"{name}={value}\r\n" for name, value in pairs]
    try:
        # newline="" : \r\n 을 플랫폼 변환 없이 그대로 기록
        with open(path, "w", encoding="utf-8", newline="") as f:
            f.write("".join(lines))
    except OSError as e:
        logger.debug(".env 쓰기 실패: %s", e)
        raise EnvFileWriteError(f".env 파일에 쓸 수 없습니다: {path}") from e

    return len(lines)
