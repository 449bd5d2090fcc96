from __future__ import annotations

import asyncio
import subprocess
from dataclasses import dataclass
from textwrap import shorten
from typing import Mapping, Optional, Sequence

from .logging_utils import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class RunResult:
    returncode: int
    stdout: str
    stderr: str


def _not_found_message(cmd: Sequence[str]) -> str:
    return f"필요한 명령을 찾을 수 없습니다: {cmd[0]} (flyctl 이 설치되어 있는지 확인하세요)"


def run_command(
    cmd: Sequence[str],
    *,
    cwd: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    timeout: Optional[float] = 900.0,
    stream_output: bool = False,
    check: bool = True,
) -> RunResult:
    """
    subprocess 실행 공통 유틸.

    - stream_output=False: stdout/stderr 캡처, 실패 시 요약을 RuntimeError 에 포함
    - stream_output=True : 부모 프로세스의 stdout/stderr 를 그대로 상속
    """
    logger.info("명령 실행: %s", " ".join(cmd))

    try:
        result = subprocess.run(
            list(cmd),
            check=False,
            capture_output=not stream_output,
            text=True,
            timeout=timeout,
            cwd=cwd,
            env=dict(env) if env is not None else None,
        )
    except FileNotFoundError as e:
        raise RuntimeError(_not_found_message(cmd)) from e
    except subprocess.TimeoutExpired as e:
        raise RuntimeError(
            f"명령 실행이 {timeout}초 안에 끝나지 않았습니다: {' '.join(cmd)}"
        ) from e

    stdout = (result.stdout or "") if not stream_output else ""
    stderr = (result.stderr or "") if not stream_output else ""
    if stdout:
        logger.debug("명령 stdout: %s", shorten(stdout.strip(), width=2000))
    if stderr:
        logger.debug("명령 stderr: %s", shorten(stderr.strip(), width=2000))

    if check and result.returncode != 0:
        detail = ""
        if stderr.strip():
            detail = "\nstderr:\n" + shorten(stderr.strip(), width=2000)
        elif stdout.strip():
            detail = "\nstdout:\n" + shorten(stdout.strip(), width=2000)
        raise RuntimeError(
            f"명령 실행 실패: {' '.join(cmd)} (exit={result.returncode}){detail}"
        )

    return RunResult(returncode=result.returncode, stdout=stdout, stderr=stderr)


async def run_inherited(
    cmd: Sequence[str],
    *,
    cwd: Optional[str] = None,
    timeout: Optional[float] = None,
) -> int:
    """
    자식 프로세스를 비동기로 실행하고 종료 코드를 반환한다.
    표준 입출력은 부모 프로세스를 그대로 상속한다.

    timeout 초과 시 프로세스를 kill 하고 RuntimeError.
    태스크가 취소되면(예: Ctrl-C) 자식 프로세스를 kill 한 뒤 취소를 그대로 전파한다.
    """
    logger.info("명령 실행: %s", " ".join(cmd))
    try:
        proc = await asyncio.create_subprocess_exec(*cmd, cwd=cwd)
    except FileNotFoundError as e:
        raise RuntimeError(_not_found_message(cmd)) from e

    try:
        return await asyncio.wait_for(proc.wait(), timeout=timeout)
    except asyncio.TimeoutError as e:
        await _kill(proc)
        raise RuntimeError(
            f"명령 실행이 {timeout}초 안에 끝나지 않았습니다: {' '.join(cmd)}"
        ) from e
    except asyncio.CancelledError:
        logger.warning("취소되어 자식 프로세스를 종료합니다: %s", " ".join(cmd))
        await _kill(proc)
        raise


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        proc.kill()
    await proc.wait()
