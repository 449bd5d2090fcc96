import json
from pathlib import Path
from typing import Dict, List, Sequence

import pytest

from fly_deploy_kit.errors import (
    EnvFileReadError,
    EnvFileWriteError,
    ManifestReadError,
    MissingSecretValueError,
)
from fly_deploy_kit.secrets_sync import pull_secrets, push_secrets


class FakeStore:
    """메모리 기반 SecretStore."""

    def __init__(self, values: Dict[str, str] | None = None) -> None:
        self.values: Dict[str, str] = dict(values or {})
        self.fetch_calls: List[List[str]] = []
        self.put_calls: List[tuple[str, str]] = []

    def fetch_many(self, names: Sequence[str]) -> Dict[str, str]:
        self.fetch_calls.append(list(names))
        return {n: self.values[n] for n in names if n in self.values}

    def put_one(self, name: str, value: str) -> None:
        self.put_calls.append((name, value))
        self.values[name] = value


def _manifest(tmp_path: Path, mapping: Dict[str, str]) -> str:
    path = tmp_path / "secrets.json"
    path.write_text(json.dumps(mapping), encoding="utf-8")
    return str(path)


def test_push_then_pull_round_trip(tmp_path: Path) -> None:
    manifest = _manifest(tmp_path, {"FOO": "ssm/foo"})
    env_in = tmp_path / ".env.in"
    env_in.write_text("FOO=bar\n", encoding="utf-8")
    store = FakeStore()

    push_secrets(store, manifest_path=manifest, env_file=str(env_in), prefix="/prod/")
    assert store.values == {"/prod/ssm/foo": "bar"}

    env_out = tmp_path / ".env.out"
    result = pull_secrets(store, manifest_path=manifest, env_file=str(env_out), prefix="/prod/")

    assert result.written == ["FOO"]
    assert env_out.read_bytes() == b"FOO=bar\r\n"


def test_pull_overwrites_existing_file(tmp_path: Path) -> None:
    manifest = _manifest(tmp_path, {"A": "a", "B": "b"})
    env_file = tmp_path / ".env.secrets"
    env_file.write_text("OLD=stale\nA=old\n", encoding="utf-8")
    store = FakeStore({"a": "1", "b": "2"})

    pull_secrets(store, manifest_path=manifest, env_file=str(env_file))

    assert env_file.read_bytes() == b"A=1\r\nB=2\r\n"


def test_pull_reports_missing_remote_values(tmp_path: Path) -> None:
    manifest = _manifest(tmp_path, {"A": "a", "B": "b"})
    env_file = tmp_path / ".env.secrets"
    store = FakeStore({"a": "1"})

    result = pull_secrets(store, manifest_path=manifest, env_file=str(env_file))

    assert result.written == ["A"]
    assert result.missing == ["B"]
    assert env_file.read_bytes() == b"A=1\r\n"


def test_pull_with_empty_manifest_is_noop(tmp_path: Path) -> None:
    manifest = _manifest(tmp_path, {})
    env_file = tmp_path / ".env.secrets"
    store = FakeStore()

    result = pull_secrets(store, manifest_path=manifest, env_file=str(env_file))

    assert result.written == []
    assert store.fetch_calls == []
    assert not env_file.exists()


def test_pull_with_no_values_leaves_file_untouched(tmp_path: Path) -> None:
    manifest = _manifest(tmp_path, {"A": "a"})
    env_file = tmp_path / ".env.secrets"
    env_file.write_text("KEEP=me\n", encoding="utf-8")
    store = FakeStore()

    pull_secrets(store, manifest_path=manifest, env_file=str(env_file))

    assert env_file.read_text(encoding="utf-8") == "KEEP=me\n"


def test_push_missing_value_errors_by_default(tmp_path: Path) -> None:
    manifest = _manifest(tmp_path, {"A": "a", "B": "b"})
    env_file = tmp_path / ".env.secrets"
    env_file.write_text("A=1\n", encoding="utf-8")
    store = FakeStore()

    with pytest.raises(MissingSecretValueError) as excinfo:
        push_secrets(store, manifest_path=manifest, env_file=str(env_file))

    assert excinfo.value.missing == ["B"]
    # 오류 정책에서는 아무것도 업로드하지 않는다.
    assert store.put_calls == []


def test_push_missing_value_empty_policy(tmp_path: Path) -> None:
    manifest = _manifest(tmp_path, {"A": "a", "B": "b"})
    env_file = tmp_path / ".env.secrets"
    env_file.write_text("A=1\n", encoding="utf-8")
    store = FakeStore()

    result = push_secrets(store, manifest_path=manifest, env_file=str(env_file), on_missing="empty")

    assert result.pushed == ["A", "B"]
    assert store.put_calls == [("a", "1"), ("b", "")]


def test_push_missing_value_skip_policy(tmp_path: Path) -> None:
    manifest = _manifest(tmp_path, {"A": "a", "B": "b"})
    env_file = tmp_path / ".env.secrets"
    env_file.write_text("A=1\n", encoding="utf-8")
    store = FakeStore()

    result = push_secrets(store, manifest_path=manifest, env_file=str(env_file), on_missing="skip")

    assert result.pushed == ["A"]
    assert result.skipped == ["B"]
    assert store.put_calls == [("a", "1")]


def test_invalid_manifest_raises_manifest_read_error(tmp_path: Path) -> None:
    manifest = tmp_path / "secrets.json"
    manifest.write_text("[1, 2]", encoding="utf-8")

    with pytest.raises(ManifestReadError):
        pull_secrets(FakeStore(), manifest_path=str(manifest), env_file=str(tmp_path / ".env"))


def test_missing_manifest_raises_manifest_read_error(tmp_path: Path) -> None:
    with pytest.raises(ManifestReadError):
        pull_secrets(
            FakeStore(),
            manifest_path=str(tmp_path / "nope.json"),
            env_file=str(tmp_path / ".env"),
        )


def test_push_missing_env_file_raises_env_file_read_error(tmp_path: Path) -> None:
    manifest = _manifest(tmp_path, {"A": "a"})

    with pytest.raises(EnvFileReadError):
        push_secrets(FakeStore(), manifest_path=manifest, env_file=str(tmp_path / ".env.missing"))


def test_pull_unwritable_env_file_raises_env_file_write_error(tmp_path: Path) -> None:
    manifest = _manifest(tmp_path, {"A": "a"})
    # 디렉토리 경로에는 파일을 쓸 수 없다.
    target = tmp_path / "as_dir"
    target.mkdir()

    with pytest.raises(EnvFileWriteError):
        pull_secrets(FakeStore({"a": "1"}), manifest_path=manifest, env_file=str(target))


def test_pull_rejects_multiline_value_and_keeps_file(tmp_path: Path) -> None:
    manifest = _manifest(tmp_path, {"A": "a", "CERT": "cert"})
    env_file = tmp_path / ".env.secrets"
    env_file.write_text("KEEP=me\n", encoding="utf-8")
    store = FakeStore({"a": "1", "cert": "-----BEGIN-----\nabc\n-----END-----"})

    with pytest.raises(EnvFileWriteError) as excinfo:
        pull_secrets(store, manifest_path=manifest, env_file=str(env_file))

    assert "CERT" in str(excinfo.value)
    assert env_file.read_text(encoding="utf-8") == "KEEP=me\n"


def test_pull_rejects_carriage_return_value(tmp_path: Path) -> None:
    manifest = _manifest(tmp_path, {"A": "a"})
    env_file = tmp_path / ".env.secrets"

    with pytest.raises(EnvFileWriteError):
        pull_secrets(FakeStore({"a": "x\ry"}), manifest_path=manifest, env_file=str(env_file))

    assert not env_file.exists()
