import pytest

from fly_deploy_kit.config import FlyConfig, SecretsConfig


def test_missing_required_env_raises_value_error(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    # AWS_REGION 을 비워둔다.
    monkeypatch.setenv("SSM_PREFIX", "/app/prod/")

    with pytest.raises(ValueError) as excinfo:
        SecretsConfig.from_env()

    assert "AWS_REGION" in str(excinfo.value)


def test_gcp_backend_requires_project_id(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SECRET_STORE_BACKEND", "gcp")

    with pytest.raises(ValueError) as excinfo:
        SecretsConfig.from_env()

    assert "GCP_PROJECT_ID" in str(excinfo.value)
    # gcp 백엔드에서는 AWS_REGION 이 필수가 아니다.
    assert "AWS_REGION" not in str(excinfo.value)


def test_secrets_config_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AWS_REGION", "us-east-1")
    monkeypatch.setenv("AWS_PROFILE", "dev-sso")

    cfg = SecretsConfig.from_env()

    assert cfg.store_backend == "ssm"
    assert cfg.aws_profile == "dev-sso"
    assert cfg.manifest_path == "secrets.json"
    assert cfg.env_file == ".env.secrets"
    # .env 에 값이 없는 항목은 기본적으로 오류
    assert cfg.on_missing == "error"


def test_invalid_missing_policy_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AWS_REGION", "us-east-1")
    monkeypatch.setenv("SECRETS_ON_MISSING", "ignore")

    with pytest.raises(ValueError) as excinfo:
        SecretsConfig.from_env()

    assert "SECRETS_ON_MISSING" in str(excinfo.value)


def test_fly_config_parses_lists(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FLY_API_TOKEN", "fo1_s3cr3t")
    monkeypatch.setenv("FLY_APP_NAME", "web")
    monkeypatch.setenv("FLY_REGIONS", "iad, lhr ,,nrt")
    monkeypatch.setenv("FLY_IP_ADDRESS_TYPES", "v6,shared_v4")
    monkeypatch.setenv("FLY_DEPLOY_TIMEOUT", "600")

    cfg = FlyConfig.from_env()

    assert cfg.regions == ["iad", "lhr", "nrt"]
    assert cfg.primary_region == "iad"
    assert cfg.ip_address_types == ["v6", "shared_v4"]
    assert cfg.deploy_timeout == 600.0
    # 토큰이 repr 에 노출되지 않아야 한다.
    assert "s3cr3t" not in repr(cfg)


def test_fly_config_rejects_unknown_ip_type(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FLY_IP_ADDRESS_TYPES", "v4,v5")

    with pytest.raises(ValueError) as excinfo:
        FlyConfig.from_env()

    assert "v5" in str(excinfo.value)


def test_overrides_satisfy_required_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SSM_PREFIX", "/app/prod/")

    cfg = SecretsConfig.from_env({"aws_region": "us-east-1", "ssm_prefix": None, "aws_profile": "ops"})

    assert cfg.aws_region == "us-east-1"
    assert cfg.aws_profile == "ops"
    # None 인 override 는 환경변수를 가리지 않는다.
    assert cfg.ssm_prefix == "/app/prod/"


def test_override_takes_precedence_over_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AWS_REGION", "us-east-1")
    monkeypatch.setenv("SECRETS_ON_MISSING", "skip")

    cfg = SecretsConfig.from_env({"aws_region": "eu-west-1", "on_missing": "empty"})

    assert cfg.aws_region == "eu-west-1"
    assert cfg.on_missing == "empty"
