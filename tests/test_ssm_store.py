import math
from typing import Any, Dict, List

import pytest
from botocore.exceptions import ClientError, NoCredentialsError

from fly_deploy_kit.errors import CredentialError, NotFoundError, StoreCommunicationError
from fly_deploy_kit.ssm_store import SsmParameterStore


class FakeSsmClient:
    """boto3 ssm 클라이언트 흉내. 응답 순서는 요청 순서와 반대로 돌려준다."""

    def __init__(self, params: Dict[str, str]) -> None:
        self.params = dict(params)
        self.get_calls: List[List[str]] = []
        self.put_calls: List[Dict[str, Any]] = []
        self.fail_on_call: int | None = None

    def get_parameters(self, Names: List[str], WithDecryption: bool) -> Dict[str, Any]:  # noqa: N803
        assert len(Names) <= 10
        self.get_calls.append(list(Names))
        if self.fail_on_call is not None and len(self.get_calls) == self.fail_on_call:
            raise ClientError(
                {"Error": {"Code": "ThrottlingException", "Message": "Rate exceeded"}},
                "GetParameters",
            )
        found = [{"Name": n, "Value": self.params[n]} for n in reversed(Names) if n in self.params]
        invalid = [n for n in Names if n not in self.params]
        return {"Parameters": found, "InvalidParameters": invalid}

    def put_parameter(self, **kwargs: Any) -> Dict[str, Any]:
        self.put_calls.append(kwargs)
        self.params[kwargs["Name"]] = kwargs["Value"]
        return {"Version": 1}


@pytest.mark.parametrize("count", [1, 10, 11, 23])
def test_fetch_many_batches_by_ten(count: int) -> None:
    names = [f"/app/P{i}" for i in range(count)]
    client = FakeSsmClient({n: f"v{i}" for i, n in enumerate(names)})
    store = SsmParameterStore(client=client)

    values = store.fetch_many(names)

    assert len(client.get_calls) == math.ceil(count / 10)
    assert values == {n: f"v{i}" for i, n in enumerate(names)}


def test_fetch_many_omits_missing_names() -> None:
    client = FakeSsmClient({"/app/A": "a", "/app/C": "c"})
    store = SsmParameterStore(client=client)

    values = store.fetch_many(["/app/A", "/app/B", "/app/C"])

    assert values == {"/app/A": "a", "/app/C": "c"}


def test_fetch_many_empty_list_makes_no_calls() -> None:
    client = FakeSsmClient({})
    store = SsmParameterStore(client=client)

    assert store.fetch_many([]) == {}
    assert client.get_calls == []


def test_chunk_failure_aborts_whole_fetch() -> None:
    names = [f"/app/P{i}" for i in range(25)]
    client = FakeSsmClient({n: "x" for n in names})
    client.fail_on_call = 2
    store = SsmParameterStore(client=client)

    with pytest.raises(StoreCommunicationError):
        store.fetch_many(names)

    # 두 번째 청크에서 중단되고 세 번째 청크는 호출되지 않는다.
    assert len(client.get_calls) == 2


def test_response_without_parameters_raises_not_found() -> None:
    class NoParamsClient(FakeSsmClient):
        def get_parameters(self, Names, WithDecryption):  # noqa: N803, ANN001
            return {}

    store = SsmParameterStore(client=NoParamsClient({}))

    with pytest.raises(NotFoundError):
        store.fetch_many(["/app/A"])


def test_missing_credentials_maps_to_credential_error() -> None:
    class NoCredsClient(FakeSsmClient):
        def get_parameters(self, Names, WithDecryption):  # noqa: N803, ANN001
            raise NoCredentialsError()

    store = SsmParameterStore(client=NoCredsClient({}), profile="dev")

    with pytest.raises(CredentialError):
        store.fetch_many(["/app/A"])


def test_expired_token_maps_to_credential_error() -> None:
    class ExpiredClient(FakeSsmClient):
        def put_parameter(self, **kwargs):  # noqa: ANN003
            raise ClientError(
                {"Error": {"Code": "ExpiredTokenException", "Message": "expired"}},
                "PutParameter",
            )

    store = SsmParameterStore(client=ExpiredClient({}))

    with pytest.raises(CredentialError):
        store.put_one("/app/A", "a")


def test_put_one_always_overwrites() -> None:
    client = FakeSsmClient({"/app/A": "old"})
    store = SsmParameterStore(client=client)

    store.put_one("/app/A", "new")

    assert client.params["/app/A"] == "new"
    assert client.put_calls[0]["Overwrite"] is True
    assert client.put_calls[0]["Type"] == "String"


def test_unknown_profile_raises_credential_error(
    tmp_path, monkeypatch: pytest.MonkeyPatch
) -> None:
    empty = tmp_path / "aws_config"
    empty.write_text("")
    monkeypatch.setenv("AWS_CONFIG_FILE", str(empty))
    monkeypatch.setenv("AWS_SHARED_CREDENTIALS_FILE", str(empty))

    with pytest.raises(CredentialError):
        SsmParameterStore(region="us-east-1", profile="does-not-exist")
