import base64
import json
import os

import httpx
import pytest
from fastapi.testclient import TestClient

from seedgate import cli
from seedgate.app import create_app
from seedgate.config import EnforcementPolicy
from seedgate.client import (
    connect,
    effective_username,
    file_hash,
    load_seed_file,
    normalize_seed_server,
    obtain_and_persist_seed,
    request_seed,
    write_seed,
)
from seedgate.errors import (
    DecodeFailure,
    FileUnreadable,
    HashRejected,
    SeedRejected,
    TransportFailure,
    UserUnavailable,
)
from seedgate.issuer import SeedIssuer
from seedgate.storage import V4SignedURLPlatform

from conftest import FIXED_NOW, GOOD_HASH, IAP_HEADER, fixed_clock


def mock_client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def test_file_hash(tmp_path):
    p = tmp_path / "boot.wim"
    p.write_bytes(b"test")
    assert file_hash(p).hex() == "9f86d081884c7d659a2feaa0c55ad015a3bf4f1b2b0b822cd15d6c15b0f00a08"
    with pytest.raises(FileUnreadable):
        file_hash(tmp_path / "missing")
    with pytest.raises(FileUnreadable):
        file_hash("")


def test_effective_username():
    assert effective_username(lambda: "alice", {}) == "alice"
    assert effective_username(lambda: "root", {"SUDO_USER": "bob"}) == "bob"
    with pytest.raises(UserUnavailable):
        effective_username(lambda: "root", {})

    def broken():
        raise KeyError("uid not in passwd")

    with pytest.raises(UserUnavailable):
        effective_username(broken, {})


def test_normalize_seed_server():
    assert normalize_seed_server("seed.example.com") == "https://seed.example.com"
    assert normalize_seed_server("http://localhost:8080/seed") == "http://localhost:8080/seed"
    with pytest.raises(ValueError):
        normalize_seed_server("localhost")


def test_request_sends_base64_hash():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={
            "Status": "success",
            "ErrorCode": 0,
            "Seed": {"Issued": FIXED_NOW.isoformat(), "Username": "test", "Certs": [], "Hash": None},
            "Signature": base64.b64encode(b"sig").decode(),
        })

    signed = request_seed(mock_client(handler), "https://seed.example.com/seed", GOOD_HASH)
    assert seen["body"] == {"Hash": base64.b64encode(GOOD_HASH).decode()}
    assert signed.seed.username == "test"
    assert signed.signature == b"sig"


def test_request_rejections():
    rejected = mock_client(lambda r: httpx.Response(500, json={
        "Status": "request hash not in allowlist", "ErrorCode": 106}))
    with pytest.raises(HashRejected):
        request_seed(rejected, "https://s/seed", GOOD_HASH)

    failed = mock_client(lambda r: httpx.Response(500, json={"Status": "signing failed", "ErrorCode": 104}))
    with pytest.raises(SeedRejected) as ei:
        request_seed(failed, "https://s/seed", GOOD_HASH)
    assert ei.value.code == 104

    garbage = mock_client(lambda r: httpx.Response(502, text="<html>bad gateway</html>"))
    with pytest.raises(DecodeFailure):
        request_seed(garbage, "https://s/seed", GOOD_HASH)

    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransportFailure):
        request_seed(mock_client(refuse), "https://s/seed", GOOD_HASH)

    with pytest.raises(ValueError):
        request_seed(rejected, "https://s/seed", b"")


def test_round_trip_through_service(tmp_path, identity, store, server_env):
    server_env.setenv("VERIFY_SEED_HASH", "true")
    server_env.setattr("seedgate.client.getpass.getuser", lambda: "builder")
    medium = tmp_path / "medium"
    medium.mkdir()
    image = medium / "boot.wim"
    image.write_bytes(b"installer image")

    app = create_app(identity=identity, store=store, platform=V4SignedURLPlatform(), clock=fixed_clock)
    with TestClient(app, headers=IAP_HEADER) as tc:
        # boot.wim is not allowlisted
        with pytest.raises(HashRejected):
            obtain_and_persist_seed(image, "/seed", medium / "seed", client=tc)
        signed = request_seed(tc, "/seed", GOOD_HASH)

    path = write_seed(medium / "seed", signed)
    assert path.name == "seed.json"
    assert oct(os.stat(path).st_mode & 0o777) == "0o644"
    assert [p.name for p in path.parent.iterdir()] == ["seed.json"]
    on_disk = json.loads(path.read_text())
    assert set(on_disk) == {"Seed", "Signature"}
    assert on_disk["Seed"]["Username"] == "test"
    assert on_disk["Seed"]["Hash"] is None
    assert load_seed_file(path) == signed


def test_cli(tmp_path, monkeypatch, capsys, identity):
    def rejected(*args, **kwargs):
        raise HashRejected("seed server rejected hash ab")

    monkeypatch.setattr(cli, "obtain_and_persist_seed", rejected)
    assert cli.main(["fetch", "--file", "f", "--server", "seed.example.com", "--dest", str(tmp_path)]) == 3

    def unreachable(*args, **kwargs):
        raise TransportFailure("connection refused")

    monkeypatch.setattr(cli, "obtain_and_persist_seed", unreachable)
    assert cli.main(["fetch", "--file", "f", "--server", "seed.example.com", "--dest", str(tmp_path)]) == 1

    signed = SeedIssuer(identity, frozenset, EnforcementPolicy(), fixed_clock).issue_seed("test", GOOD_HASH)
    path = write_seed(tmp_path, signed)
    capsys.readouterr()
    assert cli.main(["show", "--input", str(path)]) == 0
    shown = json.loads(capsys.readouterr().out)
    assert shown["username"] == "test"
    assert shown["signature_bytes"] == 256


def test_connect_sends_only_bearer_token(monkeypatch):
    monkeypatch.delenv("SEEDGATE_TOKEN", raising=False)
    with connect() as c:
        assert "authorization" not in c.headers
    with connect(token="t0k") as c:
        assert c.headers["authorization"] == "Bearer t0k"
        assert not any(k.lower().startswith("x-") for k in c.headers)


def test_cli_reports_bad_input(tmp_path, capsys):
    assert cli.main(["fetch", "--file", "f", "--server", "localhost", "--dest", str(tmp_path)]) == 2
    assert "invalid seed server" in capsys.readouterr().out
    assert cli.main(["show", "--input", str(tmp_path / "missing.json")]) == 1
    broken = tmp_path / "seed.json"
    broken.write_text("{\"Seed\": 42}")
    assert cli.main(["show", "--input", str(broken)]) == 1
    assert "cannot read seed file" in capsys.readouterr().out
