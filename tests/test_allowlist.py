import io

import httpx
import pytest

from seedgate.allowlist import CachedAllowlist, hash_to_hex, load_allowlist, parse_allowlist
from seedgate.errors import ParseFailure, ReadFailure, SourceUnavailable
from seedgate.storage import GCSObjectStore, HttpObjectStore

from conftest import ALLOWLIST_PATH, BUCKET, GOOD_HASH, GOOD_HASH_HEX


def test_hash_to_hex_accepts_digest_or_hex_text():
    assert hash_to_hex(GOOD_HASH) == GOOD_HASH_HEX
    assert hash_to_hex(GOOD_HASH_HEX.encode()) == GOOD_HASH_HEX
    assert hash_to_hex(GOOD_HASH_HEX.upper().encode()) == GOOD_HASH_HEX
    assert hash_to_hex(b"\xde\xad\xbe\xef") == "deadbeef"


def test_parse_yaml_sequence():
    payload = f"- {GOOD_HASH_HEX}\n- DEADBEEF\n- 0123\n".encode()
    assert parse_allowlist(payload) == frozenset({GOOD_HASH_HEX, "deadbeef", "0123"})


def test_parse_bare_lines():
    payload = f"{GOOD_HASH_HEX}\nabcdef\n".encode()
    assert parse_allowlist(payload) == frozenset({GOOD_HASH_HEX, "abcdef"})


def test_parse_empty_payload():
    assert parse_allowlist(b"") == frozenset()


@pytest.mark.parametrize("payload", [b"key: value\n", b"- not-hex\n", b"- [1, 2]\n", b"- [unclosed\n"])
def test_parse_rejects(payload):
    with pytest.raises(ParseFailure):
        parse_allowlist(payload)


def test_load_from_file_store(store):
    assert load_allowlist(store, BUCKET, ALLOWLIST_PATH) == frozenset({GOOD_HASH_HEX})


def test_missing_object_is_source_unavailable(store):
    with pytest.raises(SourceUnavailable):
        load_allowlist(store, BUCKET, "nope.yaml")
    with pytest.raises(SourceUnavailable):
        load_allowlist(store, BUCKET, "../../etc/passwd")


class _BrokenHandle:
    closed = False

    def read(self):
        raise IOError("connection reset")

    def close(self):
        self.closed = True


class _BrokenStore:
    def __init__(self):
        self.handle = _BrokenHandle()

    def open(self, bucket, path):
        return self.handle


def test_read_failure_is_distinct_and_closes_handle():
    s = _BrokenStore()
    with pytest.raises(ReadFailure):
        load_allowlist(s, BUCKET, ALLOWLIST_PATH)
    assert s.handle.closed


def test_http_store():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == f"/{BUCKET}/{ALLOWLIST_PATH}":
            return httpx.Response(200, content=f"- {GOOD_HASH_HEX}\n".encode())
        return httpx.Response(404)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    hs = HttpObjectStore(base_url="http://objects.local", client=client)
    assert load_allowlist(hs, BUCKET, ALLOWLIST_PATH) == frozenset({GOOD_HASH_HEX})
    with pytest.raises(SourceUnavailable):
        load_allowlist(hs, BUCKET, "missing.yaml")


class _CountingStore:
    def __init__(self, inner):
        self.inner = inner
        self.opens = 0

    def open(self, bucket, path):
        self.opens += 1
        return self.inner.open(bucket, path)


def test_cache_reuses_snapshot_within_ttl(store):
    counting = _CountingStore(store)
    now = [100.0]
    cached = CachedAllowlist(counting, BUCKET, ALLOWLIST_PATH, ttl=30, clock=lambda: now[0])
    first = cached()
    now[0] += 10
    assert cached() is first
    assert counting.opens == 1
    now[0] += 30
    cached()
    assert counting.opens == 2


def test_zero_ttl_always_reloads(store):
    counting = _CountingStore(store)
    cached = CachedAllowlist(counting, BUCKET, ALLOWLIST_PATH, ttl=0)
    cached()
    cached()
    assert counting.opens == 2


class _FakeBlob:
    def __init__(self, objects, key):
        self.objects = objects
        self.key = key

    def exists(self):
        return self.key in self.objects

    def open(self, mode):
        assert mode == "rb"
        return io.BytesIO(self.objects[self.key])


class _FakeBucket:
    def __init__(self, objects, name):
        self.objects = objects
        self.name = name

    def blob(self, path):
        return _FakeBlob(self.objects, (self.name, path))


class _FakeGCSClient:
    def __init__(self, objects):
        self.objects = objects

    def bucket(self, name):
        return _FakeBucket(self.objects, name)


def test_gcs_store():
    objects = {(BUCKET, ALLOWLIST_PATH): f"- {GOOD_HASH_HEX}\n".encode()}
    gcs = GCSObjectStore(client=_FakeGCSClient(objects))
    assert load_allowlist(gcs, BUCKET, ALLOWLIST_PATH) == frozenset({GOOD_HASH_HEX})
    with pytest.raises(SourceUnavailable):
        load_allowlist(gcs, "other-bucket", ALLOWLIST_PATH)


def test_repeated_loads_agree(store):
    assert load_allowlist(store, BUCKET, ALLOWLIST_PATH) == load_allowlist(store, BUCKET, ALLOWLIST_PATH)
