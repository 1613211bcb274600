"""Fixtures for contract tests — one parameterized fixture per hook interface.

Each fixture yields a fresh implementation instance. Card storage runs
every contract against the local filesystem backend, the S3 backend
wired to FakeS3Client and the GCS backend wired to FakeGcsClient. The
fakes are in-memory stand-ins that speak the real clients' call shapes
and raise the real libraries' errors.

To test a new implementation against the contracts:
    1. Add its param string to the params list.
    2. Add a branch that yields the instance.
    3. Run: pytest aitrumps/tests/contracts/ -v

Uses @pytest_asyncio.fixture (not @pytest.fixture) for async fixture
support in strict mode.
"""

import pytest_asyncio
from botocore.exceptions import ClientError, EndpointConnectionError
from google.api_core.exceptions import NotFound
from google.auth.exceptions import TransportError

from aitrumps.hooks.auth import JwtAuthService
from aitrumps.hooks.cloud_storage import S3CardStorage
from aitrumps.hooks.gcs_storage import GcsCardStorage
from aitrumps.hooks.sessions import InMemorySessionStore
from aitrumps.hooks.storage import LocalCardStorage

BUCKET = "contract-bucket"


# ---------------------------------------------------------------------------
# Fake S3 client
# ---------------------------------------------------------------------------


class _Body:
    def __init__(self, data: bytes) -> None:
        self._data = data

    def read(self) -> bytes:
        return self._data


class _Paginator:
    def __init__(self, client: "FakeS3Client", page_size: int) -> None:
        self._client = client
        self._page_size = page_size

    def paginate(self, Bucket: str, Prefix: str = ""):
        self._client._check_online("ListObjectsV2")
        keys = sorted(k for b, k in self._client.objects if b == Bucket and k.startswith(Prefix))
        for start in range(0, len(keys), self._page_size):
            page = keys[start:start + self._page_size]
            yield {"Contents": [{"Key": k} for k in page], "KeyCount": len(page)}
        if not keys:
            yield {"KeyCount": 0}


class FakeS3Client:
    """In-memory S3 client covering the calls S3CardStorage makes.

    Set offline = True to make every call fail the way an unreachable
    endpoint does.
    """

    def __init__(self, page_size: int = 1000) -> None:
        self.objects: dict[tuple[str, str], bytes] = {}
        self.content_types: dict[tuple[str, str], str] = {}
        self.offline = False
        self._page_size = page_size

    def _check_online(self, operation: str) -> None:
        if self.offline:
            raise EndpointConnectionError(endpoint_url=f"https://{BUCKET}.s3.test/{operation}")

    @staticmethod
    def _missing(operation: str, key: str) -> ClientError:
        return ClientError(
            {
                "Error": {"Code": "NoSuchKey", "Message": f"{key} not found"},
                "ResponseMetadata": {"HTTPStatusCode": 404},
            },
            operation,
        )

    def put_object(self, Bucket: str, Key: str, Body: bytes, ContentType: str = "") -> dict:
        self._check_online("PutObject")
        self.objects[(Bucket, Key)] = bytes(Body)
        self.content_types[(Bucket, Key)] = ContentType
        return {"ETag": '"fake"'}

    def get_object(self, Bucket: str, Key: str) -> dict:
        self._check_online("GetObject")
        if (Bucket, Key) not in self.objects:
            raise self._missing("GetObject", Key)
        return {"Body": _Body(self.objects[(Bucket, Key)])}

    def head_object(self, Bucket: str, Key: str) -> dict:
        self._check_online("HeadObject")
        if (Bucket, Key) not in self.objects:
            raise self._missing("HeadObject", Key)
        return {"ContentLength": len(self.objects[(Bucket, Key)])}

    def get_paginator(self, operation_name: str) -> _Paginator:
        assert operation_name == "list_objects_v2"
        return _Paginator(self, self._page_size)

    def generate_presigned_url(self, ClientMethod: str, Params: dict, ExpiresIn: int) -> str:
        self._check_online("Presign")
        return (
            f"https://{Params['Bucket']}.s3.test/{Params['Key']}"
            f"?X-Amz-Expires={ExpiresIn}&X-Amz-Signature=fake"
        )


# ---------------------------------------------------------------------------
# Fake Google Cloud Storage client
# ---------------------------------------------------------------------------


class _FakeBlob:
    def __init__(self, client: "FakeGcsClient", bucket: str, name: str) -> None:
        self._client = client
        self._bucket = bucket
        self.name = name

    @property
    def _ref(self) -> tuple[str, str]:
        return (self._bucket, self.name)

    def upload_from_string(self, data: bytes, content_type: str = "") -> None:
        self._client._check_online()
        self._client.objects[self._ref] = bytes(data)
        self._client.content_types[self._ref] = content_type

    def download_as_bytes(self) -> bytes:
        self._client._check_online()
        if self._ref not in self._client.objects:
            raise NotFound(f"No such object: {self._bucket}/{self.name}")
        return self._client.objects[self._ref]

    def exists(self) -> bool:
        self._client._check_online()
        return self._ref in self._client.objects

    def generate_signed_url(self, version: str, expiration, method: str) -> str:
        assert version == "v4"
        assert method == "GET"
        return (
            f"https://storage.googleapis.test/{self._bucket}/{self.name}"
            f"?X-Goog-Expires={int(expiration.total_seconds())}&X-Goog-Signature=fake"
        )


class _FakeBucket:
    def __init__(self, client: "FakeGcsClient", name: str) -> None:
        self._client = client
        self.name = name

    def blob(self, name: str) -> _FakeBlob:
        return _FakeBlob(self._client, self.name, name)


class FakeGcsClient:
    """In-memory google.cloud.storage client covering the calls GcsCardStorage makes."""

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str], bytes] = {}
        self.content_types: dict[tuple[str, str], str] = {}
        self.offline = False

    def _check_online(self) -> None:
        if self.offline:
            raise TransportError("storage.googleapis.test unreachable")

    def bucket(self, name: str) -> _FakeBucket:
        return _FakeBucket(self, name)

    def list_blobs(self, bucket_or_name: str, prefix: str = ""):
        self._check_online()
        return [
            _FakeBlob(self, b, k)
            for b, k in sorted(self.objects)
            if b == bucket_or_name and k.startswith(prefix)
        ]


# ---------------------------------------------------------------------------
# Interface fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture(params=["jwt"])
async def auth_contract_service(request):
    """Yields an AuthService implementation with TIGER34 on its allow-list."""
    if request.param == "jwt":
        yield JwtAuthService(secret="contract-secret", player_codes=["TIGER34"])


@pytest_asyncio.fixture(params=["memory"])
async def session_store(request):
    """Yields a SessionStore implementation."""
    if request.param == "memory":
        yield InMemorySessionStore()


@pytest_asyncio.fixture(params=["local", "cloud", "gcs"])
async def card_storage(request, tmp_path):
    """Yields a CardStorage implementation backed by isolated state."""
    if request.param == "local":
        yield LocalCardStorage(base_path=tmp_path / "cards")
    elif request.param == "cloud":
        yield S3CardStorage(bucket=BUCKET, region="eu-west-2", client=FakeS3Client(page_size=2))
    elif request.param == "gcs":
        yield GcsCardStorage(bucket=BUCKET, client=FakeGcsClient())


@pytest_asyncio.fixture
async def read_object(card_storage):
    """Returns a reader for a stored key's raw bytes (None when absent)."""

    def _read(key: str) -> bytes | None:
        if isinstance(card_storage, LocalCardStorage):
            path = card_storage.base_path / key
            return path.read_bytes() if path.is_file() else None
        client = card_storage._client
        return client.objects.get((card_storage.bucket, key))

    return _read
