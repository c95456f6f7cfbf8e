"""Shared fixtures for action-cache tests."""

import io
import threading
import time
from pathlib import Path
from typing import Dict, Optional
from unittest.mock import patch

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from action_cache.services.blob_client import BlobClient


def client_error(code: str, operation: str = "PutObject") -> ClientError:
    """Build a botocore ClientError with the given error code."""
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class FakeS3Client:
    """In-memory stand-in for a boto3 S3 client.

    Instances created with the same ``objects`` dict behave like two
    machines talking to one bucket.

    Attributes:
        objects: Stored objects keyed by (bucket, key)
        put_calls: Keys passed to put_object, in call order
        get_calls: Keys passed to get_object, in call order
        failures: Exceptions to raise from put_object, keyed by object key
        unreachable: Raise a connection error from every call
        delay: Seconds each put_object/get_object call takes
        max_active_puts: Highest number of overlapping put_object calls
    """

    def __init__(self, objects: Optional[Dict] = None):
        self.objects = objects if objects is not None else {}
        self.put_calls = []
        self.get_calls = []
        self.put_kwargs = []
        self.failures: Dict[str, Exception] = {}
        self.unreachable = False
        self.delay = 0.0
        self.closed = 0
        self.active_puts = 0
        self.max_active_puts = 0
        self._lock = threading.Lock()

    def _check_reachable(self) -> None:
        if self.unreachable:
            raise EndpointConnectionError(endpoint_url="https://s3.test")

    def put_object(self, Bucket, Key, Body, ContentLength=None, **kwargs):
        self._check_reachable()
        with self._lock:
            self.put_calls.append(Key)
            self.put_kwargs.append(dict(Bucket=Bucket, Key=Key, ContentLength=ContentLength, **kwargs))
            self.active_puts += 1
            self.max_active_puts = max(self.max_active_puts, self.active_puts)
        try:
            if self.delay:
                time.sleep(self.delay)
            if Key in self.failures:
                raise self.failures[Key]
            data = Body if isinstance(Body, bytes) else Body.read()
            assert ContentLength == len(data)
            with self._lock:
                self.objects[(Bucket, Key)] = data
            return {"ETag": '"fake"'}
        finally:
            with self._lock:
                self.active_puts -= 1

    def head_object(self, Bucket, Key):
        self._check_reachable()
        if (Bucket, Key) not in self.objects:
            raise client_error("404", "HeadObject")
        return {"ContentLength": len(self.objects[(Bucket, Key)])}

    def get_object(self, Bucket, Key):
        self._check_reachable()
        with self._lock:
            self.get_calls.append(Key)
        if self.delay:
            time.sleep(self.delay)
        if (Bucket, Key) not in self.objects:
            raise client_error("NoSuchKey", "GetObject")
        return {"Body": io.BytesIO(self.objects[(Bucket, Key)])}

    def download_file(self, Bucket, Key, Filename):
        self._check_reachable()
        if (Bucket, Key) not in self.objects:
            raise client_error("404", "HeadObject")
        Path(Filename).write_bytes(self.objects[(Bucket, Key)])

    def delete_object(self, Bucket, Key):
        self._check_reachable()
        self.objects.pop((Bucket, Key), None)
        return {}

    def generate_presigned_url(self, ClientMethod, Params, ExpiresIn, HttpMethod=None):
        return (
            f"https://s3.test/{Params['Bucket']}/{Params['Key']}"
            f"?method={ClientMethod}&expires={ExpiresIn}&signature=fake"
        )

    def close(self):
        self.closed += 1


@pytest.fixture
def aws_env(monkeypatch):
    """Set both required credential environment variables."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "test-access-key")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "test-secret-key")


@pytest.fixture
def bucket_objects():
    """Backing store shared by every fake client in a test."""
    return {}


@pytest.fixture
def fake_s3(bucket_objects):
    return FakeS3Client(bucket_objects)


@pytest.fixture
def blob_client(aws_env, fake_s3):
    """BlobClient wired to the in-memory fake."""
    with patch("action_cache.services.blob_client.boto3.client", return_value=fake_s3):
        client = BlobClient(endpoint_url="https://s3.test")
    yield client
    client.close()


@pytest.fixture
def make_blob_client(aws_env, bucket_objects):
    """Factory for extra clients sharing the bucket, one per simulated machine."""
    clients = []

    def _make() -> BlobClient:
        fake = FakeS3Client(bucket_objects)
        with patch("action_cache.services.blob_client.boto3.client", return_value=fake):
            client = BlobClient(endpoint_url="https://s3.test")
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client.close()


@pytest.fixture
def make_file(tmp_path):
    """Create a file under tmp_path with the given content."""

    def _make(name: str, content: bytes) -> Path:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return path

    return _make


@pytest.fixture
def s3_error():
    """Factory for botocore ClientErrors."""
    return client_error
