"""S3-compatible object storage client for the remote cache tier.

Moves single files to and from a bucket and mints presigned URLs. The
underlying boto3 client and its connection pool are created once and
released by ``close()``. Nothing here retries; the upload coordinator owns
the retry policy.
"""

import logging
import os
import threading
from datetime import timedelta
from pathlib import Path
from typing import Optional

import boto3
from botocore.client import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    ReadTimeoutError,
)

from action_cache.errors import (
    AuthFailure,
    DeadlineExceeded,
    ErrorKind,
    MissingCredentials,
    ObjectMissing,
    RemoteError,
    RemoteUnavailable,
)
from action_cache.models import UploadResult

logger = logging.getLogger(__name__)

ACCESS_KEY_ENV = "AWS_ACCESS_KEY_ID"
SECRET_KEY_ENV = "AWS_SECRET_ACCESS_KEY"

MAX_SIGNED_URL_EXPIRY = timedelta(days=7)

_MISSING_CODES = {"404", "NoSuchKey", "NotFound", "NoSuchBucket"}
_AUTH_CODES = {
    "401",
    "403",
    "AccessDenied",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "ExpiredToken",
    "InvalidToken",
}
_TIMEOUT_CODES = {"RequestTimeout", "RequestTimeoutException"}

_CLIENT_METHODS = {"GET": "get_object", "PUT": "put_object"}


def translate_error(error: Exception, key: Optional[str] = None) -> RemoteError:
    """Map a botocore exception onto the cache's error taxonomy.

    Args:
        error: Exception raised by boto3
        key: Object key involved in the failed call

    Returns:
        The matching ``RemoteError`` subclass instance
    """
    if isinstance(error, ClientError):
        code = str(error.response.get("Error", {}).get("Code", ""))
        message = f"{code}: {error}"
        if code in _MISSING_CODES:
            return ObjectMissing(message, key=key)
        if code in _AUTH_CODES:
            return AuthFailure(message, key=key)
        if code in _TIMEOUT_CODES:
            return DeadlineExceeded(message, key=key)
        return RemoteUnavailable(message, key=key)
    if isinstance(error, (ConnectTimeoutError, ReadTimeoutError)):
        return DeadlineExceeded(str(error), key=key)
    return RemoteUnavailable(str(error), key=key)


def read_credentials() -> tuple[str, str]:
    """Read the access key pair from the environment.

    Returns:
        Tuple of (access key id, secret access key)

    Raises:
        MissingCredentials: If either variable is unset or empty
    """
    access_key = os.environ.get(ACCESS_KEY_ENV, "")
    secret_key = os.environ.get(SECRET_KEY_ENV, "")
    if not access_key or not secret_key:
        raise MissingCredentials(
            "Object storage credentials not set. "
            f"Set {ACCESS_KEY_ENV} and {SECRET_KEY_ENV} environment variables."
        )
    return access_key, secret_key


class BlobClient:
    """Client for an S3-compatible object store.

    Credentials are read from environment variables at construction time:
        AWS_ACCESS_KEY_ID
        AWS_SECRET_ACCESS_KEY

    Attributes:
        endpoint_url: Storage endpoint URL, None for the AWS default
        region: Storage region
    """

    def __init__(
        self,
        endpoint_url: Optional[str] = None,
        region: str = "us-east-1",
        connect_timeout: float = 5.0,
        read_timeout: float = 30.0,
        max_pool_connections: int = 10,
    ):
        """Initialize the client.

        Args:
            endpoint_url: Storage endpoint URL (empty or None for AWS)
            region: Storage region
            connect_timeout: Seconds to wait for a connection
            read_timeout: Seconds to wait for a response
            max_pool_connections: Size of the shared connection pool

        Raises:
            MissingCredentials: If either credential environment variable is unset
        """
        access_key, secret_key = read_credentials()

        self.endpoint_url = endpoint_url or None
        self.region = region
        self._closed = False
        self._close_lock = threading.Lock()

        config = Config(
            connect_timeout=connect_timeout,
            read_timeout=read_timeout,
            max_pool_connections=max_pool_connections,
            retries={"total_max_attempts": 1, "mode": "standard"},
        )
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint_url,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
            config=config,
        )

    def upload(self, bucket: str, object_key: str, source_file: Path) -> UploadResult:
        """Stream a file to ``bucket/object_key``.

        The content length is taken from the file size and sent with the
        request, since unsized stream uploads are not accepted.

        Args:
            bucket: Bucket name
            object_key: Destination key
            source_file: Local file to upload

        Returns:
            Result of the upload; failures are reported, not raised
        """
        source_file = Path(source_file)
        try:
            size = source_file.stat().st_size
            with open(source_file, "rb") as body:
                self._client.put_object(
                    Bucket=bucket,
                    Key=object_key,
                    Body=body,
                    ContentLength=size,
                    ContentType="application/octet-stream",
                )
        except OSError as e:
            logger.warning(f"Cannot read {source_file} for upload: {e}")
            return UploadResult(
                source_file, object_key, success=False, error=ErrorKind.SOURCE_UNREADABLE
            )
        except (ClientError, BotoCoreError) as e:
            error = translate_error(e, key=object_key)
            logger.warning(f"Upload of {source_file} to {bucket}/{object_key} failed: {error}")
            return UploadResult(source_file, object_key, success=False, error=error.kind)

        logger.debug(f"Uploaded {source_file} ({size} bytes) to {bucket}/{object_key}")
        return UploadResult(source_file, object_key, success=True)

    def exists(self, bucket: str, object_key: str) -> bool:
        """Check whether an object exists.

        Raises:
            RemoteError: For failures other than not-found
        """
        try:
            self._client.head_object(Bucket=bucket, Key=object_key)
            return True
        except (ClientError, BotoCoreError) as e:
            error = translate_error(e, key=object_key)
            if isinstance(error, ObjectMissing):
                return False
            raise error from e

    def get_bytes(self, bucket: str, object_key: str) -> bytes:
        """Read a whole object into memory.

        Raises:
            ObjectMissing: If the object does not exist
            RemoteError: For any other failure
        """
        try:
            response = self._client.get_object(Bucket=bucket, Key=object_key)
            return response["Body"].read()
        except (ClientError, BotoCoreError) as e:
            raise translate_error(e, key=object_key) from e

    def put_bytes(self, bucket: str, object_key: str, data: bytes) -> None:
        """Store a small in-memory object.

        Raises:
            RemoteError: If the store fails
        """
        try:
            self._client.put_object(
                Bucket=bucket, Key=object_key, Body=data, ContentLength=len(data)
            )
        except (ClientError, BotoCoreError) as e:
            raise translate_error(e, key=object_key) from e

    def download(self, bucket: str, object_key: str, dest_path: Path) -> Path:
        """Download an object to a local file.

        The object is written next to ``dest_path`` first and moved into
        place once complete, so readers never observe a partial file.

        Returns:
            *dest_path* after the download completes

        Raises:
            ObjectMissing: If the object does not exist
            RemoteError: For any other failure
        """
        dest_path = Path(dest_path)
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        tmp = dest_path.with_name(f".{dest_path.name}.part")
        try:
            self._client.download_file(bucket, object_key, str(tmp))
            os.replace(tmp, dest_path)
        except (ClientError, BotoCoreError) as e:
            raise translate_error(e, key=object_key) from e
        finally:
            if tmp.exists():
                tmp.unlink()
        return dest_path

    def delete(self, bucket: str, object_key: str) -> None:
        """Delete an object. Deleting a missing object is not an error.

        Raises:
            RemoteError: If the delete fails
        """
        try:
            self._client.delete_object(Bucket=bucket, Key=object_key)
        except (ClientError, BotoCoreError) as e:
            error = translate_error(e, key=object_key)
            if not isinstance(error, ObjectMissing):
                raise error from e

    def signed_url(
        self,
        bucket: str,
        object_key: str,
        method: str = "GET",
        expiry: timedelta = timedelta(hours=1),
    ) -> str:
        """Generate a presigned URL for direct access to one object.

        Args:
            bucket: Bucket name
            object_key: Object key
            method: ``GET`` to fetch or ``PUT`` to store
            expiry: How long the URL stays valid (at most 7 days)

        Returns:
            URL usable without credentials until it expires

        Raises:
            ValueError: If the method or expiry is not supported
        """
        client_method = _CLIENT_METHODS.get(method.upper())
        if client_method is None:
            raise ValueError(f"Unsupported signed URL method: {method}")
        if expiry < timedelta(seconds=1) or expiry > MAX_SIGNED_URL_EXPIRY:
            raise ValueError(f"Signed URL expiry must be between 1s and 7 days, got {expiry}")

        return self._client.generate_presigned_url(
            ClientMethod=client_method,
            Params={"Bucket": bucket, "Key": object_key},
            ExpiresIn=int(expiry.total_seconds()),
            HttpMethod=method.upper(),
        )

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Release the connection pool. Safe to call more than once."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        self._client.close()
        logger.debug("Object storage client closed")

    def __enter__(self) -> "BlobClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
