"""Google Cloud Storage backend for CardStorage.

Same key layout and behaviour as the S3 backend; image locators are v4
signed GET URLs. Credentials come from Application Default Credentials.
Signing URLs needs a service-account identity.

google-cloud-storage is synchronous, so every call runs in a worker
thread via ObjectCardStorage.

Usage:
    from aitrumps.hooks.gcs_storage import GcsCardStorage

    storage = GcsCardStorage(bucket="cards_storage")
"""

from datetime import timedelta
from typing import Any

from google.api_core.exceptions import GoogleAPICallError, NotFound
from google.auth.exceptions import GoogleAuthError
from google.cloud import storage as gcs

from aitrumps.hooks.cloud_storage import ObjectCardStorage
from aitrumps.hooks.interfaces import StorageError

_ERRORS = (GoogleAPICallError, GoogleAuthError)


def _wrap(action: str, key: str, exc: Exception) -> StorageError:
    """Maps a google-cloud failure onto StorageError (5xx and transport are transient)."""
    if isinstance(exc, GoogleAPICallError):
        code = exc.code if isinstance(exc.code, int) else 0
        return StorageError(
            f"GCS {action} failed for {key} [{code}]: {exc}",
            transient=code >= 500,
        )
    return StorageError(f"GCS {action} failed for {key}: {exc}", transient=True)


class GcsCardStorage(ObjectCardStorage):
    """Card storage in a Google Cloud Storage bucket.

    Args:
        bucket: Bucket name.
        client: Pre-built storage client. Tests pass a fake here;
            production leaves it None and a google.cloud.storage.Client
            is created.
        url_ttl: Lifetime of signed image URLs, in seconds.
    """

    backend_name = "gcs"
    scheme = "gs"

    def __init__(self, bucket: str, client: Any = None, url_ttl: int = 86400) -> None:
        super().__init__(bucket, url_ttl)
        self._client = client if client is not None else gcs.Client()
        self._handle = self._client.bucket(bucket)

    def _put(self, key: str, body: bytes, content_type: str) -> None:
        try:
            self._handle.blob(key).upload_from_string(body, content_type=content_type)
        except _ERRORS as exc:
            raise _wrap("upload", key, exc) from exc

    def _get(self, key: str) -> bytes | None:
        try:
            return self._handle.blob(key).download_as_bytes()
        except NotFound:
            return None
        except _ERRORS as exc:
            raise _wrap("download", key, exc) from exc

    def _exists(self, key: str) -> bool:
        try:
            return self._handle.blob(key).exists()
        except _ERRORS as exc:
            raise _wrap("exists", key, exc) from exc

    def _list_keys(self, prefix: str) -> list[str]:
        try:
            return [blob.name for blob in self._client.list_blobs(self._bucket, prefix=prefix)]
        except _ERRORS as exc:
            raise _wrap("list", prefix, exc) from exc

    def _presign(self, key: str) -> str:
        try:
            return self._handle.blob(key).generate_signed_url(
                version="v4",
                expiration=timedelta(seconds=self._url_ttl),
                method="GET",
            )
        except _ERRORS as exc:
            raise _wrap("sign", key, exc) from exc
