"""Cloud object storage backends for CardStorage.

ObjectCardStorage holds the behaviour shared by every bucket store: the
same key layout as LocalCardStorage, signed GET URLs as image locators,
and a read-append-write save_log because object stores have no append.
Subclasses supply five blocking primitives (put, get, exists, list,
sign); the async methods run them in worker threads.

S3CardStorage lives here. The Google Cloud Storage backend is in
aitrumps.hooks.gcs_storage.

Credentials come from the provider's standard chain (environment, shared
config, instance role); nothing here reads them directly.

Usage:
    from aitrumps.hooks.cloud_storage import S3CardStorage

    storage = S3CardStorage(bucket="cards_storage", region="eu-west-2")
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from aitrumps.cards import (
    CARDS_PREFIX,
    IMAGES_PREFIX,
    LOGS_PREFIX,
    card_key,
    image_key,
    iso_now,
    log_key,
    sanitize_segment,
    sort_newest_first,
    stamp_record,
    validate_image_path,
)
from aitrumps.hooks.interfaces import CardStorage, ImageNotFound, StorageError

logger = logging.getLogger("aitrumps.storage")


class ObjectCardStorage(CardStorage):
    """CardStorage over a bucket's blocking object primitives.

    Args:
        bucket: Bucket name.
        url_ttl: Lifetime of signed image URLs, in seconds.
    """

    backend_name = "cloud"
    scheme = ""

    def __init__(self, bucket: str, url_ttl: int = 86400) -> None:
        self._bucket = bucket
        self._url_ttl = url_ttl
        self._log_lock = asyncio.Lock()

    @property
    def bucket(self) -> str:
        return self._bucket

    def _uri(self, key: str) -> str:
        return f"{self.scheme}://{self._bucket}/{key}"

    # -- blocking primitives (run via asyncio.to_thread) -----------------

    def _put(self, key: str, body: bytes, content_type: str) -> None:
        raise NotImplementedError

    def _get(self, key: str) -> bytes | None:
        """Returns the object body, or None if the key doesn't exist."""
        raise NotImplementedError

    def _exists(self, key: str) -> bool:
        raise NotImplementedError

    def _list_keys(self, prefix: str) -> list[str]:
        raise NotImplementedError

    def _presign(self, key: str) -> str:
        raise NotImplementedError

    # -- CardStorage ----------------------------------------------------

    async def save_image(self, card_id: str, data: bytes, series: str | None) -> str:
        key = image_key(card_id, series)
        await asyncio.to_thread(self._put, key, data, "image/jpeg")
        logger.info("Uploaded image %s (%d bytes)", self._uri(key), len(data))
        return await asyncio.to_thread(self._presign, key)

    async def save_card(self, card_id: str, record: dict[str, Any]) -> str:
        key = card_key(card_id, record.get("series"))
        stamped = stamp_record(record, key)
        payload = json.dumps(stamped, indent=2).encode("utf-8")
        await asyncio.to_thread(self._put, key, payload, "application/json")
        logger.info("Uploaded card %s", self._uri(key))
        return key

    def _read_cards(self, series: str | None) -> list[dict[str, Any]]:
        prefix = f"{CARDS_PREFIX}/"
        if series is not None:
            prefix = f"{CARDS_PREFIX}/{sanitize_segment(series)}/"

        records = []
        for key in self._list_keys(prefix):
            if not key.endswith(".json"):
                continue
            body = self._get(key)
            if body is None:
                continue
            try:
                records.append(json.loads(body))
            except json.JSONDecodeError as exc:
                logger.warning("Skipping unreadable card record %s: %s", key, exc)
        return records

    async def list_cards(self, series: str | None = None) -> list[dict[str, Any]]:
        records = await asyncio.to_thread(self._read_cards, series)
        return sort_newest_first(records)

    async def get_image_signed_url(self, path: str) -> str:
        validate_image_path(path)
        if not await asyncio.to_thread(self._exists, path):
            raise ImageNotFound(f"No image at {path}")
        return await asyncio.to_thread(self._presign, path)

    def _append_line(self, key: str, line: str) -> None:
        existing = self._get(key) or b""
        self._put(key, existing + line.encode("utf-8") + b"\n", "application/x-ndjson")

    async def save_log(
        self, level: str, message: str, metadata: dict[str, Any] | None = None
    ) -> None:
        entry = {"timestamp": iso_now(), "level": level, "message": message, **(metadata or {})}
        # Serialises read-modify-write within this process only.
        async with self._log_lock:
            await asyncio.to_thread(self._append_line, log_key(level), json.dumps(entry))

    def _count_files(self) -> dict[str, int]:
        return {
            prefix: len(self._list_keys(f"{prefix}/"))
            for prefix in (IMAGES_PREFIX, CARDS_PREFIX, LOGS_PREFIX)
        }

    async def get_storage_stats(self) -> dict[str, Any]:
        counts = await asyncio.to_thread(self._count_files)
        return {
            "totalFiles": sum(counts.values()),
            "images": counts[IMAGES_PREFIX],
            "cards": counts[CARDS_PREFIX],
            "logs": counts[LOGS_PREFIX],
            "backend": self.backend_name,
            "bucket": self._bucket,
            "lastUpdated": datetime.now(timezone.utc).isoformat(),
        }


# ---------------------------------------------------------------------------
# Amazon S3
# ---------------------------------------------------------------------------

_NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NotFound"})


def _status_of(exc: ClientError) -> int:
    return exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)


def _code_of(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


def _wrap(action: str, key: str, exc: Exception) -> StorageError:
    """Maps a boto3 failure onto StorageError.

    Server-side (5xx) and connection-level failures are transient; access
    and request errors are not.
    """
    if isinstance(exc, ClientError):
        status = _status_of(exc)
        return StorageError(
            f"S3 {action} failed for {key} [{_code_of(exc)}]: {exc}",
            transient=status >= 500,
        )
    return StorageError(f"S3 {action} failed for {key}: {exc}", transient=True)


class S3CardStorage(ObjectCardStorage):
    """Card storage in an S3 bucket.

    boto3 is synchronous, so every call runs in a worker thread.

    Args:
        bucket: Bucket name.
        region: Bucket region.
        client: Pre-built S3 client. Tests pass a fake here; production
            leaves it None and a boto3 client is created.
        url_ttl: Lifetime of presigned image URLs, in seconds.
    """

    backend_name = "cloud"
    scheme = "s3"

    def __init__(
        self,
        bucket: str,
        region: str,
        client: Any = None,
        url_ttl: int = 86400,
    ) -> None:
        super().__init__(bucket, url_ttl)
        self._region = region
        self._client = client if client is not None else boto3.client("s3", region_name=region)

    def _put(self, key: str, body: bytes, content_type: str) -> None:
        try:
            self._client.put_object(
                Bucket=self._bucket,
                Key=key,
                Body=body,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as exc:
            raise _wrap("put", key, exc) from exc

    def _get(self, key: str) -> bytes | None:
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=key)
        except ClientError as exc:
            if _code_of(exc) in _NOT_FOUND_CODES:
                return None
            raise _wrap("get", key, exc) from exc
        except BotoCoreError as exc:
            raise _wrap("get", key, exc) from exc
        return response["Body"].read()

    def _exists(self, key: str) -> bool:
        try:
            self._client.head_object(Bucket=self._bucket, Key=key)
        except ClientError as exc:
            if _code_of(exc) in _NOT_FOUND_CODES or _status_of(exc) == 404:
                return False
            raise _wrap("head", key, exc) from exc
        except BotoCoreError as exc:
            raise _wrap("head", key, exc) from exc
        return True

    def _list_keys(self, prefix: str) -> list[str]:
        keys = []
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self._bucket, Prefix=prefix):
                keys.extend(obj["Key"] for obj in page.get("Contents", []))
        except (ClientError, BotoCoreError) as exc:
            raise _wrap("list", prefix, exc) from exc
        return keys

    def _presign(self, key: str) -> str:
        try:
            return self._client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self._bucket, "Key": key},
                ExpiresIn=self._url_ttl,
            )
        except (ClientError, BotoCoreError) as exc:
            raise _wrap("presign", key, exc) from exc
