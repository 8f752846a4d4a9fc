from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional

import boto3
from botocore.exceptions import ClientError
from cryptography.fernet import Fernet, InvalidToken

from ..errors import StateNotFoundError, StatePersistenceError, StateSchemaValidationError
from .base import StateSideEffect


logger = logging.getLogger(__name__)

STATE_OBJECT = "state.json"


def _to_fernet(key: str | bytes) -> Fernet:
    """Construct a Fernet instance from a user-provided key.

    The key must be a URL-safe base64-encoded 32-byte key (str or bytes),
    as returned by `cryptography.fernet.Fernet.generate_key()`.
    """
    if isinstance(key, str):
        key_bytes = key.encode("utf-8")
    else:
        key_bytes = key
    return Fernet(key_bytes)


def _dump_record_json(record: Dict[str, Any]) -> bytes:
    # Deterministic JSON: stable key order, no extra whitespace
    return json.dumps(record, separators=(",", ":"), sort_keys=True).encode("utf-8")


def _error_code(e: ClientError) -> Optional[str]:
    return e.response.get("Error", {}).get("Code")


@dataclass
class S3Location:
    bucket: str
    prefix: str

    def instances_prefix(self) -> str:
        return f"{self.prefix}instances/"

    def instance_prefix(self, name: str) -> str:
        return f"{self.instances_prefix()}{name}/"

    def state_key(self, name: str) -> str:
        return f"{self.instance_prefix(name)}{STATE_OBJECT}"


class S3StateSideEffect(StateSideEffect):
    """
    S3-backed persistence for instance states, optionally encrypted at rest.

    Usage
    - One object per instance at `s3://<bucket>/<prefix>instances/<name>/state.json`.
    - When `fernet_key` is given, objects are Fernet-encrypted JSON;
      otherwise plain JSON.
    - A single PutObject replaces the snapshot atomically; there is no
      conditional write, the last writer wins.
    - boto3 is blocking, so each call runs in a worker thread.
    """

    def __init__(
        self,
        *,
        s3: Optional[object] = None,
        bucket: str,
        prefix: str = "",
        fernet_key: str | bytes | None = None,
        region_name: Optional[str] = None,
    ) -> None:
        if prefix and not prefix.endswith("/"):
            prefix = prefix + "/"
        self._s3 = s3 or boto3.client("s3", region_name=region_name)
        self._loc = S3Location(bucket=bucket, prefix=prefix)
        self._fernet = _to_fernet(fernet_key) if fernet_key else None

    @property
    def location(self) -> S3Location:
        return self._loc

    # -------- StateSideEffect --------
    async def list_instances(self) -> List[str]:
        return await asyncio.to_thread(self._list_sync)

    async def _write_record(self, name: str, record: Dict[str, Any]) -> None:
        await asyncio.to_thread(self._write_sync, name, record)

    async def _read_record(self, name: str) -> Dict[str, Any]:
        return await asyncio.to_thread(self._read_sync, name)

    async def _delete_record(self, name: str) -> None:
        await asyncio.to_thread(self._delete_sync, name)

    # -------- Blocking helpers --------
    def _encode(self, record: Dict[str, Any]) -> bytes:
        plaintext = _dump_record_json(record)
        if self._fernet is None:
            return plaintext
        return self._fernet.encrypt(plaintext)

    def _decode(self, body: bytes, key: str) -> Dict[str, Any]:
        data = body
        if self._fernet is not None:
            try:
                data = self._fernet.decrypt(body)
            except InvalidToken as ex:
                raise StateSchemaValidationError(
                    f"Failed to decrypt state s3://{self._loc.bucket}/{key}: invalid Fernet token"
                ) from ex
        try:
            raw = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as ex:
            raise StateSchemaValidationError(
                f"Failed to parse state JSON s3://{self._loc.bucket}/{key}"
            ) from ex
        if not isinstance(raw, dict):
            raise StateSchemaValidationError(f"State s3://{self._loc.bucket}/{key} is not a JSON object")
        return raw

    def _iter_keys(self, prefix: str) -> Iterator[str]:
        """Yield every key under `prefix`, following continuation tokens."""
        token: Optional[str] = None
        while True:
            kwargs: Dict[str, Any] = {"Bucket": self._loc.bucket, "Prefix": prefix}
            if token:
                kwargs["ContinuationToken"] = token
            resp = self._s3.list_objects_v2(**kwargs)
            for obj in resp.get("Contents", []):
                yield obj["Key"]
            if not resp.get("IsTruncated"):
                break
            token = resp.get("NextContinuationToken")

    def _list_sync(self) -> List[str]:
        prefix = self._loc.instances_prefix()
        names: List[str] = []
        try:
            for key in self._iter_keys(prefix):
                parts = key[len(prefix):].split("/")
                if len(parts) == 2 and parts[1] == STATE_OBJECT:
                    names.append(parts[0])
        except ClientError as e:
            raise StatePersistenceError(
                f"Failed to list states under s3://{self._loc.bucket}/{prefix}: {_error_code(e)}"
            ) from e
        return sorted(set(names))

    def _write_sync(self, name: str, record: Dict[str, Any]) -> None:
        key = self._loc.state_key(name)
        logger.debug("Writing state of %s to s3://%s/%s", name, self._loc.bucket, key)
        try:
            self._s3.put_object(
                Bucket=self._loc.bucket,
                Key=key,
                Body=self._encode(record),
                ContentType="application/octet-stream" if self._fernet else "application/json",
            )
        except ClientError as e:
            raise StatePersistenceError(
                f"Failed to write state s3://{self._loc.bucket}/{key}: {_error_code(e)}"
            ) from e

    def _read_sync(self, name: str) -> Dict[str, Any]:
        key = self._loc.state_key(name)
        logger.debug("Reading state of %s from s3://%s/%s", name, self._loc.bucket, key)
        try:
            resp = self._s3.get_object(Bucket=self._loc.bucket, Key=key)
        except ClientError as e:
            code = _error_code(e)
            if code in ("NoSuchKey", "404"):
                raise StateNotFoundError(name) from e
            raise StatePersistenceError(
                f"Failed to read state s3://{self._loc.bucket}/{key}: {code}"
            ) from e
        return self._decode(resp["Body"].read(), key)

    def _delete_sync(self, name: str) -> None:
        prefix = self._loc.instance_prefix(name)
        logger.debug("Removing objects under s3://%s/%s", self._loc.bucket, prefix)
        try:
            # Collect first; deleting while paging would shift the listing
            keys = list(self._iter_keys(prefix))
            # State object is always targeted so deletion stays idempotent
            state_key = self._loc.state_key(name)
            if state_key not in keys:
                keys.append(state_key)
            for key in keys:
                self._s3.delete_object(Bucket=self._loc.bucket, Key=key)
        except ClientError as e:
            raise StatePersistenceError(
                f"Failed to delete state under s3://{self._loc.bucket}/{prefix}: {_error_code(e)}"
            ) from e


__all__ = ["S3StateSideEffect", "S3Location", "STATE_OBJECT"]
