from __future__ import annotations

import re
from typing import Any, Iterator, Protocol

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
import requests

from .config import Config, StartupError
from .timer import RequestTrace
from .transport import Transport

REQUEST_ID_HEADER = "x-amz-request-id"
EXTENDED_REQUEST_ID_HEADER = "x-amz-id-2"
DRAIN_CHUNK_SIZE = 64 * 1024

_ERROR_CODE_RE = re.compile(r"<Code>([^<]+)</Code>")


class StorageError(RuntimeError):
    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        request_id: str = "",
        extended_request_id: str = "",
    ) -> None:
        super().__init__(message)
        self.status = status
        self.request_id = request_id
        self.extended_request_id = extended_request_id


class ObjectBody(Protocol):
    def iter_chunks(self, chunk_size: int = DRAIN_CHUNK_SIZE) -> Iterator[bytes]: ...

    def close(self) -> None: ...


class ObjectReader(Protocol):
    def get(self, bucket: str, key: str, trace: RequestTrace | None = None) -> ObjectBody: ...


class ResponseBody:
    def __init__(self, response: requests.Response) -> None:
        self._response = response

    def iter_chunks(self, chunk_size: int = DRAIN_CHUNK_SIZE) -> Iterator[bytes]:
        try:
            yield from self._response.iter_content(chunk_size=chunk_size)
        except requests.RequestException as exc:
            raise StorageError(f"body read failed: {exc}") from exc

    def close(self) -> None:
        self._response.close()


def drain(body: ObjectBody, chunk_size: int = DRAIN_CHUNK_SIZE) -> int:
    """Read and discard the whole body so the connection returns to the pool."""
    total = 0
    try:
        for chunk in body.iter_chunks(chunk_size):
            total += len(chunk)
    finally:
        body.close()
    return total


def create_s3_client(config: Config) -> Any:
    try:
        session = boto3.session.Session(region_name=config.region or None)
        credentials = session.get_credentials()
    except BotoCoreError as exc:
        raise StartupError(f"cannot create AWS session: {exc}") from exc
    if credentials is None:
        raise StartupError("no AWS credentials found")
    try:
        return session.client(
            "s3",
            endpoint_url=config.endpoint_url,
            use_ssl=config.ssl,
            config=BotoConfig(signature_version="s3v4"),
        )
    except (BotoCoreError, ValueError) as exc:
        raise StartupError(f"cannot create S3 client: {exc}") from exc


def _error_code(text: str) -> str:
    match = _ERROR_CODE_RE.search(text or "")
    return match.group(1) if match else ""


class S3ObjectReader:
    """Issues presigned S3 GETs through the shared transport."""

    def __init__(self, client: Any, transport: Transport, *, expires_seconds: int = 3600) -> None:
        self._client = client
        self._transport = transport
        self._expires_seconds = expires_seconds

    def presign(self, bucket: str, key: str) -> str:
        try:
            return self._client.generate_presigned_url(
                "get_object",
                Params={"Bucket": bucket, "Key": key},
                ExpiresIn=self._expires_seconds,
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"presign s3://{bucket}/{key} failed: {exc}") from exc

    def get(self, bucket: str, key: str, trace: RequestTrace | None = None) -> ResponseBody:
        url = self.presign(bucket, key)
        on_response = None
        if trace is not None:

            def on_response(response: requests.Response) -> None:
                trace.request_complete(
                    response.headers.get(REQUEST_ID_HEADER, ""),
                    response.headers.get(EXTENDED_REQUEST_ID_HEADER, ""),
                )

        try:
            response = self._transport.get(url, trace=trace, on_response=on_response)
        except requests.RequestException as exc:
            raise StorageError(f"GET s3://{bucket}/{key} failed: {exc}") from exc
        if 200 <= response.status_code < 300:
            return ResponseBody(response)

        request_id = response.headers.get(REQUEST_ID_HEADER, "")
        extended_request_id = response.headers.get(EXTENDED_REQUEST_ID_HEADER, "")
        try:
            code = _error_code(response.text)
        except requests.RequestException:
            code = ""
        finally:
            response.close()
        detail = f"HTTP {response.status_code} {code or response.reason}"
        raise StorageError(
            f"GET s3://{bucket}/{key} failed: {detail} req-id={request_id}",
            status=response.status_code,
            request_id=request_id,
            extended_request_id=extended_request_id,
        )
