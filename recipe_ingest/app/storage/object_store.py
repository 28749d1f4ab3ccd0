"""
S3-compatible object storage helpers (AWS S3 and MinIO).

Ingest artifacts are written here when ``INGEST_ARTIFACT_S3_BUCKET`` is set.
The endpoint, addressing style and credentials come from settings, so the
same code talks to AWS or to a local MinIO.
"""
import logging
from functools import lru_cache
from typing import List

import boto3
from botocore.client import BaseClient
from botocore.config import Config
from botocore.exceptions import ClientError

from recipe_ingest.app.core.config import get_settings

logger = logging.getLogger(__name__)


class ObjectStoreError(RuntimeError):
    pass


@lru_cache
def _get_s3_client() -> BaseClient:
    settings = get_settings()
    client_kwargs = {}
    if settings.s3_force_path_style:
        # MinIO needs path-style addressing
        client_kwargs["config"] = Config(signature_version="s3v4", s3={"addressing_style": "path"})
    if settings.s3_endpoint_url:
        client_kwargs["endpoint_url"] = settings.s3_endpoint_url
    if settings.aws_access_key_id and settings.aws_secret_access_key:
        client_kwargs["aws_access_key_id"] = settings.aws_access_key_id
        client_kwargs["aws_secret_access_key"] = settings.aws_secret_access_key
    return boto3.client("s3", region_name=settings.s3_region or "us-east-1", **client_kwargs)


def uri_for(bucket: str, key: str) -> str:
    return f"s3://{bucket}/{key}"


def put_bytes(bucket: str, key: str, content_type: str, data: bytes) -> str:
    """Upload ``data`` and return its ``s3://`` URI."""
    try:
        _get_s3_client().put_object(Bucket=bucket, Key=key, Body=data, ContentType=content_type)
    except ClientError as exc:
        logger.exception("Failed to upload object to s3://%s/%s", bucket, key)
        raise ObjectStoreError(f"S3 upload failed: {exc}") from exc
    uri = uri_for(bucket, key)
    logger.debug("Uploaded object to %s", uri)
    return uri


def get_bytes(bucket: str, key: str) -> bytes | None:
    """Download an object; ``None`` when the key does not exist."""
    try:
        response = _get_s3_client().get_object(Bucket=bucket, Key=key)
    except ClientError as exc:
        if exc.response.get("Error", {}).get("Code") in {"NoSuchKey", "404"}:
            return None
        logger.exception("Failed to download object from s3://%s/%s", bucket, key)
        raise ObjectStoreError(f"S3 download failed: {exc}") from exc
    return response["Body"].read()


def list_keys(bucket: str, prefix: str) -> List[str]:
    keys: List[str] = []
    try:
        paginator = _get_s3_client().get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
            keys.extend(item["Key"] for item in page.get("Contents", []))
    except ClientError as exc:
        logger.exception("Failed to list objects under s3://%s/%s", bucket, prefix)
        raise ObjectStoreError(f"S3 list failed: {exc}") from exc
    return sorted(keys)


def delete_key(bucket: str, key: str) -> None:
    try:
        _get_s3_client().delete_object(Bucket=bucket, Key=key)
    except ClientError as exc:
        logger.exception("Failed to delete s3://%s/%s", bucket, key)
        raise ObjectStoreError(f"S3 delete failed: {exc}") from exc
