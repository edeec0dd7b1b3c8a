#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Client initialisation for S3-compatible storage, Textract, and Redis.
"""

import os
from typing import Any, Optional

import boto3
from botocore.config import Config
from redis import Redis

from axp_exceptions import ConfigError
from config.constant import (
    REDIS_POOL_HEALTH_CHECK_INTERVAL_S,
    S3_CONNECT_TIMEOUT_S,
    S3_DEFAULT_REGION,
    S3_READ_TIMEOUT_S,
    TEXTRACT_DEFAULT_REGION,
)

_BOTO_CONFIG = Config(
    retries={"max_attempts": 3, "mode": "standard"},
    connect_timeout=S3_CONNECT_TIMEOUT_S,
    read_timeout=S3_READ_TIMEOUT_S,
)


class ClientManager:
    """Manages lazy-loaded clients for S3, Textract, and Redis."""

    _s3: Optional[Any] = None
    _textract: Optional[Any] = None
    _redis: Optional[Redis] = None

    @classmethod
    def get_s3(cls) -> Any:
        """
        Lazy-load the S3 client. S3_ENDPOINT_URL points it at R2 or another
        S3-compatible service.
        """
        if cls._s3 is not None:
            return cls._s3

        access_key = os.environ.get("S3_ACCESS_KEY_ID")
        secret_key = os.environ.get("S3_SECRET_ACCESS_KEY")
        if not access_key or not secret_key:
            raise ConfigError(
                "S3_ACCESS_KEY_ID or S3_SECRET_ACCESS_KEY is not set. "
                "Set them in the environment or use dry-run during tests."
            )

        cls._s3 = build_s3_client(
            endpoint_url=os.environ.get("S3_ENDPOINT_URL") or None,
            region=os.environ.get("S3_REGION", S3_DEFAULT_REGION),
            access_key_id=access_key,
            secret_access_key=secret_key,
        )
        return cls._s3

    @classmethod
    def get_textract(cls) -> Any:
        if cls._textract is not None:
            return cls._textract
        cls._textract = build_textract_client(
            region=os.environ.get("TEXTRACT_REGION", TEXTRACT_DEFAULT_REGION))
        return cls._textract

    @classmethod
    def get_redis(cls) -> Redis:
        """
        Lazy-load Redis client.
        Only creates client when first needed.
        """
        if cls._redis is not None:
            return cls._redis
        redis_host = os.environ.get("REDIS_HOST")
        redis_port = os.environ.get("REDIS_PORT", "")
        redis_username = os.environ.get("REDIS_USERNAME", "")
        redis_password = os.environ.get("REDIS_PASSWORD", "")

        if not redis_host or not redis_port:
            raise ConfigError(
                "REDIS_HOST or REDIS_PORT not set"
            )
        try:
            port = int(redis_port)
        except ValueError as exc:
            raise ConfigError(f"Invalid REDIS_PORT: {redis_port}") from exc

        cls._redis = Redis(
            host=redis_host,
            port=port,
            decode_responses=True,
            username=redis_username or None,
            password=redis_password or None,
            health_check_interval=REDIS_POOL_HEALTH_CHECK_INTERVAL_S,
        )
        return cls._redis


def build_s3_client(
    *,
    endpoint_url: Optional[str],
    region: str,
    access_key_id: str,
    secret_access_key: str,
) -> Any:
    return boto3.client(
        "s3",
        endpoint_url=endpoint_url or None,
        region_name=region,
        aws_access_key_id=access_key_id,
        aws_secret_access_key=secret_access_key,
        config=_BOTO_CONFIG,
    )


def build_textract_client(*, region: str) -> Any:
    # Credentials come from the standard AWS chain.
    return boto3.client("textract", region_name=region, config=_BOTO_CONFIG)


def get_s3() -> Any:
    """Lazy-load S3 client."""
    return ClientManager.get_s3()


def get_textract() -> Any:
    """Lazy-load Textract client."""
    return ClientManager.get_textract()


def get_redis() -> Redis:
    """Lazy-load Redis client."""
    return ClientManager.get_redis()
