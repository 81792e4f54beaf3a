"""Preflight checks against B2 through its S3-compatible API."""

from typing import Any, Dict, List, Tuple

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import ProvisionConfig
from .logging import log_info, log_success, log_error


def get_s3_client(config: ProvisionConfig, connect_timeout: int = 10) -> Any:
    """Get an S3 client pointed at the configured B2 endpoint.

    Args:
        config: Provisioning config carrying key id, key and endpoint
        connect_timeout: Seconds before a connection attempt is abandoned

    Returns:
        boto3 S3 client
    """
    return boto3.client(
        's3',
        endpoint_url=config.s3_endpoint,
        aws_access_key_id=config.key_id,
        aws_secret_access_key=config.key,
        config=BotoConfig(
            connect_timeout=connect_timeout,
            retries={'max_attempts': 2},
        ),
    )


def check_bucket_access(s3_client: Any, bucket: str) -> bool:
    """Verify the credentials can reach a bucket.

    A failing check is reported but never raised: sync tasks still run and
    fail individually.

    Returns:
        True if the bucket is reachable
    """
    try:
        s3_client.head_bucket(Bucket=bucket)
        log_success(f"B2 connection OK: {bucket}")
        return True
    except ClientError as e:
        error_code = e.response.get('Error', {}).get('Code')
        if error_code in ('403', 'AccessDenied'):
            log_error(f"Access denied to bucket: {bucket} (check B2_APP_KEY_ID / B2_APP_KEY)")
        elif error_code in ('404', 'NoSuchBucket'):
            log_error(f"Bucket not found: {bucket}")
        else:
            log_error(f"Error checking bucket: {e}")
        return False
    except BotoCoreError as e:
        log_error(f"B2 connection failed: {e}")
        return False


def list_prefix(s3_client: Any, bucket: str, prefix: str) -> List[Dict[str, Any]]:
    """List all objects under a prefix.

    Returns:
        List of dicts with 'key' and 'size'; empty on error
    """
    files: List[Dict[str, Any]] = []
    paginator = s3_client.get_paginator('list_objects_v2')
    prefix = prefix.strip('/') + '/' if prefix.strip('/') else ''

    try:
        for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
            for obj in page.get('Contents', []):
                files.append({'key': obj['Key'], 'size': obj['Size']})
    except (ClientError, BotoCoreError) as e:
        log_error(f"Failed to list b2://{bucket}/{prefix}: {e}")

    return files


def prefix_summary(s3_client: Any, bucket: str, prefix: str) -> Tuple[int, int]:
    """Object count and total bytes under a prefix."""
    files = list_prefix(s3_client, bucket, prefix)
    return len(files), sum(f['size'] for f in files)


def preflight(config: ProvisionConfig) -> bool:
    """Check B2 reachability and report what each configured prefix holds."""
    if not config.sync_enabled:
        log_info("B2 not configured, skipping connection check")
        return False

    client = get_s3_client(config)
    if not check_bucket_access(client, config.bucket):
        return False

    for kind, prefix in sorted(config.paths.items()):
        if kind == "outputs":
            continue
        count, size = prefix_summary(client, config.bucket, prefix)
        log_info(f"  {kind:<10} {prefix}: {count} files, {size / 1e9:.2f} GB")
    return True
