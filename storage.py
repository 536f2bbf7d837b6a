import logging
from pathlib import Path
from typing import List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from config import Settings
from errors import BackendError

logger = logging.getLogger(__name__)

settings = Settings.load()
LOCAL_ROOT = Path("exports")


def get_s3_client():
    return boto3.client("s3", region_name=settings.aws_region)


def save_file(file_name: str, data: bytes, folder: str = "transactions", bucket: Optional[str] = None,
              local_root: Path = LOCAL_ROOT) -> str:
    """
    Saves an exported file to S3 when a bucket is configured, local disk otherwise.
    Returns the location it was written to.
    """
    bucket = bucket if bucket is not None else settings.export_bucket
    if bucket:
        key = f"{folder}/{file_name}"
        try:
            get_s3_client().put_object(Bucket=bucket, Key=key, Body=data)
        except (BotoCoreError, ClientError) as e:
            logger.error("S3 upload of %s failed: %s", key, e)
            raise BackendError(f"S3 upload error: {e}") from e
        logger.info("Saved export to s3://%s/%s", bucket, key)
        return f"s3://{bucket}/{key}"

    # Local fallback
    local_path = Path(local_root) / folder / file_name
    local_path.parent.mkdir(parents=True, exist_ok=True)
    local_path.write_bytes(data)
    logger.info("Saved export to %s", local_path)
    return str(local_path)


def load_file(file_name: str, folder: str = "transactions", bucket: Optional[str] = None,
              local_root: Path = LOCAL_ROOT) -> Optional[bytes]:
    """
    Loads a previously saved export, or None when it does not exist.
    """
    bucket = bucket if bucket is not None else settings.export_bucket
    if bucket:
        s3 = get_s3_client()
        key = f"{folder}/{file_name}"
        try:
            obj = s3.get_object(Bucket=bucket, Key=key)
        except s3.exceptions.NoSuchKey:
            return None
        except (BotoCoreError, ClientError) as e:
            logger.error("S3 download of %s failed: %s", key, e)
            raise BackendError(f"S3 download error: {e}") from e
        return obj["Body"].read()

    local_path = Path(local_root) / folder / file_name
    if local_path.exists():
        return local_path.read_bytes()
    return None


def list_files(folder: str = "transactions", bucket: Optional[str] = None,
               local_root: Path = LOCAL_ROOT) -> List[str]:
    bucket = bucket if bucket is not None else settings.export_bucket
    if bucket:
        try:
            response = get_s3_client().list_objects_v2(Bucket=bucket, Prefix=f"{folder}/")
        except (BotoCoreError, ClientError) as e:
            logger.error("S3 listing of %s failed: %s", folder, e)
            raise BackendError(f"S3 list error: {e}") from e
        return [obj["Key"].split("/")[-1] for obj in response.get("Contents", [])]

    local_path = Path(local_root) / folder
    if local_path.exists():
        return sorted(f.name for f in local_path.glob("*") if f.is_file())
    return []
