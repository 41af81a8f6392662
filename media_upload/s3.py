# s3.py
import asyncio
import logging
from typing import Optional
from urllib.parse import quote

import boto3
from boto3.s3.transfer import TransferConfig
from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import BotoCoreError, ClientError

from .exceptions import StorageError
from .storage.base import StorageBackend
from .storage.dto import UploadableFile


class S3StorageBackend(StorageBackend):
    """
    Client for S3-compatible object storage, implementing the StorageBackend
    interface. Large files are sent as managed multipart uploads.
    """

    name = "aws-s3"

    def __init__(
        self,
        bucket: str,
        region: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        max_file_size: int = 10 * 1024 * 1024,
        multipart_threshold: int = 8 * 1024 * 1024,
        multipart_chunksize: int = 8 * 1024 * 1024,
        signed_url_expiry: int = 3600,
        client=None,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(max_file_size, logger)
        self.bucket = bucket
        self.region = region
        self.endpoint_url = endpoint_url
        self.signed_url_expiry = signed_url_expiry
        self.transfer_config = TransferConfig(
            multipart_threshold=multipart_threshold,
            multipart_chunksize=multipart_chunksize,
        )
        self.client = client or boto3.client(
            "s3",
            region_name=region,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            endpoint_url=endpoint_url,
        )
        self.logger.info(f"S3 storage initialized for bucket '{bucket}'.")

    def _object_url(self, key: str) -> str:
        quoted_key = quote(key)
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{self.bucket}/{quoted_key}"
        region = self.region or "us-east-1"
        return f"https://{self.bucket}.s3.{region}.amazonaws.com/{quoted_key}"

    async def upload(self, file: UploadableFile) -> None:
        if not file.filepath:
            raise StorageError(f"File path is required to upload {file.name}")
        key = self.object_key(file)

        def put() -> dict:
            self.client.upload_file(
                str(file.filepath),
                self.bucket,
                key,
                ExtraArgs={
                    "ContentType": file.mime,
                    "Metadata": {"originalName": quote(file.name), "hash": file.hash},
                },
                Config=self.transfer_config,
            )
            return self.client.head_object(Bucket=self.bucket, Key=key)

        try:
            self.logger.info(f"Uploading {file.filepath} to s3://{self.bucket}/{key}...")
            head = await asyncio.to_thread(put)
        except (BotoCoreError, ClientError, S3UploadFailedError, OSError) as e:
            self.logger.error(f"Failed to upload file to 's3://{self.bucket}/{key}': {e}")
            raise StorageError(f"Failed to upload {file.name} to S3: {e}") from e

        file.url = self._object_url(key)
        file.provider_metadata = {
            "bucket": self.bucket,
            "key": key,
            "etag": head.get("ETag"),
        }

    async def delete(self, file: UploadableFile) -> None:
        key = self.object_key(file)
        try:
            self.logger.info(f"Deleting s3://{self.bucket}/{key}...")
            await asyncio.to_thread(self.client.delete_object, Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            self.logger.error(f"Failed to delete 's3://{self.bucket}/{key}': {e}")
            raise StorageError(f"Failed to delete {file.name} from S3: {e}") from e

    async def get_signed_url(self, file: UploadableFile, expires_in: Optional[int] = None) -> str:
        key = self.object_key(file)
        try:
            return await asyncio.to_thread(
                self.client.generate_presigned_url,
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=expires_in or self.signed_url_expiry,
            )
        except (BotoCoreError, ClientError) as e:
            self.logger.error(f"Failed to sign URL for 's3://{self.bucket}/{key}': {e}")
            raise StorageError(f"Failed to generate signed URL for {file.name}: {e}") from e
