"""
S3-compatible object store implementation.

Works against MinIO, AWS S3 or any other service speaking the S3 API. The
gateway is the only component holding these credentials.
"""

import logging
from typing import BinaryIO, Dict, Iterator, Optional

import boto3
from boto3.s3.transfer import TransferConfig
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from shared.constants import (
    DEFAULT_REGION,
    MULTIPART_CHUNK_SIZE,
    MULTIPART_CONCURRENCY,
    STREAM_CHUNK_SIZE,
)
from shared.models import StoreObject
from .storage_provider import ObjectNotFoundError, ObjectStore, StoreError

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = {"NoSuchKey", "NoSuchBucket", "NotFound", "404"}
BUCKET_OWNED_CODES = {"BucketAlreadyOwnedByYou", "BucketAlreadyExists"}


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


def _translate(error: Exception) -> StoreError:
    """Map a botocore failure onto the store error taxonomy."""
    if isinstance(error, ClientError) and _error_code(error) in NOT_FOUND_CODES:
        return ObjectNotFoundError(str(error))
    return StoreError(str(error))


class S3StorageProvider(ObjectStore):
    """
    Object store backed by a boto3 S3 client.
    """

    def __init__(self, client=None):
        self.s3_client = client
        self.endpoint_url = None
        self.region = DEFAULT_REGION

    def authenticate(self, credentials: Dict[str, str]) -> bool:
        """
        Build the S3 client.

        Args:
            credentials: Must contain:
                - endpoint: Store endpoint URL
                - access_key_id: Access key ID
                - secret_access_key: Secret access key
                - region: Region name (optional)
                - force_path_style: Use path-style addressing (optional, default True)
        """
        try:
            self.endpoint_url = credentials['endpoint']
            self.region = credentials.get('region') or DEFAULT_REGION
            addressing = "path" if credentials.get('force_path_style', True) else "auto"

            self.s3_client = boto3.client(
                's3',
                endpoint_url=self.endpoint_url,
                aws_access_key_id=credentials['access_key_id'],
                aws_secret_access_key=credentials['secret_access_key'],
                region_name=self.region,
                config=Config(signature_version='s3v4', s3={'addressing_style': addressing}),
            )
            return True

        except (BotoCoreError, KeyError) as e:
            logger.error("S3 client setup failed: %s", e)
            return False

    def get_object(self, bucket: str, key: str,
                   range_header: Optional[str] = None) -> StoreObject:
        params = {'Bucket': bucket, 'Key': key}
        if range_header:
            params['Range'] = range_header
        try:
            response = self.s3_client.get_object(**params)
        except (ClientError, BotoCoreError) as e:
            raise _translate(e) from e

        obj = self._to_store_object(response)
        obj.content_range = response.get('ContentRange')
        obj.body = self._iter_body(response['Body'])
        return obj

    def head_object(self, bucket: str, key: str) -> StoreObject:
        try:
            response = self.s3_client.head_object(Bucket=bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise _translate(e) from e
        return self._to_store_object(response)

    def delete_object(self, bucket: str, key: str) -> None:
        try:
            self.s3_client.delete_object(Bucket=bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise _translate(e) from e

    def put_object(self, bucket: str, key: str, data: bytes,
                   content_type: Optional[str] = None) -> None:
        params = {'Bucket': bucket, 'Key': key, 'Body': data, 'ContentLength': len(data)}
        if content_type:
            params['ContentType'] = content_type
        try:
            self.s3_client.put_object(**params)
        except (ClientError, BotoCoreError) as e:
            raise _translate(e) from e

    def upload_fileobj(self, bucket: str, key: str, fileobj: BinaryIO,
                       content_type: Optional[str] = None) -> None:
        extra_args = {'ContentType': content_type} if content_type else None
        transfer = TransferConfig(
            multipart_chunksize=MULTIPART_CHUNK_SIZE,
            max_concurrency=MULTIPART_CONCURRENCY,
        )
        try:
            self.s3_client.upload_fileobj(
                fileobj, bucket, key,
                ExtraArgs=extra_args,
                Config=transfer,
            )
        except (ClientError, BotoCoreError) as e:
            raise _translate(e) from e

    def ensure_bucket(self, bucket: str, region: Optional[str] = None) -> str:
        try:
            self.s3_client.head_bucket(Bucket=bucket)
            return "exists"
        except ClientError:
            pass
        except BotoCoreError as e:
            raise _translate(e) from e

        params = {'Bucket': bucket}
        if region and region != DEFAULT_REGION:
            params['CreateBucketConfiguration'] = {'LocationConstraint': region}
        try:
            self.s3_client.create_bucket(**params)
            self.s3_client.head_bucket(Bucket=bucket)
            logger.info("Created bucket %s", bucket)
            return "created"
        except ClientError as e:
            if _error_code(e) in BUCKET_OWNED_CODES:
                return "exists"
            raise _translate(e) from e
        except BotoCoreError as e:
            raise _translate(e) from e

    @staticmethod
    def _to_store_object(response: Dict) -> StoreObject:
        return StoreObject(
            content_type=response.get('ContentType'),
            content_length=response.get('ContentLength'),
            etag=response.get('ETag'),
            last_modified=response.get('LastModified'),
        )

    @staticmethod
    def _iter_body(body) -> Iterator[bytes]:
        try:
            for chunk in body.iter_chunks(chunk_size=STREAM_CHUNK_SIZE):
                yield chunk
        finally:
            body.close()
