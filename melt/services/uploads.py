"""
Direct-to-storage photo uploads.

The browser asks for an upload target, sends the bytes straight to the storage
backend, then posts the resulting key and URL with the start or end form. The
application server never handles the image bytes itself.
"""
import logging
import re
import time
from typing import Dict, Optional

import boto3
import cloudinary.utils
from botocore.exceptions import ClientError
from pydantic import BaseModel

from ..config import (
    UPLOAD_BACKEND,
    MAX_PHOTO_SIZE,
    ALLOWED_PHOTO_TYPES,
    AWS_ACCESS_KEY,
    AWS_SECRET_KEY,
    S3_BUCKET_NAME,
    S3_REGION,
    S3_PRESIGN_EXPIRES,
    CLOUDINARY_CLOUD_NAME,
    CLOUDINARY_API_KEY,
    CLOUDINARY_API_SECRET,
)

logger = logging.getLogger(__name__)

SUBMISSION_ID_REGEX = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class UploadValidationError(Exception):
    pass


class UploadRequest(BaseModel):
    file_name: str
    file_type: str
    file_size: int
    submission_id: str
    order: int


class UploadTarget(BaseModel):
    backend: str
    method: str
    upload_url: str
    key: str
    public_url: str
    fields: Dict[str, str] = {}


def sanitize_file_name(file_name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9.-]", "_", file_name)


def _timestamp_ms() -> int:
    return int(time.time() * 1000)


class UploadAdapter:
    name = "base"

    def validate(self, request: UploadRequest) -> None:
        if not request.file_name or not request.file_name.strip():
            raise UploadValidationError("File name is required")
        if not request.file_type:
            raise UploadValidationError("File type is required")
        if request.file_type not in ALLOWED_PHOTO_TYPES:
            raise UploadValidationError(
                f"File type {request.file_type} is not allowed. Allowed types: {', '.join(ALLOWED_PHOTO_TYPES)}"
            )
        if request.file_size <= 0:
            raise UploadValidationError("File size must be greater than 0")
        if request.file_size > MAX_PHOTO_SIZE:
            raise UploadValidationError(f"File size exceeds maximum of {MAX_PHOTO_SIZE // 1024 // 1024}MB")
        if request.order not in (1, 2, 3):
            raise UploadValidationError("Photo order must be between 1 and 3")
        if not SUBMISSION_ID_REGEX.match(request.submission_id or ""):
            raise UploadValidationError("Invalid submission ID")

    def issue_upload_target(self, request: UploadRequest) -> UploadTarget:
        raise NotImplementedError

    def create_upload(self, request: UploadRequest) -> UploadTarget:
        self.validate(request)
        return self.issue_upload_target(request)

    def finalize(self, key: Optional[str], public_url: str) -> bool:
        """Confirms that a photo posted with a form really landed in this backend."""
        raise NotImplementedError

    def is_configured(self) -> bool:
        raise NotImplementedError

    def describe(self) -> dict:
        return {"backend": self.name, "configured": self.is_configured()}


class S3UploadAdapter(UploadAdapter):
    name = "s3"

    def __init__(self,
                 client=None,
                 bucket: Optional[str] = S3_BUCKET_NAME,
                 region: str = S3_REGION,
                 expires_in: int = S3_PRESIGN_EXPIRES):
        self._client = client
        self.bucket = bucket
        self.region = region
        self.expires_in = expires_in

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client("s3",
                aws_access_key_id=AWS_ACCESS_KEY,
                aws_secret_access_key=AWS_SECRET_KEY,
                region_name=self.region
            )
        return self._client

    def get_public_url(self, key: str) -> str:
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def issue_upload_target(self, request: UploadRequest) -> UploadTarget:
        key = (
            f"challenges/{request.submission_id}/"
            f"photo-{request.order}-{_timestamp_ms()}-{sanitize_file_name(request.file_name)}"
        )

        upload_url = self.client.generate_presigned_url(
            "put_object",
            Params={
                "Bucket": self.bucket,
                "Key": key,
                "ContentType": request.file_type,
                "ContentLength": request.file_size,
                "Metadata": {
                    "submission-id": request.submission_id,
                    "order": str(request.order),
                },
            },
            ExpiresIn=self.expires_in,
        )

        return UploadTarget(
            backend=self.name,
            method="PUT",
            upload_url=upload_url,
            key=key,
            public_url=self.get_public_url(key),
        )

    def finalize(self, key: Optional[str], public_url: str) -> bool:
        if not key or public_url != self.get_public_url(key):
            return False
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("404", "NoSuchKey", "NotFound"):
                logger.warning("Photo %s was never uploaded to %s", key, self.bucket)
                return False
            raise
        return True

    def is_configured(self) -> bool:
        return bool(AWS_ACCESS_KEY and AWS_SECRET_KEY and self.bucket and self.region)

    def describe(self) -> dict:
        return {
            "backend": self.name,
            "bucket": self.bucket or "NOT_CONFIGURED",
            "region": self.region or "NOT_CONFIGURED",
            "configured": self.is_configured(),
        }


class CloudinaryUploadAdapter(UploadAdapter):
    name = "cloudinary"

    def __init__(self,
                 cloud_name: Optional[str] = CLOUDINARY_CLOUD_NAME,
                 api_key: Optional[str] = CLOUDINARY_API_KEY,
                 api_secret: Optional[str] = CLOUDINARY_API_SECRET):
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret

    @property
    def delivery_prefix(self) -> str:
        return f"https://res.cloudinary.com/{self.cloud_name}/image/upload/"

    def issue_upload_target(self, request: UploadRequest) -> UploadTarget:
        stem = re.sub(r"\.[^.]+$", "", sanitize_file_name(request.file_name))
        folder = f"challenges/{request.submission_id}"
        public_id = f"photo-{request.order}-{_timestamp_ms()}-{stem}"
        timestamp = int(time.time())

        signature = cloudinary.utils.api_sign_request(
            {"timestamp": timestamp, "folder": folder, "public_id": public_id},
            self.api_secret,
        )

        return UploadTarget(
            backend=self.name,
            method="POST",
            upload_url=f"https://api.cloudinary.com/v1_1/{self.cloud_name}/image/upload",
            key=f"{folder}/{public_id}",
            public_url=f"{self.delivery_prefix}{folder}/{public_id}",
            fields={
                "api_key": self.api_key or "",
                "timestamp": str(timestamp),
                "folder": folder,
                "public_id": public_id,
                "signature": signature,
            },
        )

    def finalize(self, key: Optional[str], public_url: str) -> bool:
        # Delivery URLs carry a version segment, so only the cloud prefix and public id are checked
        if not public_url.startswith(self.delivery_prefix):
            return False
        return key is None or key in public_url

    def is_configured(self) -> bool:
        return bool(self.cloud_name and self.api_key and self.api_secret)

    def describe(self) -> dict:
        return {
            "backend": self.name,
            "cloud_name": self.cloud_name or "NOT_CONFIGURED",
            "configured": self.is_configured(),
        }


UPLOAD_ADAPTERS = {
    S3UploadAdapter.name: S3UploadAdapter,
    CloudinaryUploadAdapter.name: CloudinaryUploadAdapter,
}

_adapter: Optional[UploadAdapter] = None


def get_upload_adapter() -> UploadAdapter:
    global _adapter
    if _adapter is None:
        adapter_class = UPLOAD_ADAPTERS.get(UPLOAD_BACKEND)
        if adapter_class is None:
            raise ValueError(f"Unknown UPLOAD_BACKEND {UPLOAD_BACKEND!r}, expected one of {sorted(UPLOAD_ADAPTERS)}")
        _adapter = adapter_class()
        if not _adapter.is_configured():
            logger.warning("Upload backend %s is not fully configured", UPLOAD_BACKEND)
    return _adapter
