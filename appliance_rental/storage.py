"""S3 object storage for appliance and category images."""
from __future__ import annotations

import uuid

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from flask import current_app

from .errors import RentalError, ValidationError

ALLOWED_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "webp"}


class UploadFailed(RentalError):
    error = "upload_failed"
    status_code = 502
    default_message = "Image upload failed"


def upload_image(file, folder: str = "appliances") -> str:
    """Upload a werkzeug FileStorage and return its public URL."""
    if file is None or not file.filename:
        raise ValidationError("an image file is required", error="no_image_provided")

    extension = file.filename.rsplit(".", 1)[-1].lower() if "." in file.filename else ""
    if extension not in ALLOWED_EXTENSIONS:
        raise ValidationError(
            f"image must be one of: {', '.join(sorted(ALLOWED_EXTENSIONS))}",
            error="invalid_image_type",
        )

    bucket_name = current_app.config["AWS_S3_BUCKET"]
    key = f"{folder}/{uuid.uuid4()}.{extension}"
    try:
        s3_client = boto3.client("s3")
        s3_client.upload_fileobj(
            file,
            bucket_name,
            key,
            ExtraArgs={"ContentType": file.content_type or "image/jpeg"},
        )
    except (BotoCoreError, ClientError) as exc:
        current_app.logger.exception("Failed to upload image to S3", exc_info=exc)
        raise UploadFailed() from exc

    return f"https://{bucket_name}.s3.amazonaws.com/{key}"
