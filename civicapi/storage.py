import io
import logging
from uuid import uuid4

from fastapi import status
from minio import Minio
from werkzeug.utils import secure_filename

from civicapi.config import config
from civicapi.errors import ApiError

logger = logging.getLogger(__name__)

ALLOWED = {"pdf", "docx", "txt", "jpg", "jpeg", "png", "mp3", "wav", "mp4"}


def get_minio_client() -> Minio:
    return Minio(
        endpoint=config.MINIO_ENDPOINT,
        access_key=config.MINIO_ROOT_USER,
        secret_key=config.MINIO_ROOT_PASSWORD,
        secure=config.MINIO_SECURE,
    )


def ensure_bucket():
    client = get_minio_client()
    if not client.bucket_exists(config.MINIO_BUCKET):
        logger.info(f"Creating bucket {config.MINIO_BUCKET}")
        client.make_bucket(config.MINIO_BUCKET)


def check_allowed(filename: str | None) -> str:
    if not filename:
        raise ApiError("No file provided")
    ext = filename.split(".")[-1].lower()
    if ext not in ALLOWED:
        raise ApiError(f'File type not allowed: "{filename}"')
    return secure_filename(filename)


def object_url(obj_name: str) -> str:
    scheme = "https" if config.MINIO_SECURE else "http"
    return f"{scheme}://{config.MINIO_ENDPOINT}/{config.MINIO_BUCKET}/{obj_name}"


def object_name_from_url(url: str) -> str | None:
    prefix = object_url("")
    if not url.startswith(prefix):
        return None
    return url[len(prefix):]


def store_submission_file(
    form_event_id: int,
    submission_id: int,
    field_id: int,
    filename: str,
    content: bytes,
    content_type: str | None = None,
) -> str:
    """Upload one answer file and return its public URL."""
    safe_name = check_allowed(filename)
    obj_name = f"form-events/{form_event_id}/submissions/{submission_id}/{field_id}/{uuid4().hex}_{safe_name}"

    try:
        get_minio_client().put_object(
            bucket_name=config.MINIO_BUCKET,
            object_name=obj_name,
            data=io.BytesIO(content),
            length=len(content),
            content_type=content_type or "application/octet-stream",
        )
    except Exception as e:
        logger.error(f"MinIO upload failed: {e}")
        raise ApiError(
            "Failed to upload file to storage",
            status.HTTP_500_INTERNAL_SERVER_ERROR,
        ) from e

    return object_url(obj_name)


def remove_submission_files(urls: list[str]):
    """Delete uploaded answer files after the submission that owned them was rolled back."""
    if not urls:
        return
    client = get_minio_client()
    for url in urls:
        obj_name = object_name_from_url(url)
        if obj_name is None:
            logger.warning(f"Not removing file outside bucket {config.MINIO_BUCKET}: {url}")
            continue
        try:
            client.remove_object(config.MINIO_BUCKET, obj_name)
        except Exception as e:
            logger.error(f"MinIO cleanup failed for {obj_name}: {e}")
