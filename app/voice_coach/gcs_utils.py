import logging
import os
from typing import Optional

from google.api_core.exceptions import NotFound
from google.cloud import storage

from .gcp_auth import get_gcp_credentials, get_project_id_hint


logger = logging.getLogger("uvicorn.error")
_storage_client: Optional[storage.Client] = None

DEFAULT_AUDIO_BUCKET = "call-audio"


def get_default_bucket() -> str:
    bucket = os.getenv("GCS_AUDIO_BUCKET", DEFAULT_AUDIO_BUCKET).strip()
    if not bucket:
        raise RuntimeError("GCS_AUDIO_BUCKET is not set.")
    return bucket


def get_storage_client() -> storage.Client:
    global _storage_client
    if _storage_client is None:
        credentials = get_gcp_credentials()
        project = get_project_id_hint()
        if credentials is not None or project:
            _storage_client = storage.Client(credentials=credentials, project=project)
        else:
            _storage_client = storage.Client()
    return _storage_client


def normalize_blob_path(blob_path: str) -> str:
    return blob_path.lstrip("/")


def build_gs_uri(bucket: str, blob_path: str) -> str:
    return f"gs://{bucket}/{normalize_blob_path(blob_path)}"


def get_blob_size(blob_path: str, bucket: Optional[str] = None) -> Optional[int]:
    """Size in bytes of ``blob_path`` read from a listing narrowed to its name.

    Returns None when the object does not appear in the listing.
    """
    bucket_name = bucket or get_default_bucket()
    clean_path = normalize_blob_path(blob_path)
    client = get_storage_client()
    for blob in client.list_blobs(bucket_name, prefix=clean_path):
        if blob.name == clean_path:
            return int(blob.size or 0)
    return None


def download_blob_bytes(blob_path: str, bucket: Optional[str] = None) -> bytes:
    bucket_name = bucket or get_default_bucket()
    clean_path = normalize_blob_path(blob_path)
    blob = get_storage_client().bucket(bucket_name).blob(clean_path)
    try:
        data = blob.download_as_bytes()
    except NotFound as exc:
        raise FileNotFoundError(f"GCS object not found: {build_gs_uri(bucket_name, clean_path)}") from exc
    logger.info("gcs_download_complete uri=%s bytes=%s", build_gs_uri(bucket_name, clean_path), len(data))
    return data
