import logging
from functools import lru_cache

from starlette.concurrency import run_in_threadpool

from app.core.settings import settings
from app.services.storage.adapter import (
    LocalFileSystemAdapter,
    S3StorageAdapter,
    StorageAdapter,
    StoredObject,
)
from app.services.storage.key_generator import KeyGenerator
from app.services.uploads import ValidatedUpload

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_storage_adapter() -> StorageAdapter:
    if settings.storage_provider == "s3":
        return S3StorageAdapter(
            bucket=settings.s3_bucket,
            endpoint_url=settings.s3_endpoint_url,
            access_key=settings.s3_access_key,
            secret_key=settings.s3_secret_key,
            region=settings.s3_region,
            public_base_url=settings.s3_public_base_url,
        )
    return LocalFileSystemAdapter(
        base_path=settings.local_upload_dir,
        base_url=settings.public_base_url,
        signing_key=settings.secret_key,
    )


async def store_upload(
    upload: ValidatedUpload,
    *,
    kind: str,
    owner_refs: dict[str, str] | None = None,
    metadata: dict[str, str] | None = None,
    adapter: StorageAdapter | None = None,
) -> StoredObject:
    adapter = adapter or get_storage_adapter()
    object_key = KeyGenerator.generate_object_key(kind, upload.original_name, owner_refs)
    stored = await run_in_threadpool(
        adapter.put_object,
        object_key,
        upload.data,
        upload.content_type,
        {"original_name": upload.original_name, **(metadata or {})},
    )
    logger.info(
        "File upload",
        extra={
            "operation": "upload",
            "object_key": object_key,
            "file_size": upload.size,
            "success": True,
        },
    )
    return stored


async def delete_stored_object(object_key: str, adapter: StorageAdapter | None = None) -> None:
    adapter = adapter or get_storage_adapter()
    await run_in_threadpool(adapter.delete_object, object_key)
    logger.info("File delete", extra={"operation": "delete", "object_key": object_key, "success": True})


async def signed_download_url(object_key: str, adapter: StorageAdapter | None = None) -> str:
    adapter = adapter or get_storage_adapter()
    return await run_in_threadpool(
        adapter.generate_download_url, object_key, settings.signed_url_expiry_seconds
    )
