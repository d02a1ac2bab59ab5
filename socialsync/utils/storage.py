import logging
from pathlib import Path

from socialsync.config import get_settings
from socialsync.errors import WriteError


logger = logging.getLogger(__name__)

MESSAGE_IMAGES_BUCKET = "message-images"
MAX_IMAGE_BYTES = 1 * 1024 * 1024


class LocalBlobStorage:
    """Filesystem-backed bucket store. Uploads overwrite an existing key."""

    def __init__(self, root: str, public_url: str) -> None:
        self._root = Path(root)
        self._public_url = public_url.rstrip("/")

    def public_url(self, bucket: str, key: str) -> str:
        return f"{self._public_url}/{bucket}/{key}"

    async def upload(self, bucket: str, key: str, data: bytes) -> str:
        if "/" in key or key.startswith("."):
            raise ValueError(f"Invalid storage key: {key}")
        target = self._root / bucket / key
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            logger.error(f"Upload of {bucket}/{key} failed: {exc}")
            raise WriteError(f"Upload of {key} failed") from exc
        return self.public_url(bucket, key)


def get_storage() -> LocalBlobStorage:
    settings = get_settings()
    return LocalBlobStorage(settings.storage_dir, settings.storage_public_url)
