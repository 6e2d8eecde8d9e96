"""Photo upload storage."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

from starlette.concurrency import run_in_threadpool

from fieldpost.core.config import Settings
from fieldpost.core.errors import PersistenceError
from fieldpost.services.validation import validate_file

logger = logging.getLogger(__name__)


class PathValidationError(Exception):
    """Path resolved outside the storage root."""


@dataclass(frozen=True)
class PhotoUpload:
    """An uploaded photo read into memory."""

    filename: str
    content_type: str | None
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    def validate(self) -> None:
        validate_file(self.filename, self.content_type, self.size)


def validate_path(path: str | Path, allowed_root: str | Path) -> Path:
    """Validate that a path is within the allowed root directory.

    Args:
        path: The path to validate
        allowed_root: The root directory that path must be within

    Returns:
        The canonicalized path

    Raises:
        PathValidationError: If path is outside allowed root or invalid
    """
    try:
        canonical_path = Path(path).resolve()
        canonical_root = Path(allowed_root).resolve()
    except (ValueError, OSError) as e:
        raise PathValidationError(f"Invalid path '{path}': {e}") from e

    if not canonical_path.is_relative_to(canonical_root):
        raise PathValidationError(f"Path '{path}' is outside allowed root '{allowed_root}'")
    return canonical_path


class PhotoStore(ABC):
    """Stores photos and returns publicly reachable URLs."""

    @abstractmethod
    async def save(self, files: list[PhotoUpload]) -> list[str]:
        """Persist ``files`` in order and return one URL per file.

        Raises:
            PersistenceError: If any file could not be stored
        """
        ...


class LocalPhotoStore(PhotoStore):
    """Writes photos under ``root`` and serves them from ``base_url``."""

    def __init__(self, root: str | Path, base_url: str):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    @classmethod
    def from_settings(cls, settings: Settings) -> "LocalPhotoStore":
        return cls(settings.upload_dir, f"{settings.public_base_url.rstrip('/')}/uploads")

    def _write(self, files: list[PhotoUpload]) -> list[str]:
        self.root.mkdir(parents=True, exist_ok=True)
        urls = []
        for upload in files:
            stored_name = f"{uuid4().hex}-{upload.filename}"
            target = validate_path(self.root / stored_name, self.root)
            target.write_bytes(upload.data)
            urls.append(f"{self.base_url}/{stored_name}")
        return urls

    async def save(self, files: list[PhotoUpload]) -> list[str]:
        if not files:
            return []
        try:
            return await run_in_threadpool(self._write, files)
        except (OSError, PathValidationError) as e:
            logger.error("Failed to store %d photo(s): %s", len(files), e)
            raise PersistenceError("Failed to store photos") from e
