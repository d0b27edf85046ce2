"""Photo store backed by a local directory.

Keys are posix paths relative to the store root ("prints/cliff-01.jpg"),
the same shape as object keys in a bucket.
"""
from __future__ import annotations

import logging
import os
import posixpath
import re
import secrets
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, List, Optional

from werkzeug.utils import secure_filename

from printshop.thumbnails import THUMB_PREFIX, render_thumbnail, thumbnail_key

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".gif", ".tif", ".tiff"}
PLACEHOLDER_URL = "/static/img/placeholder.svg"


class GalleryError(Exception):
    pass


class InvalidKey(GalleryError):
    pass


class PhotoNotFound(GalleryError):
    pass


class UnsupportedFile(GalleryError):
    pass


@dataclass(frozen=True)
class Photo:
    key: str
    url: str
    last_modified: str
    size: int

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "url": self.url,
            "lastModified": self.last_modified,
            "size": self.size,
        }


def normalize_key(key: str) -> str:
    """Clean a client-supplied key, rejecting anything that leaves the root."""
    k = (key or "").replace("\\", "/").strip().lstrip("/")
    parts = k.split("/")
    if not k or any(p in ("", ".", "..") for p in parts):
        raise InvalidKey(f"Invalid photo key: {key!r}")
    return k


class PhotoStore:
    def __init__(self, root: str, public_base_url: str = "", prefix: str = "prints/",
                 media_url: str = "/media/"):
        self.root = Path(root)
        self.public_base_url = (public_base_url or "").rstrip("/")
        self.prefix = prefix if prefix.endswith("/") else prefix + "/"
        self.media_url = media_url

    # ---------- paths ----------
    def path_for(self, key: str) -> Path:
        k = normalize_key(key)
        base = self.root.resolve()
        p = (base / k).resolve()
        if base != p and base not in p.parents:
            raise InvalidKey(f"Invalid photo key: {key!r}")
        return p

    def open_path(self, key: str) -> Path:
        p = self.path_for(key)
        if not p.is_file():
            raise PhotoNotFound(key)
        return p

    def public_url(self, key: str) -> str:
        if re.match(r"^https?://", key or ""):
            return key
        k = (key or "").lstrip("/")
        if not k:
            return PLACEHOLDER_URL
        if self.public_base_url:
            return f"{self.public_base_url}/{k}"
        return f"{self.media_url.rstrip('/')}/{k}"

    def thumbnail_url(self, key: str) -> str:
        tk = thumbnail_key(key)
        try:
            if self.path_for(tk).is_file():
                return self.public_url(tk)
        except InvalidKey:
            pass
        return self.public_url(key)

    # ---------- listing ----------
    def list_keys(self, prefix: Optional[str] = None) -> List[str]:
        prefix = self.prefix if prefix is None else prefix
        if not self.root.is_dir():
            logger.warning("Gallery directory %s does not exist. Showing an empty gallery.", self.root)
            return []

        keys: List[str] = []
        try:
            for dirpath, _, files in os.walk(self.root):
                for fn in files:
                    full = Path(dirpath) / fn
                    key = full.relative_to(self.root).as_posix()
                    if key.startswith(THUMB_PREFIX) or fn.startswith("."):
                        continue
                    if full.suffix.lower() not in IMAGE_EXTENSIONS:
                        continue
                    if key.startswith(prefix):
                        keys.append(key)
        except OSError:
            logger.exception("Failed to list gallery directory %s", self.root)
            return []
        keys.sort()
        return keys

    def list_photos(self) -> List[Photo]:
        photos: List[Photo] = []
        for key in self.list_keys(prefix=""):
            try:
                st = (self.root / key).stat()
            except OSError:
                continue
            photos.append(
                Photo(
                    key=key,
                    url=self.public_url(key),
                    last_modified=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc).isoformat(),
                    size=st.st_size,
                )
            )
        return photos

    # ---------- writes ----------
    def save(self, stream: BinaryIO, filename: str, prefix: Optional[str] = None) -> Photo:
        """Store an uploaded image under a random name and render its thumbnail."""
        safe = secure_filename(filename or "")
        ext = os.path.splitext(safe)[1].lower() or ".jpg"
        if ext not in IMAGE_EXTENSIONS:
            raise UnsupportedFile(f"Unsupported file type: {ext}")

        key = f"{self.prefix if prefix is None else prefix}{secrets.token_hex(16)}{ext}"
        dest = self.path_for(key)
        dest.parent.mkdir(parents=True, exist_ok=True)
        with open(dest, "wb") as f:
            shutil.copyfileobj(stream, f)

        self._render_thumbnail(key, dest)
        st = dest.stat()
        logger.info("Stored photo %s (%d bytes)", key, st.st_size)
        return Photo(
            key=key,
            url=self.public_url(key),
            last_modified=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc).isoformat(),
            size=st.st_size,
        )

    def import_file(self, src: Path, key: str) -> str:
        """Copy a local file into the store under ``key`` (used by the sync command)."""
        dest = self.path_for(key)
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(src, dest)
        self._render_thumbnail(normalize_key(key), dest)
        return normalize_key(key)

    def delete(self, key: str) -> None:
        p = self.open_path(key)
        p.unlink()
        try:
            thumb = self.path_for(thumbnail_key(normalize_key(key)))
            if thumb.is_file():
                thumb.unlink()
        except (InvalidKey, OSError):
            logger.warning("Could not remove thumbnail for %s", key)
        logger.info("Deleted photo %s", key)

    def _render_thumbnail(self, key: str, src: Path) -> None:
        try:
            render_thumbnail(src, self.path_for(thumbnail_key(key)))
        except Exception as e:
            logger.warning("Thumbnail rendering failed for %s: %s", key, e)


def join_key(prefix: str, rel: str) -> str:
    key = posixpath.join(prefix, rel.replace("\\", "/"))
    return re.sub(r"/+", "/", key).lstrip("/")
