"""Import a local folder of images into the gallery store.

    python -m printshop.sync ./gallery-source --prefix prints/
"""
from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path
from typing import List, Optional

from printshop.config import load_settings, setup_logging
from printshop.gallery import IMAGE_EXTENSIONS, GalleryError, PhotoStore, join_key

logger = logging.getLogger(__name__)


def walk(root: Path) -> List[Path]:
    files: List[Path] = []
    for dirpath, _, names in os.walk(root):
        for name in names:
            if name.startswith("."):
                continue
            p = Path(dirpath) / name
            if p.suffix.lower() in IMAGE_EXTENSIONS:
                files.append(p)
    files.sort()
    return files


def sync_folder(store: PhotoStore, source: Path, prefix: str) -> int:
    """Copy every image under ``source`` into ``store``; returns the number copied."""
    files = walk(source)
    if not files:
        logger.info("No files to import in %s", source)
        return 0

    logger.info("Importing %d file(s) from %s into %s", len(files), source, prefix)
    count = 0
    for f in files:
        key = join_key(prefix, f.relative_to(source).as_posix())
        try:
            store.import_file(f, key)
        except (GalleryError, OSError) as e:
            logger.error("FAILED: %s (%s)", key, e)
            continue
        logger.info("imported: %s", key)
        count += 1
    logger.info("Done. Imported: %d / %d", count, len(files))
    return count


def main(argv: Optional[List[str]] = None) -> int:
    settings = load_settings()
    ap = argparse.ArgumentParser(description="Import images into the print gallery")
    ap.add_argument("source", nargs="?", default="./gallery-source", help="Local folder with images")
    ap.add_argument("--prefix", default=settings.gallery_prefix, help="Key prefix inside the gallery")
    ap.add_argument("--gallery-dir", default=settings.gallery_dir, help="Gallery store directory")
    args = ap.parse_args(argv)

    setup_logging(settings.log_level)

    source = Path(args.source)
    if not source.is_dir():
        raise SystemExit(f"Local folder not found: {source}")

    store = PhotoStore(args.gallery_dir, public_base_url=settings.public_url, prefix=args.prefix)
    sync_folder(store, source, args.prefix)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
