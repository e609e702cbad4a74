"""Artifact store: maps capture names to baseline, temp and diff images on disk."""

from __future__ import annotations

import asyncio
import io
import logging
import os
import tempfile
import weakref
from pathlib import Path

from PIL import Image

from visual_test.models.capture import ImageAsset
from visual_test.models.config import VisualTestConfig
from visual_test.naming import grouped_file_name

logger = logging.getLogger(__name__)


class ArtifactStore:
    """Resolves image paths for a capture name and writes them atomically."""

    def __init__(self, config: VisualTestConfig):
        self.config = config
        self.baseline_dir = Path(config.image_directory)
        self.tmp_dir = Path(config.image_tmp_directory)
        self.diff_dir = Path(config.image_diff_directory)
        # Entries drop out once no capture holds or awaits the lock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def file_name(self, name: str) -> str:
        """Logical capture name -> file stem, OS-prefixed when grouping."""
        os_tag = self.config.os_tag if self.config.group_by_os else None
        return grouped_file_name(name, os_tag)

    def asset(self, name: str) -> ImageAsset:
        file_name = self.file_name(name)
        png = f"{file_name}.png"
        return ImageAsset(
            file_name=file_name,
            baseline=self.baseline_dir / png,
            temp=self.tmp_dir / png,
            diff=self.diff_dir / png,
        )

    def lock(self, file_name: str) -> asyncio.Lock:
        """Per-name lock so two captures of one name never race on the baseline."""
        lock = self._locks.get(file_name)
        if lock is None:
            lock = self._locks[file_name] = asyncio.Lock()
        return lock

    def needs_baseline(self, asset: ImageAsset) -> bool:
        return self.config.force_rebuild_baselines or not asset.baseline.exists()

    @staticmethod
    def write_bytes(path: Path, data: bytes) -> None:
        """Write via a sibling temp file and ``os.replace``; creates parent dirs."""
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".part")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("Wrote %d bytes to %s", len(data), path)

    @classmethod
    def write_image(cls, path: Path, image: Image.Image) -> None:
        buf = io.BytesIO()
        image.save(buf, format="PNG")
        cls.write_bytes(path, buf.getvalue())

    def remove_diff(self, asset: ImageAsset) -> None:
        """Drop a diff left by an earlier failing run of the same capture."""
        if asset.diff.exists():
            asset.diff.unlink()
            logger.debug("Removed stale diff %s", asset.diff)
