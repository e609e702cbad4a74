"""Image comparator: pixelmatch over Pillow images with an allowed-failure budget."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from PIL import Image, UnidentifiedImageError
from pixelmatch.contrib.PIL import pixelmatch

from visual_test.artifacts.store import ArtifactStore
from visual_test.errors import ComparisonIOError
from visual_test.models.capture import ImageAsset
from visual_test.models.config import VisualTestConfig

logger = logging.getLogger(__name__)


@dataclass
class PixelDiff:
    diff_pixel_count: int
    diff_image: Optional[Image.Image] = None
    dimension_mismatch: bool = False


@dataclass
class ComparisonOutcome:
    passed: bool
    diff_pixel_count: int
    diff_path: Optional[Path] = None
    dimension_mismatch: bool = False


def compare_images(
    baseline: Image.Image,
    current: Image.Image,
    threshold: float = 0.3,
    include_anti_aliasing: bool = True,
) -> PixelDiff:
    """Count pixels whose color distance exceeds ``threshold``.

    Anti-aliased pixels are ignored unless ``include_anti_aliasing`` is set.
    Images of different sizes are not compared pixel by pixel; every pixel of
    the larger image counts as different.
    """
    if baseline.size != current.size:
        bw, bh = baseline.size
        cw, ch = current.size
        logger.warning("Image dimensions differ: baseline %dx%d, current %dx%d", bw, bh, cw, ch)
        return PixelDiff(diff_pixel_count=max(bw * bh, cw * ch), dimension_mismatch=True)

    baseline_rgba = baseline.convert("RGBA")
    current_rgba = current.convert("RGBA")
    diff = Image.new("RGBA", baseline.size)
    count = pixelmatch(
        baseline_rgba,
        current_rgba,
        diff,
        threshold=threshold,
        includeAA=include_anti_aliasing,
    )
    return PixelDiff(diff_pixel_count=count, diff_image=diff)


def _open_png(path: Path) -> Image.Image:
    try:
        with Image.open(path) as img:
            img.load()
            return img.copy()
    except (OSError, UnidentifiedImageError) as e:
        raise ComparisonIOError(f"Cannot read image {path}: {e}") from e


def compare_asset(asset: ImageAsset, config: VisualTestConfig, store: ArtifactStore) -> ComparisonOutcome:
    """Compare the baseline and temp image of ``asset``.

    Writes the diff image only when the number of differing pixels exceeds
    ``image_match_allowed_failures``; a passing comparison removes any diff
    left from an earlier run.
    """
    baseline = _open_png(asset.baseline)
    current = _open_png(asset.temp)

    result = compare_images(
        baseline,
        current,
        threshold=config.image_match_threshold,
        include_anti_aliasing=config.include_anti_aliasing,
    )
    logger.debug("%s: %d pixels differ", asset.file_name, result.diff_pixel_count)

    if not result.dimension_mismatch and result.diff_pixel_count <= config.image_match_allowed_failures:
        store.remove_diff(asset)
        return ComparisonOutcome(passed=True, diff_pixel_count=result.diff_pixel_count)

    diff_path = None
    if result.diff_image is not None:
        store.write_image(asset.diff, result.diff_image)
        diff_path = asset.diff
        logger.info("Wrote diff image %s", diff_path)
    else:
        store.remove_diff(asset)
    return ComparisonOutcome(
        passed=False,
        diff_pixel_count=result.diff_pixel_count,
        diff_path=diff_path,
        dimension_mismatch=result.dimension_mismatch,
    )
