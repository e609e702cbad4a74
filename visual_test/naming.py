"""Capture name helpers: OS tags, dasherized names and grouped file names."""

from __future__ import annotations

import platform
import re
from pathlib import PurePosixPath

from visual_test.errors import InvalidCaptureName

_OS_TAGS = {
    "windows": "win",
    "windows_nt": "win",
    "darwin": "mac",
}

_CAMEL_BOUNDARY = re.compile(r"([a-z\d])([A-Z])")
_SEPARATORS = re.compile(r"[ _]+")


def detect_os_tag(system: str | None = None) -> str:
    """Short tag for the operating system baselines are grouped under."""
    name = (system if system is not None else platform.system()).lower()
    return _OS_TAGS.get(name, name)


def dasherize(name: str) -> str:
    """``myButton_large`` -> ``my-button-large``. Path separators are kept."""
    name = _CAMEL_BOUNDARY.sub(r"\1-\2", name)
    return _SEPARATORS.sub("-", name).lower()


def normalize_name(name: str) -> str:
    """Validate a logical capture name and strip a trailing ``.png``."""
    if not name or not name.strip():
        raise InvalidCaptureName("Capture name is empty")
    name = name.replace("\\", "/")
    if name.endswith(".png"):
        name = name[: -len(".png")]
    path = PurePosixPath(name)
    if path.is_absolute() or ".." in path.parts or not path.name:
        raise InvalidCaptureName(f"Invalid capture name: {name!r}")
    return str(path)


def grouped_file_name(name: str, os_tag: str | None) -> str:
    """Resolve the file stem for a capture, prefixing the OS tag if given.

    Only the last path segment is prefixed, so ``shots/home`` on ``mac``
    becomes ``shots/mac-home``.
    """
    path = PurePosixPath(normalize_name(name))
    if not os_tag:
        return str(path)
    return str(path.with_name(f"{os_tag}-{path.name}"))
