"""Deterministic classification of synced files.

``categorize`` looks only at its arguments, so reconciling the same listing
twice always produces the same record values.
"""

from __future__ import annotations

import posixpath
import re
from dataclasses import dataclass

VIDEO_EXTENSIONS = frozenset(
    {"mp4", "mov", "avi", "mkv", "mxf", "r3d", "braw", "prores", "m4v", "wmv", "webm", "mts"}
)
PHOTO_EXTENSIONS = frozenset(
    {
        "jpg",
        "jpeg",
        "png",
        "gif",
        "webp",
        "heic",
        "heif",
        "tif",
        "tiff",
        "bmp",
        "raw",
        "arw",
        "cr2",
        "cr3",
        "nef",
        "orf",
        "dng",
    }
)

# Checked in this order; the first hit wins.
_KEYWORD_LABELS = ("FINAL", "EXPORT", "GRADE")
_VERSION_PATTERN = re.compile(r"(?<![A-Z])V(\d+)")

_LABEL_CATEGORIES = {"FINAL": "final", "EXPORT": "final", "GRADE": "grade"}

_PHASE_KEYWORDS: dict[str, tuple[str, ...]] = {
    "pre": ("PRE", "PREPRODUCTION", "PRE-PRODUCTION", "PRE_PRODUCTION", "BRIEF", "PLANNING"),
    "shoot": ("SHOOT", "SHOOTING", "FILMING", "PRODUCTION", "RUSHES", "FOOTAGE", "RAW"),
    "post": ("POST", "POSTPRODUCTION", "POST-PRODUCTION", "POST_PRODUCTION", "EDIT", "EDITING"),
    "final": ("FINAL", "FINALS", "DELIVERY", "DELIVERIES", "ENTREGAS", "EXPORT", "EXPORTS"),
}
_NUMERIC_PHASES = {1: "pre", 2: "shoot", 3: "post", 4: "final"}
_NUMERIC_PREFIX = re.compile(r"^(\d{1,2})(?:[\s_\-.]+(.*))?$")

DEFAULT_PHASE = "other"


@dataclass(frozen=True)
class Classification:
    category: str
    version_label: str | None
    folder_phase: str


def version_label(filename: str) -> str | None:
    upper = filename.upper()
    for label in _KEYWORD_LABELS:
        if label in upper:
            return label
    match = _VERSION_PATTERN.search(upper)
    if match:
        return f"V{match.group(1)}"
    return None


def extension_category(filename: str) -> str:
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    if ext in VIDEO_EXTENSIONS:
        return "video"
    if ext in PHOTO_EXTENSIONS:
        return "photo"
    return "doc"


def _segment_phase(segment: str) -> str | None:
    upper = segment.strip().upper()
    match = _NUMERIC_PREFIX.match(upper)
    number: int | None = None
    if match:
        number = int(match.group(1))
        upper = (match.group(2) or "").strip()
    for phase, keywords in _PHASE_KEYWORDS.items():
        if upper in keywords:
            return phase
    if number is not None:
        return _NUMERIC_PHASES.get(number)
    return None


def folder_phase(full_path: str) -> str:
    """Phase of the deepest directory segment that names one."""
    directory = posixpath.dirname(full_path)
    segments = [s for s in directory.split("/") if s]
    for segment in reversed(segments):
        phase = _segment_phase(segment)
        if phase is not None:
            return phase
    return DEFAULT_PHASE


def categorize(filename: str, full_path: str) -> Classification:
    """Classify a file by name and location."""
    label = version_label(filename)
    category = _LABEL_CATEGORIES.get(label or "", extension_category(filename))
    return Classification(
        category=category,
        version_label=label,
        folder_phase=folder_phase(full_path),
    )
