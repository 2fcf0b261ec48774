"""Dropbox path normalization and the tenant root containment guard.

Every path handed to Dropbox that was built from a user-controlled string
(client names, project names, folder names, explicit sync paths) must pass
``assert_inside_root`` first.
"""

from __future__ import annotations

import posixpath
import re
import unicodedata

from dropsync.exceptions import PathOutsideRoot

SEPARATOR = "/"
MAX_FOLDER_NAME_LENGTH = 120

_REPEATED_SEPARATORS = re.compile(r"/{2,}")
_ILLEGAL_FOLDER_CHARS = re.compile(r'[\\/:*?"<>|\x00-\x1f\x7f]')
_WHITESPACE = re.compile(r"\s+")
_SLUG_CHARS = re.compile(r"[^a-z0-9]+")


def normalize_path(value: str | None) -> str:
    """Return ``value`` as an absolute path with single separators and no trailing one."""
    raw = (value or "").strip()
    with_slash = raw if raw.startswith(SEPARATOR) else SEPARATOR + raw
    cleaned = _REPEATED_SEPARATORS.sub(SEPARATOR, with_slash).rstrip(SEPARATOR)
    return cleaned or SEPARATOR


def normalize_root(raw: str | None) -> str:
    """Canonicalize a tenant root. The Dropbox account root itself is refused."""
    normalized = normalize_path(raw)
    if normalized == SEPARATOR:
        raise ValueError("A storage root folder is required")
    return normalized


def join(root: str, *segments: str) -> str:
    """Append segments to ``root`` with separator de-duplication.

    ``..`` segments are kept verbatim; rejecting them is the job of
    ``assert_inside_root``.
    """
    base = normalize_path(root)
    parts = [seg.strip().strip(SEPARATOR) for seg in segments]
    parts = [p for p in parts if p]
    if not parts:
        return base
    return normalize_path(f"{base}/{'/'.join(parts)}")


def _within(root: str, candidate: str) -> bool:
    return candidate == root or candidate.startswith(root + SEPARATOR)


def assert_inside_root(root: str, candidate: str) -> str:
    """Return the normalized candidate, or raise PathOutsideRoot.

    The raw candidate must equal the root or start with ``root + "/"``, and so
    must its form after collapsing ``.`` and ``..`` segments.
    """
    normalized_root = normalize_root(root)
    normalized = normalize_path(candidate)
    resolved = posixpath.normpath(normalized)
    if _within(normalized_root, normalized) and _within(normalized_root, resolved):
        return normalized
    raise PathOutsideRoot(normalized_root, normalized)


def sanitize_folder_name(name: str) -> str:
    """Make free text usable as a single Dropbox folder name."""
    cleaned = _ILLEGAL_FOLDER_CHARS.sub("-", name or "")
    cleaned = _WHITESPACE.sub(" ", cleaned).strip()
    return cleaned[:MAX_FOLDER_NAME_LENGTH].strip()


def slugify(value: str, fallback: str) -> str:
    """ASCII slug for client/project folder names; ``fallback`` when nothing is left."""
    text = unicodedata.normalize("NFKD", value or "").encode("ascii", "ignore").decode("ascii")
    text = _SLUG_CHARS.sub("-", text.lower()).strip("-")
    return text[:MAX_FOLDER_NAME_LENGTH].rstrip("-") or fallback


def client_path(root: str, client_name: str) -> str:
    return join(normalize_root(root), slugify(client_name, "cliente"))


def project_path(root: str, client_name: str, project_name: str) -> str:
    return join(
        normalize_root(root),
        slugify(client_name, "cliente"),
        slugify(project_name, "projeto"),
    )


def parent_path(path: str) -> str:
    """Parent folder of ``path``; the parent of a top-level folder is ``/``."""
    parts = [p for p in normalize_path(path).split(SEPARATOR) if p]
    if len(parts) <= 1:
        return SEPARATOR
    return SEPARATOR + SEPARATOR.join(parts[:-1])
