"""Hashing and identifier helpers shared by the scrape pipeline."""

from __future__ import annotations

import hashlib
from datetime import date


def compute_content_hash(content: str) -> str:
    """Create a deterministic 128-bit MD5 hex digest after normalizing line endings."""
    normalized = content.replace("\r\n", "\n").replace("\r", "\n")
    return hashlib.md5(normalized.encode("utf-8")).hexdigest()


def build_project_identifier(branch: str, order: int, week_date: date) -> str:
    """Build the stable project key `{branch}_{YYYY_MM_DD}_{order}` (hyphen-free)."""
    return f"{branch}-{week_date.isoformat()}-{order}".replace("-", "_")
