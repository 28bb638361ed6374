"""Dimension extraction: Event -> mapping of dimension name to string value."""

from reflexagent.extractors.dimensions import (
    UNKNOWN,
    DimensionExtractor,
    FileChange,
    extract_author,
    extract_branch,
    extract_commit_count,
    extract_file_changes,
    extract_org_from_repo,
)

__all__ = [
    "UNKNOWN",
    "DimensionExtractor",
    "FileChange",
    "extract_author",
    "extract_branch",
    "extract_commit_count",
    "extract_file_changes",
    "extract_org_from_repo",
]
