"""Content-kind detection and per-kind helpers."""

from __future__ import annotations

import fnmatch
import math
from pathlib import PurePosixPath

from prompt_expert.schemas.content import ContentKind

# Kinds in the order they are preferred when sampling or prioritizing.
KIND_PRIORITY: tuple[ContentKind, ...] = (
    ContentKind.CODE,
    ContentKind.TEXT,
    ContentKind.CONFIG,
    ContentKind.IMAGE,
    ContentKind.DOCUMENT,
    ContentKind.BINARY,
)

_EXTENSION_KINDS: dict[str, ContentKind] = {
    # code
    ".py": ContentKind.CODE,
    ".js": ContentKind.CODE,
    ".mjs": ContentKind.CODE,
    ".cjs": ContentKind.CODE,
    ".ts": ContentKind.CODE,
    ".tsx": ContentKind.CODE,
    ".jsx": ContentKind.CODE,
    ".java": ContentKind.CODE,
    ".kt": ContentKind.CODE,
    ".go": ContentKind.CODE,
    ".rs": ContentKind.CODE,
    ".rb": ContentKind.CODE,
    ".php": ContentKind.CODE,
    ".c": ContentKind.CODE,
    ".h": ContentKind.CODE,
    ".cpp": ContentKind.CODE,
    ".hpp": ContentKind.CODE,
    ".cs": ContentKind.CODE,
    ".swift": ContentKind.CODE,
    ".scala": ContentKind.CODE,
    ".sh": ContentKind.CODE,
    ".bash": ContentKind.CODE,
    ".sql": ContentKind.CODE,
    # prose
    ".md": ContentKind.TEXT,
    ".markdown": ContentKind.TEXT,
    ".txt": ContentKind.TEXT,
    ".rst": ContentKind.TEXT,
    ".adoc": ContentKind.TEXT,
    ".csv": ContentKind.TEXT,
    ".html": ContentKind.TEXT,
    # structured config
    ".json": ContentKind.CONFIG,
    ".yaml": ContentKind.CONFIG,
    ".yml": ContentKind.CONFIG,
    ".toml": ContentKind.CONFIG,
    ".ini": ContentKind.CONFIG,
    ".cfg": ContentKind.CONFIG,
    ".xml": ContentKind.CONFIG,
    ".env": ContentKind.CONFIG,
    # images
    ".png": ContentKind.IMAGE,
    ".jpg": ContentKind.IMAGE,
    ".jpeg": ContentKind.IMAGE,
    ".gif": ContentKind.IMAGE,
    ".webp": ContentKind.IMAGE,
    # documents
    ".pdf": ContentKind.DOCUMENT,
}

_TEXT_FILENAMES = frozenset(
    {"readme", "license", "changelog", "makefile", "dockerfile", "authors", "notice"}
)

# Hash-comment languages; everything else in CODE uses C-style comments.
HASH_COMMENT_EXTENSIONS = frozenset({".py", ".rb", ".sh", ".bash"})

# Rough per-image token cost; base64 length is meaningless for the budget.
IMAGE_TOKEN_ESTIMATE = 1600


def detect_kind(path: str) -> ContentKind:
    """Map a path to its content kind. Unknown extensions are BINARY."""
    p = PurePosixPath(path)
    kind = _EXTENSION_KINDS.get(p.suffix.lower())
    if kind is not None:
        return kind
    if not p.suffix and p.name.lower() in _TEXT_FILENAMES:
        return ContentKind.TEXT
    return ContentKind.BINARY


def is_textual(kind: ContentKind) -> bool:
    """True for kinds whose payload is decoded to UTF-8 text."""
    match kind:
        case ContentKind.TEXT | ContentKind.CODE | ContentKind.CONFIG:
            return True
        case ContentKind.IMAGE | ContentKind.DOCUMENT | ContentKind.BINARY:
            return False


def kind_rank(kind: ContentKind) -> int:
    return KIND_PRIORITY.index(kind)


def estimate_tokens(kind: ContentKind, size: int, chars_per_token: int = 4) -> int:
    """Token estimate for *size* bytes (or characters) of *kind* content."""
    match kind:
        case ContentKind.TEXT | ContentKind.CODE | ContentKind.CONFIG | ContentKind.DOCUMENT:
            return math.ceil(size / chars_per_token)
        case ContentKind.IMAGE:
            return IMAGE_TOKEN_ESTIMATE
        case ContentKind.BINARY:
            return 0


def is_excluded(path: str, patterns: list[str]) -> bool:
    """True when any path segment (or the file name) matches an exclude pattern."""
    parts = PurePosixPath(path).parts
    for pattern in patterns:
        for part in parts:
            if fnmatch.fnmatch(part, pattern):
                return True
    return False
