"""Kind-specific compression applied to items above their warn threshold."""

from __future__ import annotations

import json
import re
from pathlib import PurePosixPath

from prompt_expert.content.kinds import HASH_COMMENT_EXTENSIONS
from prompt_expert.schemas.content import ContentKind

CODE_HARD_CAP = 50_000
CODE_HEAD_CHARS = 25_000
CODE_TAIL_CHARS = 20_000
TEXT_KEEP_CHARS = 40_000
CONFIG_KEEP_CHARS = 20_000

_BLOCK_COMMENT_RE = re.compile(r"/\*.*?\*/", re.DOTALL)
# "//" preceded by ":" is a URL scheme, not a comment.
_LINE_COMMENT_RE = re.compile(r"(?<![:\"'])//.*$", re.MULTILINE)
_HASH_LINE_RE = re.compile(r"^\s*#(?!!).*$", re.MULTILINE)
_BLANK_LINES_RE = re.compile(r"\n\s*\n+")


def strip_comments(content: str, path: str) -> str:
    """Remove comments and blank lines from source code."""
    if PurePosixPath(path).suffix.lower() in HASH_COMMENT_EXTENSIONS:
        stripped = _HASH_LINE_RE.sub("", content)
    else:
        stripped = _BLOCK_COMMENT_RE.sub("", content)
        stripped = _LINE_COMMENT_RE.sub("", stripped)
    return _BLANK_LINES_RE.sub("\n", stripped).strip()


def compress_code(content: str, path: str) -> str:
    compressed = strip_comments(content, path)
    if len(compressed) > CODE_HARD_CAP:
        elided = len(compressed) - CODE_HEAD_CHARS - CODE_TAIL_CHARS
        head = compressed[:CODE_HEAD_CHARS]
        tail = compressed[-CODE_TAIL_CHARS:]
        compressed = f"{head}\n\n/* ... truncated {elided} characters ... */\n\n{tail}"
    return compressed


def compress_text(content: str) -> str:
    if len(content) <= TEXT_KEEP_CHARS:
        return content
    line_count = content.count("\n") + 1
    return (
        content[:TEXT_KEEP_CHARS]
        + f"\n\n[Truncated: showing first {TEXT_KEEP_CHARS} of {len(content)} "
        f"total characters, {line_count} total lines]"
    )


def truncate_head(content: str, max_chars: int) -> str:
    if len(content) <= max_chars:
        return content
    return content[:max_chars] + "\n\n[... truncated ...]"


def compress_config(content: str) -> str:
    """Minify JSON losslessly; anything unparseable falls back to head truncation."""
    try:
        parsed = json.loads(content)
    except ValueError:
        return truncate_head(content, CONFIG_KEEP_CHARS)
    return json.dumps(parsed, separators=(",", ":"), ensure_ascii=False)


def compress(kind: ContentKind, content: str, path: str) -> str:
    match kind:
        case ContentKind.CODE:
            return compress_code(content, path)
        case ContentKind.TEXT:
            return compress_text(content)
        case ContentKind.CONFIG:
            return compress_config(content)
        case ContentKind.IMAGE | ContentKind.DOCUMENT:
            # Opaque payloads are never rewritten.
            return content
        case ContentKind.BINARY:
            raise ValueError(f"Unsupported binary content cannot be compressed: {path}")
