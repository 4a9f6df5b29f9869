"""Parsing and serialization of ``[owner/repo:]path[@version]`` references.

Examples::

    prompts/reviewer.md                      current repository, latest
    prompts/reviewer.md@v1.2                 tag
    prompts/reviewer.md@3a5f8e2              commit
    acme/prompt-bank:experts/security.md@main
"""

from __future__ import annotations

import re

from prompt_expert.errors import InvalidReferenceError
from prompt_expert.schemas.content import ContentReference

DEFAULT_VERSION = "latest"

_REFERENCE_RE = re.compile(
    r"""
    ^
    (?:(?P<owner>[A-Za-z0-9_.-]+)/(?P<repo>[A-Za-z0-9_.-]+):)?
    (?P<path>[A-Za-z0-9_\-/.]+)
    (?:@(?P<version>[A-Za-z0-9_\-/.]+))?
    $
    """,
    re.VERBOSE,
)


def _split_namespace(namespace: str) -> tuple[str, str]:
    owner, sep, repo = namespace.partition("/")
    if not sep or not owner or not repo or "/" in repo:
        raise InvalidReferenceError(
            f"Namespace must look like 'owner/repo', got {namespace!r}"
        )
    return owner, repo


def is_valid_reference(raw: str) -> bool:
    """Cheap syntactic check, used by upfront validation."""
    return bool(raw) and _REFERENCE_RE.match(raw.strip()) is not None


def parse_reference(raw: str, default_namespace: str) -> ContentReference:
    """Parse a path string into a ContentReference.

    Absence of ``owner/repo:`` means *default_namespace*; absence of
    ``@version`` means ``latest``.

    Raises:
        InvalidReferenceError: if the string does not match the grammar.
    """
    text = (raw or "").strip()
    match = _REFERENCE_RE.match(text)
    if match is None:
        raise InvalidReferenceError(f"Invalid path format: {raw!r}")

    if match.group("owner"):
        owner, repo = match.group("owner"), match.group("repo")
    else:
        owner, repo = _split_namespace(default_namespace)

    path = match.group("path").strip("/")
    if not path:
        raise InvalidReferenceError(f"Empty path in reference: {raw!r}")

    return ContentReference(
        namespace=owner,
        collection=repo,
        path=path,
        version=match.group("version") or DEFAULT_VERSION,
    )


def serialize_reference(ref: ContentReference) -> str:
    """Inverse of :func:`parse_reference`, always fully qualified."""
    return f"{ref.namespace}/{ref.collection}:{ref.path}@{ref.version}"


def normalize_reference(raw: str, default_namespace: str) -> str:
    """Fill in the omitted namespace / version of *raw*."""
    return serialize_reference(parse_reference(raw, default_namespace))
