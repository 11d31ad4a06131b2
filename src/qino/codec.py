"""Parse/serialize pairs for the two text formats of the protocol.

journal.md:
    Plain markdown split into sections by marker lines

        <!-- context: session/2026-02-02 -->

    Text before the first marker is the "opening" section, which never gets a
    visible marker when written back.

annotations/NNN-slug.md:
    ---
    author: agent
    signal: proposal
    target: other-node
    created: 2026-02-02T10:00:00+00:00
    status: accepted
    resolvedAt: 2026-02-03
    ---
    <markdown body>

Nothing here raises on malformed input: journals degrade to fewer sections,
annotations without front matter parse to None.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from qino.models import OPENING_CONTEXT, VALID_SIGNALS, VALID_STATUSES, AnnotationMeta, JournalSection

if TYPE_CHECKING:
    from collections.abc import Iterable

_MARKER_RE = re.compile(r"^[ \t]*<!-- context: (.+?) -->[ \t]*$", re.MULTILINE)
_FRONT_MATTER_RE = re.compile(r"\A---\n(.*?)\n---\n(.*)\Z", re.DOTALL)
_SLUG_STRIP_RE = re.compile(r"[^a-z0-9\s-]+")
_SLUG_SEP_RE = re.compile(r"[\s-]+")

_DEFAULT_SIGNAL = "reading"
_SLUG_MAX_LEN = 40


# ---------------------------------------------------------------------------
# Journal
# ---------------------------------------------------------------------------

def journal_marker(context: str) -> str:
    return f"<!-- context: {context} -->"


def parse_journal_sections(raw: str) -> list[JournalSection]:
    """Split journal text on context markers. Empty sections are dropped."""
    sections: list[JournalSection] = []
    if not raw:
        return sections

    text = raw.replace("\r\n", "\n")
    context = OPENING_CONTEXT
    last = 0
    for match in _MARKER_RE.finditer(text):
        body = text[last:match.start()].strip()
        if body:
            sections.append(JournalSection(context=context, body=body))
        context = match.group(1).strip()
        last = match.end()

    body = text[last:].strip()
    if body:
        sections.append(JournalSection(context=context, body=body))
    return sections


def sections_to_markdown(sections: Iterable[JournalSection]) -> str:
    """Inverse of parse_journal_sections. Always ends with one newline."""
    parts: list[str] = []
    for section in sections:
        body = section.body.strip()
        if not body:
            continue
        if section.context == OPENING_CONTEXT:
            parts.append(body)
        else:
            parts.append(f"{journal_marker(section.context)}\n\n{body}")
    return "\n\n".join(parts) + "\n"


# ---------------------------------------------------------------------------
# Annotations
# ---------------------------------------------------------------------------

def _front_matter_fields(block: str) -> dict[str, str]:
    fields: dict[str, str] = {}
    for line in block.split("\n"):
        key, sep, value = line.partition(":")
        if sep and key.strip():
            fields[key.strip()] = value.strip()
    return fields


def parse_annotation(raw: str) -> tuple[AnnotationMeta, str] | None:
    """Parse an annotation file into (meta, content), or None without front matter."""
    match = _FRONT_MATTER_RE.match(raw.replace("\r\n", "\n"))
    if match is None:
        return None

    fields = _front_matter_fields(match.group(1))
    signal = fields.get("signal")
    status = fields.get("status")
    meta = AnnotationMeta(
        signal=signal if signal in VALID_SIGNALS else _DEFAULT_SIGNAL,
        created=fields.get("created", ""),
        target=fields.get("target") or None,
        status=status if status in VALID_STATUSES else None,
        resolved_at=fields.get("resolvedAt") or None,
    )
    return meta, match.group(2).strip()


def serialize_annotation(meta: AnnotationMeta, content: str) -> str:
    """Front matter in stable order (author, signal, target, created, status, resolvedAt) + body."""
    lines = [f"{key}: {value}" for key, value in meta.to_dict().items()]
    return "---\n" + "\n".join(lines) + "\n---\n" + content.strip() + "\n"


# ---------------------------------------------------------------------------
# Helpers shared by writers
# ---------------------------------------------------------------------------

def normalize_escapes(text: str) -> str:
    """Turn literal backslash-n / backslash-t pairs (common in tool-call arguments) into real ones."""
    return text.replace("\\n", "\n").replace("\\t", "\t")


def annotation_slug(body: str, max_len: int = _SLUG_MAX_LEN) -> str:
    """Filename slug for an annotation body: lowercase, hyphenated, bounded."""
    text = _SLUG_STRIP_RE.sub("", normalize_escapes(body).lower())
    slug = _SLUG_SEP_RE.sub("-", text).strip("-")
    slug = slug[:max_len].rstrip("-")
    return slug or "note"
