"""Plain-text helpers for import/export and the review view.

インポートは `---` だけの行で項目を区切り、先頭行が `# ` で始まればタイトルとして扱う。
エクスポートは同じ書式で書き出すので、そのまま再インポートできる。
"""

from __future__ import annotations

import html
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

_SEPARATOR_RE = re.compile(r"^[ \t]*---[ \t]*$", re.MULTILINE)
_LEADING_INT_RE = re.compile(r"^\s*(\d+)")

_BOLD_RE = re.compile(r"\*\*(.+?)\*\*")
_EM_RE = re.compile(r"\*(.+?)\*")
_MARK_RE = re.compile(r"==(.+?)==")
_CODE_RE = re.compile(r"`([^`]+)`")
_BULLET_PREFIX = "• "


@dataclass(frozen=True)
class ImportedChunk:
    title: str | None
    body: str


def split_import_text(text: str) -> list[ImportedChunk]:
    """Split pasted text into items; blank chunks are dropped."""

    chunks: list[ImportedChunk] = []
    for raw in _SEPARATOR_RE.split(text or ""):
        block = raw.strip("\n").strip()
        if not block:
            continue
        first_line, _, rest = block.partition("\n")
        if first_line.startswith("# "):
            title = first_line[2:].strip() or None
            body = rest.strip()
            if not body:
                # タイトル行だけの塊は本文として残す
                body = first_line.strip()
                title = None
            chunks.append(ImportedChunk(title=title, body=body))
        else:
            chunks.append(ImportedChunk(title=None, body=block))
    return chunks


def export_documents(documents: Iterable[Mapping[str, Any]]) -> str:
    """Join stored documents into the import format."""

    parts: list[str] = []
    for doc in documents:
        title = str(doc.get("title") or "").strip()
        body = str(doc.get("content") or "").strip()
        parts.append(f"# {title}\n{body}" if title else body)
    return "\n---\n".join(parts)


def parse_estimated_minutes(label: Any) -> int:
    """`"5 min"` → 5。先頭が数字でないラベルは 0 分として扱う。"""

    match = _LEADING_INT_RE.match(str(label or ""))
    if not match:
        return 0
    return int(match.group(1))


def _render_inline(line: str) -> str:
    line = _BOLD_RE.sub(r'<strong class="font-semibold">\1</strong>', line)
    line = _EM_RE.sub(r'<em class="italic">\1</em>', line)
    line = _MARK_RE.sub(r'<mark class="px-1 rounded">\1</mark>', line)
    return _CODE_RE.sub(r'<code class="px-1 py-0.5 rounded text-sm font-mono">\1</code>', line)


def render_content_html(text: str) -> str:
    """Render the light markup used in item bodies to HTML.

    本文は先に HTML エスケープしてから整形するため、利用者が書いたタグは
    そのまま文字として表示される。空行で段落を分け、`• ` で始まる連続行は
    箇条書きにまとめる。
    """

    escaped = html.escape(text or "", quote=False)
    paragraphs = re.split(r"\n\s*\n", escaped.strip())
    rendered: list[str] = []
    for paragraph in paragraphs:
        if not paragraph.strip():
            continue
        pieces: list[str] = []
        bullets: list[str] = []
        lines: list[str] = []

        def flush_lines() -> None:
            if lines:
                pieces.append('<p class="mb-3">' + "<br>".join(lines) + "</p>")
                lines.clear()

        def flush_bullets() -> None:
            if bullets:
                items = "".join(f'<li class="ml-4">{item}</li>' for item in bullets)
                pieces.append(f'<ul class="list-disc space-y-1 my-2">{items}</ul>')
                bullets.clear()

        for line in paragraph.split("\n"):
            stripped = line.strip()
            if stripped.startswith(_BULLET_PREFIX):
                flush_lines()
                bullets.append(_render_inline(stripped[len(_BULLET_PREFIX):]))
            else:
                flush_bullets()
                lines.append(_render_inline(stripped))
        flush_lines()
        flush_bullets()
        rendered.extend(pieces)
    return "".join(rendered)
