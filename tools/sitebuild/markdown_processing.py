from __future__ import annotations

import re
from typing import Any, Callable, Dict, List, Tuple

import markdown

from .config import (
    BLOCK_HTML,
    BLOCK_MATH,
    FENCE,
    HEADING_ID,
    INLINE_MATH,
    MAX_TOC_DEPTH,
    MD_HEADING,
    SETEXT_RE,
)
from .utils import normalize_markdown_light, slugify

MARKDOWN_EXTENSIONS = ["fenced_code", "tables", "attr_list", "footnotes"]

MATH_SLOT = re.compile(r"\x00(\d+)\x00")


def pad_block_html(md: str) -> str:
    """Put blank lines around one-line HTML blocks so Markdown keeps them raw."""
    lines = md.splitlines()
    out: List[str] = []
    fence = None
    for line, following in zip(lines, lines[1:] + [""]):
        marker = line.lstrip()[:3]
        if marker in ("```", "~~~"):
            fence = None if fence == marker else (fence or marker)
        if fence is None and BLOCK_HTML.match(line):
            if out and out[-1]:
                out.append("")
            out.append(line)
            if following.strip():
                out.append("")
        else:
            out.append(line)
    text = "\n".join(out)
    if md.endswith("\n") and not text.endswith("\n"):
        text += "\n"
    return text


def map_noncode(md: str, fn: Callable[[str], str]) -> str:
    """Apply `fn` to everything between fenced code blocks."""
    out: List[str] = []
    pos = 0
    for fence in FENCE.finditer(md):
        out += [fn(md[pos:fence.start()]), fence.group(0)]
        pos = fence.end()
    out.append(fn(md[pos:]))
    return "".join(out)


def map_noncode_nonmath(md: str, fn: Callable[[str], str]) -> str:
    """Like `map_noncode`, with `$...$` and `$$...$$` spans held out too."""

    def outside_math(chunk: str) -> str:
        held: List[str] = []

        def hold(m):
            held.append(m.group(0))
            return f"\x00{len(held) - 1}\x00"

        chunk = INLINE_MATH.sub(hold, BLOCK_MATH.sub(hold, chunk))
        return MATH_SLOT.sub(lambda m: held[int(m.group(1))], fn(chunk))

    return map_noncode(md, outside_math)


def slugify_heading(text: str) -> str:
    return slugify("-".join(text.split())) or "section"


def add_heading_ids(
    md_text: str, used_ids: Dict[str, int], max_depth: int = MAX_TOC_DEPTH
) -> Tuple[str, List[Dict[str, Any]]]:
    """Add `{#id}` to headings and collect ToC items.

    `used_ids` is shared across calls so ids stay unique within one page.
    """
    toc: List[Dict[str, Any]] = []

    def unique_id(base: str) -> str:
        n = used_ids.get(base, 0)
        used_ids[base] = n + 1
        return base if n == 0 else f"{base}-{n}"

    # Setext -> ATX, ids are assigned in the ATX pass below
    def _setext_to_atx(m):
        level = 1 if m.group("underline").startswith("=") else 2
        return f"{'#' * level} {m.group('text').strip()}"

    text = SETEXT_RE.sub(_setext_to_atx, md_text)

    lines = text.splitlines()
    for i, line in enumerate(lines):
        m = MD_HEADING.match(line)
        if not m:
            continue
        level = len(m.group("hash"))
        head_txt = m.group("text").strip()
        existing = HEADING_ID.search(head_txt)
        if existing:
            hid = existing.group("id")
            head_txt = HEADING_ID.sub("", head_txt)
            used_ids[hid] = used_ids.get(hid, 0) + 1
        else:
            hid = unique_id(slugify_heading(head_txt))
            lines[i] = f"{'#' * level} {head_txt} {{#{hid}}}"
        if level <= max_depth:
            toc.append({"level": level, "text": head_txt, "id": hid})

    text = "\n".join(lines)
    if md_text.endswith("\n") and not text.endswith("\n"):
        text += "\n"
    return text, toc


def prepare_markdown(
    md_text: str, max_depth: int = MAX_TOC_DEPTH
) -> Tuple[str, List[Dict[str, Any]]]:
    """Pad block HTML, anchor headings and tidy whitespace.

    Code fences and math spans are left untouched.
    """
    used_ids: Dict[str, int] = {}
    toc: List[Dict[str, Any]] = []

    def _ids(s):
        s2, items = add_heading_ids(s, used_ids, max_depth=max_depth)
        toc.extend(items)
        return s2

    text = map_noncode(md_text, pad_block_html)
    text = map_noncode_nonmath(text, _ids)
    text = map_noncode_nonmath(text, normalize_markdown_light)
    return text, toc


def markdown_to_html(md_text: str) -> str:
    md = markdown.Markdown(
        extensions=MARKDOWN_EXTENSIONS, output_format="html"
    )
    return md.convert(md_text)
