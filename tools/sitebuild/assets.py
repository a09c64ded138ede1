from __future__ import annotations

import hashlib
import logging
import pathlib
import re
import shutil
from typing import Iterable, List, Optional, Set

from .config import (
    ASSET_DIR_NAME,
    ASSET_SOURCE_DIR_CANDIDATES,
    HTML_SRC_OR_HREF,
    MD_LINK_IMG,
)
from .utils import slugify

log = logging.getLogger(__name__)

_SCHEME = re.compile(r'^[a-zA-Z][a-zA-Z0-9+.-]*:')


def ensure_dir(p: pathlib.Path) -> None:
    p.mkdir(parents=True, exist_ok=True)


def _sha(path: pathlib.Path) -> str:
    return hashlib.sha256(path.read_bytes()).hexdigest()


def is_relative_local(url: str) -> bool:
    if not url:
        return False
    if _SCHEME.match(url):
        return False
    if url.startswith(("#", "/", "?")):
        return False
    return True


def copy_asset_make_name(
    src: pathlib.Path, out_assets_dir: pathlib.Path
) -> str:
    data = src.read_bytes()
    h = hashlib.sha256(data).hexdigest()[:8]
    safe_stem = slugify(src.stem) or "asset"
    fname = f"{safe_stem}.{h}{src.suffix.lower()}"
    ensure_dir(out_assets_dir)
    dest = out_assets_dir / fname
    if not dest.exists():
        dest.write_bytes(data)
    return fname


def resolve_asset_candidate(
    base_dir: pathlib.Path, url: str
) -> Optional[pathlib.Path]:
    url = url.split("#", 1)[0].split("?", 1)[0]
    if not url:
        return None
    cand = (base_dir / url).resolve()
    if cand.is_file():
        return cand
    for adir in ASSET_SOURCE_DIR_CANDIDATES:
        cand2 = (base_dir / adir / url).resolve()
        if cand2.is_file():
            return cand2
    return None


def rewrite_urls_and_copy_assets(
    text: str,
    base_dir: pathlib.Path,
    out_assets_dir: pathlib.Path,
    url_prefix: str,
    used: Optional[Set[str]] = None,
) -> str:
    """
    Rewrite markdown/HTML URLs that point at local files next to a post:
    - look the file up relative to the post (or its assets/ dir)
    - copy it into out_assets_dir under a content-hashed name
    - point the link at "<url_prefix>/assets/<name>"

    Names of copied files are added to `used`. Links to posts or to
    missing files are left alone.
    """
    if used is None:
        used = set()

    def _swap(url: str) -> Optional[str]:
        if not is_relative_local(url):
            return None
        src = resolve_asset_candidate(base_dir, url)
        if src is None or src.suffix.lower() in (".md", ".markdown"):
            return None
        fname = copy_asset_make_name(src, out_assets_dir)
        used.add(fname)
        return f"{url_prefix.rstrip('/')}/{ASSET_DIR_NAME}/{fname}"

    def _md_repl(m):
        new = _swap(m.group("url"))
        if new is None:
            return m.group(0)
        return f"{m.group(1)}[{m.group('alt')}]({new})"

    def _html_repl(m):
        new = _swap(m.group("url"))
        if new is None:
            return m.group(0)
        return f'{m.group("attr")}="{new}"'

    text = MD_LINK_IMG.sub(_md_repl, text)
    text = HTML_SRC_OR_HREF.sub(_html_repl, text)
    return text


def prune_dir(directory: pathlib.Path, keep: Iterable[str]) -> List[str]:
    """Delete files directly in `directory` whose names are not in `keep`."""
    if not directory.is_dir():
        return []
    keep = set(keep)
    removed = []
    for p in directory.iterdir():
        if p.is_file() and p.name not in keep:
            p.unlink()
            removed.append(p.name)
    if not any(directory.iterdir()):
        directory.rmdir()
    return removed


def _walk_files(base: pathlib.Path) -> Set[str]:
    return {
        p.relative_to(base).as_posix() for p in base.rglob("*") if p.is_file()
    }


def mirror_tree(src_dir: pathlib.Path, dst_dir: pathlib.Path) -> int:
    """Make dst_dir a copy of src_dir. Returns the number of files copied."""
    if not src_dir.exists():
        if dst_dir.exists():
            shutil.rmtree(dst_dir)
        return 0

    src_files = _walk_files(src_dir)
    dst_files = _walk_files(dst_dir) if dst_dir.exists() else set()
    ensure_dir(dst_dir)

    copied = 0
    for rel in sorted(src_files):
        s = src_dir / rel
        d = dst_dir / rel
        if d.exists() and _sha(s) == _sha(d):
            continue
        d.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(s, d)
        copied += 1

    for rel in sorted(dst_files - src_files):
        (dst_dir / rel).unlink()
        log.debug("- removed stale %s", rel)

    # drop directories emptied by the removals above
    for d in sorted(dst_dir.rglob("*"), reverse=True):
        if d.is_dir() and not any(d.iterdir()):
            d.rmdir()
    return copied
