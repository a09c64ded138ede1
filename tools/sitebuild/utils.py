from __future__ import annotations

import hashlib
import logging
import pathlib
import re
import subprocess
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import yaml

from .config import FRONTMATTER, SLUG_RE, SPACES_EOL
from .errors import BuildError

log = logging.getLogger(__name__)


def run(cmd: Sequence[str], cwd=None) -> None:
    log.info("+ %s [cwd=%s]", " ".join(cmd), cwd or pathlib.Path.cwd())
    try:
        subprocess.check_call(list(cmd), cwd=str(cwd) if cwd else None)
    except FileNotFoundError as exc:
        raise BuildError(f"command not found: {cmd[0]}") from exc
    except subprocess.CalledProcessError as exc:
        raise BuildError(
            f"command failed with exit code {exc.returncode}: {' '.join(cmd)}"
        ) from exc


def slugify(s: str) -> str:
    return re.sub(r"-{2,}", "-", SLUG_RE.sub("-", s.lower()).strip("-"))


def natural_key(s: str):
    return [int(t) if t.isdigit() else t for t in re.split(r'(\d+)', s.lower())]


def read_yaml(path: pathlib.Path) -> Dict[str, Any]:
    if path.exists():
        return yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    return {}


def tree_hash(paths: Iterable[pathlib.Path]) -> str:
    """Hash of the names and contents of every file under `paths`."""
    h = hashlib.sha256()
    for base in paths:
        if base.is_file():
            files: List[pathlib.Path] = [base]
        elif base.is_dir():
            files = sorted(p for p in base.rglob("*") if p.is_file())
        else:
            continue
        for p in files:
            h.update(p.relative_to(base.parent).as_posix().encode("utf-8"))
            h.update(b"\0")
            h.update(p.read_bytes())
            h.update(b"\0")
    return h.hexdigest()[:16]


def _norm_text(s: str) -> str:
    return s.replace('\r\n', '\n').replace('\r', '\n').lstrip('\ufeff')


def coerce_date(v) -> Optional[date]:
    if isinstance(v, datetime):
        return v.date()
    if isinstance(v, date):
        return v
    if isinstance(v, str):
        s = v.strip().strip('"').strip("'")
        try:
            return date.fromisoformat(s[:10])
        except ValueError:
            return None
    return None


def parse_frontmatter(text: str) -> Tuple[Optional[Dict[str, Any]], str]:
    """Split `text` into (front matter, body).

    Returns `(None, text)` when there is no front matter block. Raises
    `yaml.YAMLError` when the block is not valid YAML.
    """
    m = FRONTMATTER.match(text)
    if m is None:
        return None, text
    fm = yaml.safe_load(m.group("yaml"))
    return ({} if fm is None else fm), text[m.end():]


def normalize_markdown_light(md: str) -> str:
    md = SPACES_EOL.sub("", md)
    md = re.sub(r'\n{3,}', '\n\n', md)
    md = re.sub(r'([^\n])\n(#{1,6}\s)', r'\1\n\n\2', md)
    return md


def join_url(*parts: str) -> str:
    """Join URL path segments with single slashes, keeping a trailing one."""
    joined = "/".join(p.strip("/") for p in parts if p and p.strip("/"))
    trailing = bool(parts) and parts[-1].endswith("/")
    out = "/" + joined if joined else "/"
    if trailing and not out.endswith("/"):
        out += "/"
    return out
