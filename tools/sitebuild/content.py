from __future__ import annotations

import hashlib
import logging
import pathlib
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional

import yaml

from .config import (
    FENCE,
    MD_HEADING,
    PERMALINK_TOKEN,
    POST_FILENAME,
    POST_SUFFIXES,
    SiteConfig,
)
from .errors import ContentError
from .git import NO_DATES, GitDates, git_commit_dates
from .utils import (
    _norm_text,
    coerce_date,
    join_url,
    natural_key,
    parse_frontmatter,
    slugify,
)

log = logging.getLogger(__name__)

_RESERVED_KEYS = {
    "title", "date", "tags", "tag", "layout", "excerpt", "published",
    "slug", "updated", "last_modified_at",
}


@dataclass
class Post:
    path: pathlib.Path
    rel_key: str
    slug: str
    title: str
    date: date
    body: str
    tags: List[str] = field(default_factory=list)
    layout: str = "post"
    excerpt: str = ""
    published: bool = True
    updated: Optional[date] = None
    data: Dict[str, Any] = field(default_factory=dict)
    url: str = ""
    prev: Optional[Dict[str, str]] = None
    next: Optional[Dict[str, str]] = None

    @property
    def identity(self):
        return (self.date, self.slug)

    def link(self) -> Dict[str, str]:
        return {"title": self.title, "url": self.url}


def parse_tags(raw: Any) -> List[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        items = re.split(r"[,\s]+", raw)
    elif isinstance(raw, (list, tuple, set)):
        items = [str(x) for x in raw if x is not None]
    else:
        items = [str(raw)]
    seen = set()
    tags: List[str] = []
    for t in items:
        t = t.strip()
        if t and t not in seen:
            seen.add(t)
            tags.append(t)
    return tags


def first_paragraph(body: str) -> str:
    text = FENCE.sub("", body)
    for block in re.split(r"\n\s*\n", text):
        block = block.strip()
        if not block or MD_HEADING.match(block):
            continue
        if block.startswith(("<", "|", "![", "$$")):
            continue
        return " ".join(line.strip() for line in block.splitlines())
    return ""


def permalink(post: Post, pattern: str, baseurl: str = "") -> str:
    values = {
        "year": f"{post.date.year:04d}",
        "month": f"{post.date.month:02d}",
        "day": f"{post.date.day:02d}",
        "title": post.slug,
        "slug": post.slug,
    }
    path = PERMALINK_TOKEN.sub(lambda m: values[m.group(1)], pattern)
    if not path.endswith(("/", ".html")):
        path += "/"
    return join_url(baseurl, path)


def _filename_parts(path: pathlib.Path):
    m = POST_FILENAME.match(path.stem)
    if not m:
        return None, path.stem
    try:
        d = date(int(m["year"]), int(m["month"]), int(m["day"]))
    except ValueError as exc:
        raise ContentError(path, f"invalid date in file name: {exc}") from exc
    return d, m["title"]


def load_post(
    path: pathlib.Path,
    config: SiteConfig,
    use_git: bool = True,
) -> Post:
    try:
        text = _norm_text(path.read_text(encoding="utf-8"))
    except UnicodeDecodeError as exc:
        raise ContentError(
            path, f"not valid UTF-8: {exc.reason} at byte {exc.start}"
        ) from exc
    except OSError as exc:
        raise ContentError(path, f"cannot read: {exc.strerror or exc}") from exc
    try:
        fm, body = parse_frontmatter(text)
    except yaml.YAMLError as exc:
        raise ContentError(path, f"invalid front matter: {exc}") from exc
    if fm is None:
        fm = {}
    if not isinstance(fm, dict):
        raise ContentError(path, "front matter must be a mapping")

    file_date, title_part = _filename_parts(path)
    git_dates: GitDates = (
        git_commit_dates(config.root, path) if use_git else NO_DATES
    )

    if fm.get("date") is not None:
        post_date = coerce_date(fm["date"])
        if post_date is None:
            raise ContentError(path, f"invalid date {fm['date']!r}")
    else:
        post_date = (
            file_date
            or git_dates.created
            or datetime.fromtimestamp(path.stat().st_mtime).date()
        )

    published = fm.get("published", True)
    if not isinstance(published, bool):
        raise ContentError(path, "published: expected true or false")

    slug = slugify(str(fm.get("slug") or title_part)) or "post"
    title = str(fm.get("title") or title_part.replace("-", " ").title())

    updated = coerce_date(fm.get("updated") or fm.get("last_modified_at"))
    if updated is None and git_dates.modified and git_dates.modified != post_date:
        updated = git_dates.modified

    post = Post(
        path=path,
        rel_key=path.relative_to(config.posts_path).with_suffix("").as_posix(),
        slug=slug,
        title=title,
        date=post_date,
        body=body,
        tags=parse_tags(fm.get("tags", fm.get("tag"))),
        layout=str(fm.get("layout") or "post"),
        excerpt=str(fm.get("excerpt") or first_paragraph(body)),
        published=published,
        updated=updated,
        data={k: v for k, v in fm.items() if k not in _RESERVED_KEYS},
    )
    post.url = permalink(post, config.permalink, config.baseurl)
    return post


def discover_post_files(posts_dir: pathlib.Path) -> List[pathlib.Path]:
    if not posts_dir.is_dir():
        return []
    found = []
    for p in posts_dir.rglob("*"):
        if not p.is_file() or p.suffix.lower() not in POST_SUFFIXES:
            continue
        rel = p.relative_to(posts_dir)
        if any(part.startswith(("_", ".")) for part in rel.parts):
            continue
        found.append(p)
    return found


def link_neighbours(posts: List[Post]) -> None:
    """Set prev (older) / next (newer) on posts sorted oldest first."""
    for i, p in enumerate(posts):
        p.prev = posts[i - 1].link() if i > 0 else None
        p.next = posts[i + 1].link() if i < len(posts) - 1 else None


def load_posts(
    config: SiteConfig,
    today: Optional[date] = None,
    use_git: bool = True,
) -> List[Post]:
    """Load published posts, oldest first, with neighbours linked."""
    if not config.posts_path.is_dir():
        log.info("- no %s/ in %s", config.posts_dir, config.root)
        return []

    today = today or date.today()
    posts: List[Post] = []
    by_url: Dict[str, Post] = {}
    for path in discover_post_files(config.posts_path):
        post = load_post(path, config, use_git=use_git)
        if not post.published:
            log.info("- skipping unpublished %s", post.rel_key)
            continue
        if post.date > today and not config.future:
            log.info("- skipping future-dated %s (%s)", post.rel_key, post.date)
            continue
        clash = by_url.get(post.url)
        if clash is not None:
            raise ContentError(
                path, f"permalink {post.url} already used by {clash.path.name}"
            )
        by_url[post.url] = post
        posts.append(post)

    posts.sort(key=lambda p: (p.date, natural_key(p.rel_key)))
    link_neighbours(posts)
    return posts


def tag_slug(tag: str) -> str:
    """URL segment for `tag`. Tags without letters or digits get a hash."""
    return slugify(tag) or "tag-" + hashlib.sha1(tag.encode("utf-8")).hexdigest()[:8]


def tag_url(tag: str, baseurl: str = "") -> str:
    return join_url(baseurl, "tags", tag_slug(tag), "/")


def tag_index(posts: List[Post]) -> Dict[str, List[Post]]:
    """Map each tag to its posts, newest first. Tags sorted by name.

    Tags sharing a slug share a page, listed under the first spelling.
    """
    spelling: Dict[str, str] = {}
    index: Dict[str, List[Post]] = {}
    names = {t for p in posts for t in p.tags}
    for t in sorted(names, key=lambda t: (natural_key(t), t)):
        name = spelling.setdefault(tag_slug(t), t)
        if name != t:
            log.warning("! tags %r and %r share %s, merged", name, t, tag_url(t))
        index.setdefault(name, [])
    for p in posts:
        for name in dict.fromkeys(spelling[tag_slug(t)] for t in p.tags):
            index[name].append(p)
    return {
        t: sorted(ps, key=lambda p: (p.date, natural_key(p.rel_key)), reverse=True)
        for t, ps in index.items()
    }
