from __future__ import annotations

import hashlib
import logging
import pathlib
import shutil
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

import yaml

from .assets import (
    ensure_dir,
    mirror_tree,
    prune_dir,
    rewrite_urls_and_copy_assets,
)
from .config import ASSET_DIR_NAME, CACHE_FILE_NAME, SiteConfig, check_destination
from .content import Post, load_posts, tag_index, tag_url
from .markdown_processing import markdown_to_html, prepare_markdown
from .templates import get_layout, make_environment, render, template_fingerprint
from .utils import join_url, read_yaml

log = logging.getLogger(__name__)

CACHE_VERSION = 1
FEED_LIMIT = 20


@dataclass
class BuildReport:
    written: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    tag_pages: int = 0
    static_files: int = 0

    @property
    def post_count(self) -> int:
        return len(self.written) + len(self.skipped)


def output_path(destination: pathlib.Path, url: str, baseurl: str = "") -> pathlib.Path:
    """Where the page for `url` lives under `destination`."""
    if baseurl and (url == baseurl or url.startswith(baseurl + "/")):
        url = url[len(baseurl):]
    rel = url.lstrip("/")
    if rel == "" or rel.endswith("/"):
        return destination / rel / "index.html"
    return destination / rel


def url_dir(url: str) -> str:
    return url.rstrip("/") if url.endswith("/") else url.rsplit("/", 1)[0]


def _load_cache(destination: pathlib.Path) -> Dict[str, str]:
    path = destination / CACHE_FILE_NAME
    try:
        data = read_yaml(path)
    except yaml.YAMLError:
        log.warning("! ignoring unreadable build cache %s", path)
        return {}
    if not isinstance(data, dict) or data.get("version") != CACHE_VERSION:
        return {}
    posts = data.get("posts")
    return dict(posts) if isinstance(posts, dict) else {}


def _save_cache(destination: pathlib.Path, posts: Dict[str, str]) -> None:
    data = {"version": CACHE_VERSION, "posts": posts}
    (destination / CACHE_FILE_NAME).write_text(
        yaml.safe_dump(data, sort_keys=True), encoding="utf-8"
    )


def post_fingerprint(post: Post, body: str, shared: str) -> str:
    h = hashlib.sha256()
    h.update(post.path.read_bytes())
    h.update(b"\0")
    h.update(body.encode("utf-8"))
    h.update(b"\0")
    h.update(shared.encode("utf-8"))
    for link in (post.prev, post.next):
        h.update(b"\0")
        if link:
            h.update(f"{link['title']}\0{link['url']}".encode("utf-8"))
    return h.hexdigest()[:16]


def _write(path: pathlib.Path, text: str) -> None:
    ensure_dir(path.parent)
    path.write_text(text, encoding="utf-8")


def _remove_page(destination: pathlib.Path, page: pathlib.Path) -> None:
    if page.exists():
        page.unlink()
    assets = page.parent / ASSET_DIR_NAME
    if page.name == "index.html" and assets.is_dir():
        shutil.rmtree(assets)
    # prune now-empty parents, never the destination itself
    parent = page.parent
    while parent != destination and destination in parent.parents:
        if any(parent.iterdir()):
            break
        parent.rmdir()
        parent = parent.parent


def site_context(
    config: SiteConfig,
    posts_newest: List[Post],
    tags: Dict[str, List[Post]],
    today: date,
) -> Dict[str, Any]:
    return {
        "title": config.title,
        "description": config.description,
        "url": config.url,
        "baseurl": config.baseurl,
        "extra": config.extra,
        "posts": posts_newest,
        "tags": tags,
        "time": today,
    }


def _render_posts(
    config: SiteConfig,
    env,
    posts: List[Post],
    site: Dict[str, Any],
    old_cache: Dict[str, str],
    incremental: bool,
    report: BuildReport,
) -> Dict[str, str]:
    dest = config.destination_path
    shared = f"{template_fingerprint(config)}:{config.fingerprint()}"
    new_cache: Dict[str, str] = {}

    for post in posts:
        out = output_path(dest, post.url, config.baseurl)
        assets_dir = out.parent / ASSET_DIR_NAME
        used: set = set()
        body = rewrite_urls_and_copy_assets(
            post.body,
            post.path.parent,
            assets_dir,
            url_prefix=url_dir(post.url),
            used=used,
        )
        if out.name == "index.html":
            prune_dir(assets_dir, used)

        fp = post_fingerprint(post, body, shared)
        new_cache[post.url] = fp
        if incremental and old_cache.get(post.url) == fp and out.exists():
            log.debug("= %s unchanged, skip", post.url)
            report.skipped.append(post.url)
            continue

        text, toc = prepare_markdown(body, max_depth=config.toc_depth)
        layout = get_layout(env, config.layouts.get(post.layout, post.layout))
        html = render(
            layout,
            site=site,
            page={"title": post.title, "url": post.url},
            post=post,
            content=markdown_to_html(text),
            toc=toc,
        )
        _write(out, html)
        log.info("✓ wrote %s", post.url)
        report.written.append(post.url)

    return new_cache


def _render_tag_pages(
    config: SiteConfig,
    env,
    tags: Dict[str, List[Post]],
    site: Dict[str, Any],
) -> List[str]:
    dest = config.destination_path
    layout = get_layout(env, config.layouts["tag"])
    urls = []
    for tag, tagged in tags.items():
        url = tag_url(tag, config.baseurl)
        html = render(
            layout,
            site=site,
            page={"title": f"Tag: {tag}", "url": url},
            tag=tag,
            posts=tagged,
        )
        _write(output_path(dest, url, config.baseurl), html)
        urls.append(url)

    tags_root = dest / "tags"
    if tags_root.is_dir():
        current = {output_path(dest, u, config.baseurl).parent.name for u in urls}
        for child in tags_root.iterdir():
            if child.is_dir() and child.name not in current:
                log.info("- removing stale tag page %s", child.name)
                shutil.rmtree(child)
    return urls


def build_site(
    config: SiteConfig,
    clean: bool = False,
    incremental: bool = True,
    today: Optional[date] = None,
    use_git: bool = True,
) -> BuildReport:
    """Render the content store into `config.destination_path`."""
    check_destination(config)
    today = today or date.today()
    dest = config.destination_path
    if clean and dest.exists():
        log.info("- cleaning %s", dest)
        shutil.rmtree(dest)
    ensure_dir(dest)

    env = make_environment(config)
    index_layout = get_layout(env, config.layouts["index"])

    posts = load_posts(config, today=today, use_git=use_git)
    newest = list(reversed(posts))
    tags = tag_index(posts)
    site = site_context(config, newest, tags, today)
    report = BuildReport()

    old_cache = _load_cache(dest)
    new_cache = _render_posts(
        config, env, posts, site, old_cache, incremental, report
    )
    for url in sorted(set(old_cache) - set(new_cache)):
        _remove_page(dest, output_path(dest, url, config.baseurl))
        log.info("- removed %s", url)
        report.removed.append(url)

    tag_urls = _render_tag_pages(config, env, tags, site)
    report.tag_pages = len(tag_urls)

    index_url = join_url(config.baseurl, "/")
    _write(
        dest / "index.html",
        render(
            index_layout,
            site=site,
            page={"title": "", "url": index_url},
            posts=newest,
        ),
    )

    updated = max((p.updated or p.date for p in posts), default=today)
    _write(
        dest / "feed.xml",
        render(
            get_layout(env, "feed.xml"),
            site=site,
            posts=newest[:FEED_LIMIT],
            updated=updated,
        ),
    )

    pages = [{"url": index_url, "lastmod": updated if posts else None}]
    pages += [{"url": p.url, "lastmod": p.updated or p.date} for p in newest]
    pages += [{"url": u, "lastmod": None} for u in tag_urls]
    _write(
        dest / "sitemap.xml",
        render(get_layout(env, "sitemap.xml"), site=site, pages=pages),
    )

    for name, src in zip(config.static_dirs, config.static_paths):
        report.static_files += mirror_tree(src, dest / name)

    _save_cache(dest, new_cache)
    log.info(
        "✓ built %d posts (%d written, %d unchanged), %d tag pages into %s",
        report.post_count,
        len(report.written),
        len(report.skipped),
        report.tag_pages,
        dest,
    )
    return report
