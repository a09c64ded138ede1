#!/usr/bin/env python3
from __future__ import annotations

import hashlib
import pathlib
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List

import yaml

from .errors import ConfigError

# ---------- Paths

PACKAGE_DIR = pathlib.Path(__file__).resolve().parent
TEMPLATE_DIR = PACKAGE_DIR / "templates"
THEMES_DIR = TEMPLATE_DIR / "themes"
CONFIG_FILE_NAME = "_config.yml"
CACHE_FILE_NAME = ".sitebuild-cache.yml"

# ---------- Defaults

ASSET_DIR_NAME = "assets"
ASSET_SOURCE_DIR_CANDIDATES = ("assets", "_assets")
MAX_TOC_DEPTH = 3
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 4000
DEFAULT_PERMALINK = "/:year/:month/:day/:title/"
POST_SUFFIXES = (".md", ".markdown")

DEFAULT_LAYOUTS = {
    "post": "post.html",
    "index": "index.html",
    "tag": "tag.html",
}

DEFAULT_CONTAINER = {
    "base_image": "python:3.12-slim",
    "workdir": "/srv/site",
    "manifest": "requirements.in",
    "lockfile": "requirements.txt",
    "install": "pip install --no-cache-dir -r requirements.txt",
}

# Some shared regexes

MD_LINK_IMG = re.compile(
    r'(!?)\[(?P<alt>[^\]]*)\]\((?P<url>[^)\s]+)(?:\s+"[^"]*")?\)'
)
HTML_SRC_OR_HREF = re.compile(
    r'(?P<attr>\bsrc\b|\bhref\b)\s*=\s*([\'"])(?P<url>[^\'"]+)\2'
)
MD_HEADING = re.compile(r'^(?P<hash>#{1,6})\s+(?P<text>.+?)\s*$',
                        re.MULTILINE)
SETEXT_RE = re.compile(
    r'^(?P<text>[^\n]*\S[^\n]*)\n(?P<underline>=+|-+)[ \t]*$', re.MULTILINE
)
HEADING_ID = re.compile(r'\s*\{\s*#(?P<id>[-a-z0-9]+)\s*\}\s*$')
BLOCK_HTML = re.compile(
    r'^(<(?P<tag>(div|table|figure|video|iframe|details|summary|blockquote)\b)'
    r'[\s\S]*?>[\s\S]*?</(?P=tag)>)$',
    re.MULTILINE,
)
FENCE = re.compile(r"(^```.*?$)(.*?)(^```[ \t]*$)",
                   re.MULTILINE | re.DOTALL)
INLINE_MATH = re.compile(r'(?<!\\)\$(.+?)(?<!\\)\$')
BLOCK_MATH = re.compile(
    r'(^\$\$.*?^\$\$)', re.MULTILINE | re.DOTALL
)
SPACES_EOL = re.compile(r'[ \t]+$', re.MULTILINE)
SLUG_RE = re.compile(r"[^a-z0-9-]+")
FRONTMATTER = re.compile(
    r"\A---[ \t]*\r?\n(?P<yaml>.*?)^---[ \t]*\r?$\n?", re.MULTILINE | re.DOTALL
)
POST_FILENAME = re.compile(
    r'^(?P<year>\d{4})-(?P<month>\d{2})-(?P<day>\d{2})-(?P<title>.+)$'
)
PERMALINK_TOKEN = re.compile(r':(year|month|day|title|slug)\b')


@dataclass
class ContainerConfig:
    base_image: str = DEFAULT_CONTAINER["base_image"]
    workdir: str = DEFAULT_CONTAINER["workdir"]
    manifest: str = DEFAULT_CONTAINER["manifest"]
    lockfile: str = DEFAULT_CONTAINER["lockfile"]
    install: str = DEFAULT_CONTAINER["install"]


@dataclass
class SiteConfig:
    root: pathlib.Path
    title: str = "Blog"
    description: str = ""
    url: str = ""
    baseurl: str = ""
    theme: str = "default"
    permalink: str = DEFAULT_PERMALINK
    posts_dir: str = "_posts"
    layouts_dir: str = "_layouts"
    static_dirs: List[str] = field(default_factory=lambda: [ASSET_DIR_NAME])
    destination: str = "_site"
    layouts: Dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_LAYOUTS)
    )
    future: bool = False
    toc_depth: int = MAX_TOC_DEPTH
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    container: ContainerConfig = field(default_factory=ContainerConfig)
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def config_path(self) -> pathlib.Path:
        return self.root / CONFIG_FILE_NAME

    @property
    def posts_path(self) -> pathlib.Path:
        return self.root / self.posts_dir

    @property
    def layouts_path(self) -> pathlib.Path:
        return self.root / self.layouts_dir

    @property
    def destination_path(self) -> pathlib.Path:
        return self.root / self.destination

    @property
    def static_paths(self) -> List[pathlib.Path]:
        return [self.root / d for d in self.static_dirs]

    @property
    def theme_path(self) -> pathlib.Path:
        return THEMES_DIR / self.theme

    def fingerprint(self) -> str:
        """Hash of every setting that affects rendered pages."""
        data = {
            "title": self.title,
            "description": self.description,
            "url": self.url,
            "baseurl": self.baseurl,
            "theme": self.theme,
            "permalink": self.permalink,
            "layouts": self.layouts,
            "toc_depth": self.toc_depth,
            "extra": self.extra,
        }
        dumped = yaml.safe_dump(data, sort_keys=True, default_flow_style=True)
        return hashlib.sha256(dumped.encode("utf-8")).hexdigest()[:16]


_STR_KEYS = (
    "title", "description", "url", "baseurl", "theme", "permalink",
    "posts_dir", "layouts_dir", "destination", "host",
)


def _expect(cond: bool, msg: str) -> None:
    if not cond:
        raise ConfigError(msg)


def _container_config(raw: Any) -> ContainerConfig:
    if raw is None:
        return ContainerConfig()
    _expect(isinstance(raw, dict), "container: expected a mapping")
    unknown = set(raw) - set(DEFAULT_CONTAINER)
    _expect(not unknown, f"container: unknown keys {sorted(unknown)}")
    values = dict(DEFAULT_CONTAINER)
    for k, v in raw.items():
        _expect(
            isinstance(v, str) and v.strip() != "",
            f"container.{k}: expected a non-empty string",
        )
        values[k] = v.strip()
    return ContainerConfig(**values)


def check_destination(cfg: SiteConfig) -> None:
    """Refuse an output directory that overlaps the site sources."""
    dest = cfg.destination_path.resolve()
    root = cfg.root.resolve()
    _expect(
        dest != root and dest not in root.parents,
        f"destination: {cfg.destination!r} would contain the site root {root}",
    )
    for src in [cfg.posts_path, cfg.layouts_path, *cfg.static_paths]:
        src = src.resolve()
        _expect(
            dest != src and src not in dest.parents and dest not in src.parents,
            f"destination: {cfg.destination!r} overlaps source directory {src}",
        )


def site_config_from_dict(root: pathlib.Path, raw: Dict[str, Any]) -> SiteConfig:
    _expect(isinstance(raw, dict), f"{CONFIG_FILE_NAME}: expected a mapping")
    raw = dict(raw)
    kwargs: Dict[str, Any] = {"root": root}

    for k in _STR_KEYS:
        if k in raw:
            v = raw.pop(k)
            _expect(isinstance(v, str), f"{k}: expected a string")
            kwargs[k] = v

    if "baseurl" in kwargs:
        kwargs["baseurl"] = kwargs["baseurl"].rstrip("/")
    if "url" in kwargs:
        kwargs["url"] = kwargs["url"].rstrip("/")
    if "permalink" in kwargs:
        p = kwargs["permalink"]
        _expect(p.startswith("/"), "permalink: must start with '/'")
        _expect(
            bool(PERMALINK_TOKEN.search(p)),
            "permalink: needs at least one of :year :month :day :title :slug",
        )

    if "static_dirs" in raw:
        v = raw.pop("static_dirs")
        if isinstance(v, str):
            v = [v]
        _expect(
            isinstance(v, list) and all(isinstance(x, str) for x in v),
            "static_dirs: expected a list of directory names",
        )
        kwargs["static_dirs"] = v

    if "layouts" in raw:
        v = raw.pop("layouts") or {}
        _expect(
            isinstance(v, dict)
            and all(isinstance(x, str) for x in v.values()),
            "layouts: expected a mapping of name -> template file",
        )
        layouts = dict(DEFAULT_LAYOUTS)
        layouts.update(v)
        kwargs["layouts"] = layouts

    if "future" in raw:
        v = raw.pop("future")
        _expect(isinstance(v, bool), "future: expected true or false")
        kwargs["future"] = v

    if "toc_depth" in raw:
        v = raw.pop("toc_depth")
        _expect(
            isinstance(v, int) and not isinstance(v, bool) and 1 <= v <= 6,
            "toc_depth: expected an integer between 1 and 6",
        )
        kwargs["toc_depth"] = v

    if "port" in raw:
        v = raw.pop("port")
        _expect(
            isinstance(v, int) and not isinstance(v, bool) and 0 < v < 65536,
            f"port: expected an integer in 1..65535, got {v!r}",
        )
        kwargs["port"] = v

    kwargs["container"] = _container_config(raw.pop("container", None))
    kwargs["extra"] = raw

    cfg = SiteConfig(**kwargs)
    _expect(
        cfg.theme_path.is_dir(),
        f"theme: unknown theme {cfg.theme!r}",
    )
    check_destination(cfg)
    return cfg


def load_site_config(root: pathlib.Path | str = ".") -> SiteConfig:
    root = pathlib.Path(root).resolve()
    path = root / CONFIG_FILE_NAME
    if not path.exists():
        return site_config_from_dict(root, {})
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"{path}: invalid YAML: {exc}") from exc
    return site_config_from_dict(root, raw if raw is not None else {})
