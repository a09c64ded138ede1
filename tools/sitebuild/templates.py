from __future__ import annotations

from datetime import date, datetime
from typing import Any

from jinja2 import (
    ChoiceLoader,
    Environment,
    FileSystemLoader,
    Template,
    TemplateError,
    TemplateNotFound,
    select_autoescape,
)

from .config import SiteConfig, TEMPLATE_DIR
from .content import tag_url
from .errors import BuildError
from .utils import join_url, slugify, tree_hash


def _as_date(v: Any):
    if isinstance(v, datetime):
        return v.date()
    return v


def date_to_string(v: Any, fmt: str = "%d %b %Y") -> str:
    v = _as_date(v)
    return v.strftime(fmt) if isinstance(v, date) else str(v or "")


def date_to_xmlschema(v: Any) -> str:
    v = _as_date(v)
    if isinstance(v, date):
        return f"{v.isoformat()}T00:00:00+00:00"
    return str(v or "")


def make_environment(config: SiteConfig) -> Environment:
    """Jinja2 environment: site layouts first, then the packaged theme."""
    loaders = []
    if config.layouts_path.is_dir():
        loaders.append(FileSystemLoader(str(config.layouts_path)))
    loaders.append(FileSystemLoader(str(config.theme_path)))

    env = Environment(
        loader=ChoiceLoader(loaders),
        autoescape=select_autoescape(["html", "xml"]),
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )

    def relative_url(path: str) -> str:
        return join_url(config.baseurl, path or "/")

    def absolute_url(path: str) -> str:
        path = path or "/"
        if config.baseurl and not path.startswith(config.baseurl + "/"):
            path = relative_url(path)
        return f"{config.url}{path}"

    env.filters.update(
        date_to_string=date_to_string,
        date_to_xmlschema=date_to_xmlschema,
        relative_url=relative_url,
        absolute_url=absolute_url,
        slugify=slugify,
        tag_url=lambda tag: tag_url(tag, config.baseurl),
    )
    return env


def get_layout(env: Environment, name: str) -> Template:
    if not name.endswith((".html", ".xml")):
        name = f"{name}.html"
    try:
        return env.get_template(name)
    except TemplateNotFound as exc:
        raise BuildError(f"layout not found: {name}") from exc
    except TemplateError as exc:
        raise BuildError(f"layout {name}: {exc}") from exc


def render(template: Template, **context: Any) -> str:
    try:
        return template.render(**context)
    except TemplateError as exc:
        raise BuildError(f"layout {template.name}: {exc}") from exc


def container_environment() -> Environment:
    return Environment(
        loader=FileSystemLoader(str(TEMPLATE_DIR)),
        autoescape=False,
        keep_trailing_newline=True,
    )


def template_fingerprint(config: SiteConfig) -> str:
    return tree_hash([config.layouts_path, config.theme_path])
