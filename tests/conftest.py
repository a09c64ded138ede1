from __future__ import annotations

import logging
import pathlib
import textwrap

import pytest

from sitebuild.config import load_site_config

CONFIG = """\
title: Test Blog
description: A blog for tests.
url: https://blog.example.com
"""

MANIFEST = """\
# runtime deps
PyYAML>=6.0
Jinja2>=3.1,<4
Markdown>=3.4
"""

LOCK = """\
jinja2==3.1.4
    # via -r requirements.in
markdown==3.6
    # via -r requirements.in
markupsafe==2.1.5
    # via jinja2
pyyaml==6.0.1
    # via -r requirements.in
"""


def write(path: pathlib.Path, text: str) -> pathlib.Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(text), encoding="utf-8")
    return path


def post_text(title=None, body="Some text.\n", **fm) -> str:
    lines = ["---"]
    if title is not None:
        lines.append(f"title: {title}")
    for k, v in fm.items():
        lines.append(f"{k}: {v}")
    lines.append("---")
    return "\n".join(lines) + "\n\n" + body


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    logger = logging.getLogger("sitebuild")
    logger.handlers[:] = []
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def site_root(tmp_path):
    root = tmp_path / "blog"
    write(root / "_config.yml", CONFIG)
    write(
        root / "_posts" / "2024-01-15-first-post.md",
        post_text("First post", "Hello from the first post.\n\n## Details\n\nMore.\n", tags="[intro, meta]"),
    )
    write(
        root / "_posts" / "2024-02-01-second-post.md",
        post_text("Second post", "The second one.\n", tags="[intro]"),
    )
    write(
        root / "_posts" / "2024-03-10-third-post.md",
        post_text("Third post", "Third.\n"),
    )
    write(root / "requirements.in", MANIFEST)
    write(root / "requirements.txt", LOCK)
    return root


@pytest.fixture
def config(site_root):
    return load_site_config(site_root)
