#!/usr/bin/env python3
"""
Static blog builder and dev server.

- Posts -> <destination>/<permalink>/index.html
  front matter: title, date?, tags?, layout?, excerpt?, published?
- Tag pages -> <destination>/tags/<tag>/index.html
- Index, Atom feed (feed.xml) and sitemap.xml at the destination root
- Static dirs (default assets/) mirrored into the destination

Key features:
- Post identity from file name (YYYY-MM-DD-title.md) or front matter
- Headings anchored with `{#id}` and collected into a per-post ToC
- Code/math-safe markdown mutations (fences + $…$/$$…$$)
- Local images/files next to a post copied with hashed names
- Incremental rebuilds keyed on source, layouts, config and neighbours
- `serve` binds 0.0.0.0:4000 by default and rebuilds on change
- Canonical Dockerfile with manifest + lock copied before any content,
  so the dependency install layer survives content edits
"""

from __future__ import annotations

import argparse
import logging
import pathlib
import sys
from typing import List, Optional

from .config import load_site_config
from .container import (
    DOCKERFILE_NAME,
    build_image,
    check_build_context,
    install_step_index,
    layer_cache_keys,
    render_dockerfile,
    write_dockerfile,
)
from .errors import SiteError
from .server import serve
from .site import build_site

log = logging.getLogger("sitebuild")


def setup_logging(verbose: bool = False) -> None:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(message)s"))
    log.handlers[:] = [handler]
    log.setLevel(logging.DEBUG if verbose else logging.INFO)
    log.propagate = False


def cmd_build(args) -> None:
    config = load_site_config(args.source)
    if args.destination:
        config.destination = args.destination
    build_site(config, clean=args.clean, incremental=not args.full)


def cmd_serve(args) -> None:
    config = load_site_config(args.source)
    serve(
        config,
        host=args.host,
        port=args.port,
        watch=not args.no_watch,
        verbose=args.verbose,
    )


def cmd_dockerfile(args) -> None:
    config = load_site_config(args.source)
    if args.output:
        write_dockerfile(config, pathlib.Path(args.output))
    else:
        sys.stdout.write(render_dockerfile(config))


def cmd_check(args) -> None:
    config = load_site_config(args.source)
    dockerfile = pathlib.Path(args.dockerfile) if args.dockerfile else None
    instrs = check_build_context(config, dockerfile)
    keys = layer_cache_keys(instrs, config.root)
    idx = install_step_index(instrs, config)
    log.info("  install layer (step %d): %s", idx + 1, keys[idx][:12])


def cmd_image(args) -> None:
    config = load_site_config(args.source)
    dockerfile = pathlib.Path(args.dockerfile) if args.dockerfile else None
    build_image(config, args.tag, dockerfile)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sitebuild", description="Static blog builder and dev server"
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    def with_source(p):
        p.add_argument(
            "-s", "--source", default=".",
            help="site root holding _config.yml (default: .)",
        )
        return p

    p = with_source(sub.add_parser("build", help="render the site once"))
    p.add_argument("-d", "--destination", help="override the output directory")
    p.add_argument("--clean", action="store_true", help="wipe the output first")
    p.add_argument("--full", action="store_true", help="ignore the build cache")
    p.set_defaults(func=cmd_build)

    p = with_source(sub.add_parser("serve", help="build, then serve over HTTP"))
    p.add_argument("-H", "--host", help="bind address (default: 0.0.0.0)")
    p.add_argument("-P", "--port", type=int, help="port (default: 4000)")
    p.add_argument("--no-watch", action="store_true", help="do not rebuild on change")
    p.set_defaults(func=cmd_serve)

    p = with_source(sub.add_parser("dockerfile", help="print the canonical Dockerfile"))
    p.add_argument("-o", "--output", help=f"write to a file, e.g. {DOCKERFILE_NAME}")
    p.set_defaults(func=cmd_dockerfile)

    p = with_source(sub.add_parser(
        "check", help="verify manifest/lock and the Dockerfile layer order"
    ))
    p.add_argument("--dockerfile", help=f"default: <source>/{DOCKERFILE_NAME}")
    p.set_defaults(func=cmd_check)

    p = with_source(sub.add_parser("image", help="build the container image"))
    p.add_argument("-t", "--tag", default="blog:latest")
    p.add_argument("--dockerfile", help=f"default: <source>/{DOCKERFILE_NAME}")
    p.set_defaults(func=cmd_image)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    try:
        args.func(args)
    except SiteError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
