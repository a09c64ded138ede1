from datetime import date

import pytest

from sitebuild.config import CACHE_FILE_NAME, load_site_config, site_config_from_dict
from sitebuild.errors import BuildError
from sitebuild.content import tag_slug
from sitebuild.site import build_site, output_path

from .conftest import post_text, write

TODAY = date(2024, 6, 1)


def build(cfg, **kw):
    kw.setdefault("today", TODAY)
    kw.setdefault("use_git", False)
    return build_site(cfg, **kw)


def test_output_path(tmp_path):
    assert output_path(tmp_path, "/") == tmp_path / "index.html"
    assert output_path(tmp_path, "/a/b/") == tmp_path / "a" / "b" / "index.html"
    assert output_path(tmp_path, "/a/b.html") == tmp_path / "a" / "b.html"
    assert output_path(tmp_path, "/blog/a/", "/blog") == tmp_path / "a" / "index.html"


def test_full_build_writes_pages(config):
    report = build(config)
    dest = config.destination_path
    assert len(report.written) == 3
    assert report.tag_pages == 2

    first = (dest / "2024" / "01" / "15" / "first-post" / "index.html").read_text()
    assert "<title>First post | Test Blog</title>" in first
    assert '<h2 id="details">Details</h2>' in first
    assert 'href="/2024/02/01/second-post/"' in first  # next
    assert 'href="/tags/intro/"' in first

    index = (dest / "index.html").read_text()
    assert index.index("Third post") < index.index("Second post") < index.index("First post")

    tag = (dest / "tags" / "meta" / "index.html").read_text()
    assert "First post" in tag and "Second post" not in tag

    feed = (dest / "feed.xml").read_text()
    assert "<id>https://blog.example.com/2024/03/10/third-post/</id>" in feed
    assert '<category term="intro"/>' in feed

    sitemap = (dest / "sitemap.xml").read_text()
    assert "<loc>https://blog.example.com/2024/01/15/first-post/</loc>" in sitemap
    assert "<lastmod>2024-01-15</lastmod>" in sitemap

    assert (dest / CACHE_FILE_NAME).exists()


def test_empty_content_store_still_builds(tmp_path):
    cfg = site_config_from_dict(tmp_path, {})
    report = build(cfg)
    assert report.post_count == 0
    index = (cfg.destination_path / "index.html").read_text()
    assert "No posts yet." in index
    assert (cfg.destination_path / "feed.xml").exists()


def test_second_build_skips_unchanged_posts(config):
    build(config)
    report = build(config)
    assert report.written == []
    assert len(report.skipped) == 3


def test_editing_body_rewrites_only_that_post(config):
    build(config)
    write(
        config.posts_path / "2024-02-01-second-post.md",
        post_text("Second post", "Edited body.\n", tags="[intro]"),
    )
    report = build(config)
    assert report.written == ["/2024/02/01/second-post/"]
    page = config.destination_path / "2024" / "02" / "01" / "second-post" / "index.html"
    assert "Edited body." in page.read_text()


def test_renaming_title_rewrites_neighbours(config):
    build(config)
    write(
        config.posts_path / "2024-02-01-second-post.md",
        post_text("Second, renamed", "The second one.\n", tags="[intro]"),
    )
    report = build(config)
    assert sorted(report.written) == [
        "/2024/01/15/first-post/",
        "/2024/02/01/second-post/",
        "/2024/03/10/third-post/",
    ]


def test_full_flag_ignores_cache(config):
    build(config)
    report = build(config, incremental=False)
    assert len(report.written) == 3


def test_deleted_post_is_removed(config):
    build(config)
    (config.posts_path / "2024-03-10-third-post.md").unlink()
    report = build(config)
    assert report.removed == ["/2024/03/10/third-post/"]
    dest = config.destination_path
    assert not (dest / "2024" / "03").exists()
    assert (dest / "2024" / "01" / "15" / "first-post" / "index.html").exists()


def test_stale_tag_pages_removed(config):
    build(config)
    write(
        config.posts_path / "2024-01-15-first-post.md",
        post_text("First post", "Hello.\n", tags="[intro]"),
    )
    build(config)
    assert not (config.destination_path / "tags" / "meta").exists()
    assert (config.destination_path / "tags" / "intro" / "index.html").exists()


def test_post_assets_copied_next_to_page(config):
    (config.posts_path / "img").mkdir()
    (config.posts_path / "img" / "plot.png").write_bytes(b"png")
    write(
        config.posts_path / "2024-04-01-with-image.md",
        post_text("Pic", "![plot](img/plot.png)\n"),
    )
    build(config)
    page_dir = config.destination_path / "2024" / "04" / "01" / "with-image"
    assets = list((page_dir / "assets").iterdir())
    assert len(assets) == 1
    html = (page_dir / "index.html").read_text()
    assert f'src="/2024/04/01/with-image/assets/{assets[0].name}"' in html


def test_static_dirs_mirrored(config):
    write(config.root / "assets" / "css" / "main.css", "body {}")
    report = build(config)
    assert report.static_files == 1
    assert (config.destination_path / "assets" / "css" / "main.css").exists()


def test_clean_removes_foreign_files(config):
    write(config.destination_path / "leftover.txt", "x")
    build(config, clean=True)
    assert not (config.destination_path / "leftover.txt").exists()


def test_site_layouts_override_theme(config):
    write(
        config.root / "_layouts" / "post.html",
        "<p>custom {{ post.title }}</p>{{ content | safe }}",
    )
    build(config)
    page = config.destination_path / "2024" / "01" / "15" / "first-post" / "index.html"
    assert page.read_text().startswith("<p>custom First post</p>")


def test_changing_a_layout_rewrites_posts(config):
    build(config)
    write(config.root / "_layouts" / "post.html", "{{ post.title }}")
    report = build(config)
    assert len(report.written) == 3


def test_missing_layout_is_fatal(config):
    write(
        config.posts_path / "2024-04-01-odd.md",
        post_text("Odd", "x\n", layout="nonexistent"),
    )
    with pytest.raises(BuildError, match="nonexistent.html"):
        build(config)


def test_baseurl_prefixes_links_not_paths(site_root):
    write(site_root / "_config.yml", "title: T\nbaseurl: /blog\n")
    cfg = load_site_config(site_root)
    build(cfg)
    page = cfg.destination_path / "2024" / "01" / "15" / "first-post" / "index.html"
    html = page.read_text()
    assert 'href="/blog/2024/02/01/second-post/"' in html
    assert 'href="/blog/feed.xml"' in html


def test_colliding_tags_share_one_page(config):
    write(config.posts_path / "2024-04-01-cpp.md", post_text("Cpp", tags="[C++]"))
    write(config.posts_path / "2024-04-02-c.md", post_text("Plain C", tags="[c]"))
    report = build(config)
    dest = config.destination_path
    assert report.tag_pages == 3
    page = (dest / "tags" / "c" / "index.html").read_text()
    assert "Cpp" in page and "Plain C" in page
    sitemap = (dest / "sitemap.xml").read_text()
    assert sitemap.count("/tags/c/</loc>") == 1


def test_symbol_only_tag_links_to_its_page(config):
    write(config.posts_path / "2024-04-01-ops.md", post_text("Ops", tags="[++]"))
    build(config)
    dest = config.destination_path
    href = f'href="/tags/{tag_slug("++")}/"'
    assert href in (dest / "2024" / "04" / "01" / "ops" / "index.html").read_text()
    assert href in (dest / "index.html").read_text()
    assert (dest / "tags" / tag_slug("++") / "index.html").exists()
    assert 'href="/tags//"' not in (dest / "index.html").read_text()
