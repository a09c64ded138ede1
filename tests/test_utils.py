from datetime import date, datetime

import pytest
import yaml

from sitebuild.utils import (
    coerce_date,
    join_url,
    natural_key,
    parse_frontmatter,
    slugify,
    tree_hash,
)

from .conftest import write


def test_slugify():
    assert slugify("Hello, World!") == "hello-world"
    assert slugify("  C++ -- tips  ") == "c-tips"
    assert slugify("???") == ""


def test_natural_key_orders_numbers():
    names = ["part-10", "part-2", "part-1"]
    assert sorted(names, key=natural_key) == ["part-1", "part-2", "part-10"]


def test_join_url():
    assert join_url("", "/a/b/") == "/a/b/"
    assert join_url("/blog", "/a.html") == "/blog/a.html"
    assert join_url("/blog", "tags", "x", "/") == "/blog/tags/x/"
    assert join_url("", "/") == "/"


def test_coerce_date():
    assert coerce_date(datetime(2024, 1, 2, 3, 4)) == date(2024, 1, 2)
    assert coerce_date("'2024-01-02'") == date(2024, 1, 2)
    assert coerce_date("soon") is None
    assert coerce_date(None) is None


def test_parse_frontmatter():
    fm, body = parse_frontmatter("---\ntitle: Hi\ntags: [a]\n---\nBody\n")
    assert fm == {"title": "Hi", "tags": ["a"]}
    assert body == "Body\n"


def test_parse_frontmatter_absent_or_unclosed():
    assert parse_frontmatter("Just text\n") == (None, "Just text\n")
    assert parse_frontmatter("---\ntitle: x\n") == (None, "---\ntitle: x\n")
    assert parse_frontmatter("---\n---\nbody") == ({}, "body")


def test_parse_frontmatter_invalid_yaml():
    with pytest.raises(yaml.YAMLError):
        parse_frontmatter("---\ntitle: [x\n---\n")


def test_tree_hash_tracks_content_and_names(tmp_path):
    write(tmp_path / "d" / "a.txt", "a")
    h1 = tree_hash([tmp_path / "d", tmp_path / "missing"])
    write(tmp_path / "d" / "a.txt", "b")
    h2 = tree_hash([tmp_path / "d"])
    (tmp_path / "d" / "a.txt").rename(tmp_path / "d" / "c.txt")
    h3 = tree_hash([tmp_path / "d"])
    assert len({h1, h2, h3}) == 3
