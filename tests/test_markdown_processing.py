from sitebuild.markdown_processing import (
    add_heading_ids,
    map_noncode_nonmath,
    markdown_to_html,
    pad_block_html,
    prepare_markdown,
)


def test_atx_headings_get_unique_ids():
    text, toc = add_heading_ids("# Intro\n\n## Setup\n\n## Setup\n", {})
    assert "# Intro {#intro}" in text
    assert "## Setup {#setup}" in text
    assert "## Setup {#setup-1}" in text
    assert [t["id"] for t in toc] == ["intro", "setup", "setup-1"]


def test_setext_headings_become_atx():
    text, toc = add_heading_ids("Title\n=====\n\nSub\n---\n", {})
    assert "# Title {#title}" in text
    assert "## Sub {#sub}" in text
    assert [(t["level"], t["text"]) for t in toc] == [(1, "Title"), (2, "Sub")]


def test_existing_ids_are_kept():
    text, toc = add_heading_ids("## Custom {#my-id}\n", {})
    assert text == "## Custom {#my-id}\n"
    assert toc == [{"level": 2, "text": "Custom", "id": "my-id"}]


def test_toc_depth_limits_items_not_ids():
    text, toc = add_heading_ids("## A\n\n#### Deep\n", {}, max_depth=3)
    assert "#### Deep {#deep}" in text
    assert [t["id"] for t in toc] == ["a"]


def test_code_fences_are_not_touched():
    md = "## Real\n\n```\n# not a heading\n```\n"
    text, toc = prepare_markdown(md)
    assert "# not a heading\n" in text
    assert "{#not-a-heading}" not in text
    assert [t["id"] for t in toc] == ["real"]


def test_math_is_held_out():
    seen = []

    def fn(s):
        seen.append(s)
        return s.upper()

    out = map_noncode_nonmath("a $x_1$ b\n", fn)
    assert out == "A $x_1$ B\n"
    assert "$x_1$" not in seen[0]


def test_block_html_is_padded():
    out = pad_block_html("text\n<div>box</div>\nmore\n")
    assert out == "text\n\n<div>box</div>\n\nmore\n"


def test_markdown_to_html_uses_heading_ids():
    text, _ = prepare_markdown("## Hello World\n\n| a | b |\n|---|---|\n| 1 | 2 |\n")
    html = markdown_to_html(text)
    assert '<h2 id="hello-world">Hello World</h2>' in html
    assert "<table>" in html


def test_fenced_code_renders():
    html = markdown_to_html("```python\nprint('hi')\n```\n")
    assert "<pre><code" in html
    assert "print(&#x27;hi&#x27;)" in html or "print('hi')" in html
