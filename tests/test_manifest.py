import pytest
from packaging.version import Version

from sitebuild.errors import ManifestError
from sitebuild.manifest import (
    check_consistency,
    load_manifest,
    parse_lock,
    parse_manifest,
)

from .conftest import write


def test_consistent_pair_loads(config):
    deps = load_manifest(config)
    assert [r.name for r in deps.requirements] == ["PyYAML", "Jinja2", "Markdown"]
    assert deps.pins["jinja2"].version == Version("3.1.4")
    assert "markupsafe" in deps.pins  # transitive pins are fine


def test_lock_with_hashes_and_options(tmp_path):
    lock = write(
        tmp_path / "requirements.txt",
        "--index-url https://pypi.org/simple\n"
        "jinja2==3.1.4 \\\n"
        "    --hash=sha256:abc \\\n"
        "    --hash=sha256:def\n"
        "    # via -r requirements.in\n",
    )
    pins = parse_lock(lock)
    assert pins["jinja2"].version == Version("3.1.4")


def test_missing_files_are_fatal(config):
    (config.root / "requirements.txt").unlink()
    with pytest.raises(ManifestError, match="lock file not found"):
        load_manifest(config)
    (config.root / "requirements.in").unlink()
    with pytest.raises(ManifestError, match="dependency manifest not found"):
        load_manifest(config)


def test_locked_version_outside_specifier(config):
    write(config.root / "requirements.in", "Jinja2>=4.0\n")
    with pytest.raises(ManifestError, match="does not satisfy"):
        load_manifest(config)


def test_nonexistent_version_pin_fails(config):
    write(config.root / "requirements.in", "Markdown==99.0\n")
    with pytest.raises(ManifestError, match="Markdown: locked version 3.6"):
        load_manifest(config)


def test_unpinned_manifest_entry(config):
    write(config.root / "requirements.in", "requests\n")
    with pytest.raises(ManifestError, match="requests is not pinned"):
        load_manifest(config)


def test_names_are_canonicalized(tmp_path):
    reqs = parse_manifest(write(tmp_path / "m.in", "Py_YAML>=6\n"))
    pins = parse_lock(write(tmp_path / "l.txt", "py-yaml==6.0.1\n"))
    assert check_consistency(reqs, pins) == []


def test_markers_not_matching_this_interpreter_are_skipped(tmp_path):
    reqs = parse_manifest(
        write(tmp_path / "m.in", 'tomli>=2 ; python_version < "3.0"\n')
    )
    assert check_consistency(reqs, {}) == []


@pytest.mark.parametrize(
    "text, message",
    [
        ("jinja2 >= \n", "m.in:1"),
        ("-r other.in\n", "options are not supported"),
        ("jinja2\nJinja2>=3\n", "duplicate"),
    ],
)
def test_malformed_manifest(tmp_path, text, message):
    with pytest.raises(ManifestError, match=message):
        parse_manifest(write(tmp_path / "m.in", text))


@pytest.mark.parametrize(
    "text, message",
    [
        ("jinja2>=3.1\n", "not pinned"),
        ("jinja2==3.1.4\njinja2==3.1.3\n", "pinned twice"),
        ("jinja2==\n", "l.txt:1"),
    ],
)
def test_malformed_lock(tmp_path, text, message):
    with pytest.raises(ManifestError, match=message):
        parse_lock(write(tmp_path / "l.txt", text))


def test_lock_errors_name_the_physical_line(tmp_path):
    text = (
        "jinja2==3.1.4 \\\n"
        "    --hash=sha256:aaaa \\\n"
        "    --hash=sha256:bbbb\n"
        "    # via -r requirements.in\n"
        "markdown==\n"
    )
    with pytest.raises(ManifestError, match="l.txt:5"):
        parse_lock(write(tmp_path / "l.txt", text))


def test_hashed_pins_keep_their_first_line(tmp_path):
    text = "pyyaml==6.0.1 \\\n    --hash=sha256:aaaa\njinja2==3.1.4\n"
    pins = parse_lock(write(tmp_path / "l.txt", text))
    assert pins["pyyaml"].line == 1
    assert pins["jinja2"].line == 3
