from __future__ import annotations

import pathlib
import re
from dataclasses import dataclass
from typing import Dict, List

from packaging.requirements import InvalidRequirement, Requirement
from packaging.utils import canonicalize_name
from packaging.version import InvalidVersion, Version

from .config import SiteConfig
from .errors import ManifestError

_HASH_OPT = re.compile(r"\s--hash[ =]\S+")


@dataclass
class Pin:
    name: str
    version: Version
    line: int


@dataclass
class DependencyManifest:
    manifest_path: pathlib.Path
    lock_path: pathlib.Path
    requirements: List[Requirement]
    pins: Dict[str, Pin]


def _logical_lines(text: str):
    """Yield (line number, content) with comments and continuations removed.

    A continued entry is numbered by its first physical line.
    """
    parts: List[str] = []
    start = 0
    lines = text.replace("\r\n", "\n").split("\n")
    for lineno, raw in enumerate(lines, 1):
        if not parts:
            start = lineno
        parts.append(raw[:-1] if raw.endswith("\\") else raw)
        if raw.endswith("\\") and lineno < len(lines):
            continue
        line = " ".join(parts).split(" #", 1)[0].strip()
        parts = []
        if line and not line.startswith("#"):
            yield start, line


def _read(path: pathlib.Path, what: str) -> str:
    if not path.is_file():
        raise ManifestError(f"{what} not found: {path}")
    return path.read_text(encoding="utf-8")


def parse_manifest(path: pathlib.Path) -> List[Requirement]:
    reqs: List[Requirement] = []
    seen = set()
    for lineno, line in _logical_lines(_read(path, "dependency manifest")):
        if line.startswith("-"):
            raise ManifestError(
                f"{path.name}:{lineno}: options are not supported: {line}"
            )
        try:
            req = Requirement(line)
        except InvalidRequirement as exc:
            raise ManifestError(f"{path.name}:{lineno}: {exc}") from exc
        name = canonicalize_name(req.name)
        if name in seen:
            raise ManifestError(f"{path.name}:{lineno}: duplicate {req.name}")
        seen.add(name)
        reqs.append(req)
    return reqs


def parse_lock(path: pathlib.Path) -> Dict[str, Pin]:
    pins: Dict[str, Pin] = {}
    for lineno, line in _logical_lines(_read(path, "lock file")):
        if line.startswith("-"):
            # --index-url and friends, as pip-compile may emit
            continue
        line = _HASH_OPT.sub("", " " + line).strip()
        try:
            req = Requirement(line)
        except InvalidRequirement as exc:
            raise ManifestError(f"{path.name}:{lineno}: {exc}") from exc
        specs = list(req.specifier)
        if len(specs) != 1 or specs[0].operator not in ("==", "==="):
            raise ManifestError(
                f"{path.name}:{lineno}: {req.name} is not pinned with '=='"
            )
        try:
            version = Version(specs[0].version)
        except InvalidVersion as exc:
            raise ManifestError(f"{path.name}:{lineno}: {exc}") from exc
        name = canonicalize_name(req.name)
        if name in pins:
            raise ManifestError(
                f"{path.name}:{lineno}: {req.name} pinned twice "
                f"(first on line {pins[name].line})"
            )
        pins[name] = Pin(name=req.name, version=version, line=lineno)
    return pins


def check_consistency(
    requirements: List[Requirement], pins: Dict[str, Pin]
) -> List[str]:
    """Problems between a manifest and its lock file. Empty when consistent."""
    problems = []
    for req in requirements:
        if req.marker is not None and not req.marker.evaluate():
            continue
        pin = pins.get(canonicalize_name(req.name))
        if pin is None:
            problems.append(f"{req.name} is not pinned in the lock file")
            continue
        if not req.specifier.contains(pin.version, prereleases=True):
            problems.append(
                f"{req.name}: locked version {pin.version} does not satisfy "
                f"'{req.specifier}'"
            )
    return problems


def load_manifest(config: SiteConfig) -> DependencyManifest:
    """Load manifest + lock from the site root and verify they agree."""
    manifest_path = config.root / config.container.manifest
    lock_path = config.root / config.container.lockfile
    reqs = parse_manifest(manifest_path)
    pins = parse_lock(lock_path)
    problems = check_consistency(reqs, pins)
    if problems:
        raise ManifestError(
            f"{manifest_path.name} and {lock_path.name} disagree:\n  "
            + "\n  ".join(problems)
        )
    return DependencyManifest(manifest_path, lock_path, reqs, pins)
