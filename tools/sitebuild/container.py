from __future__ import annotations

import enum
import fnmatch
import hashlib
import json
import logging
import pathlib
import shlex
from dataclasses import dataclass
from typing import Dict, List, Optional, Set

from .config import SiteConfig
from .errors import BuildError, LifecycleError
from .manifest import load_manifest
from .templates import container_environment
from .utils import run

log = logging.getLogger(__name__)

DOCKERFILE_NAME = "Dockerfile"
DOCKERIGNORE_NAME = ".dockerignore"
SERVE_HOST = "0.0.0.0"
HOST_FLAGS = ("-H", "--host")
PORT_FLAGS = ("-P", "--port")


# ---------- Lifecycle

class ContainerState(enum.Enum):
    BUILDING = "building"
    SERVING = "serving"
    FAILED = "failed"


_TRANSITIONS: Dict[ContainerState, Set[ContainerState]] = {
    ContainerState.BUILDING: {ContainerState.SERVING, ContainerState.FAILED},
    ContainerState.SERVING: {ContainerState.FAILED},
    ContainerState.FAILED: set(),
}


class ContainerLifecycle:
    """building -> serving. Any failure is terminal; there is no retry."""

    def __init__(self) -> None:
        self.state = ContainerState.BUILDING
        self.error: Optional[BaseException] = None

    def advance(self, new: ContainerState) -> None:
        if new not in _TRANSITIONS[self.state]:
            raise LifecycleError(
                f"illegal transition {self.state.value} -> {new.value}"
            )
        log.debug("state %s -> %s", self.state.value, new.value)
        self.state = new

    def fail(self, exc: BaseException) -> None:
        self.error = exc
        self.advance(ContainerState.FAILED)


# ---------- Dockerfile model

@dataclass
class Instruction:
    keyword: str
    args: str
    line: int

    def __str__(self) -> str:
        return f"{self.keyword} {self.args}"

    def words(self) -> List[str]:
        """Arguments in exec (JSON) form or split shell-style."""
        s = self.args.strip()
        if s.startswith("["):
            try:
                parsed = json.loads(s)
            except ValueError:
                parsed = None
            if isinstance(parsed, list) and all(isinstance(x, str) for x in parsed):
                return parsed
        return shlex.split(s)


def parse_dockerfile(text: str) -> List[Instruction]:
    instructions: List[Instruction] = []
    pending: List[str] = []
    start = 0
    for lineno, raw in enumerate(text.replace("\r\n", "\n").split("\n"), 1):
        line = raw.strip()
        if not pending and (not line or line.startswith("#")):
            continue
        if pending and line.startswith("#"):
            continue
        if not pending:
            start = lineno
        if line.endswith("\\"):
            pending.append(line[:-1].strip())
            continue
        pending.append(line)
        joined = " ".join(p for p in pending if p)
        pending = []
        keyword, _, args = joined.partition(" ")
        instructions.append(Instruction(keyword.upper(), args.strip(), start))
    if pending:
        joined = " ".join(p for p in pending if p)
        keyword, _, args = joined.partition(" ")
        instructions.append(Instruction(keyword.upper(), args.strip(), start))
    return instructions


def serve_command(port: int) -> List[str]:
    return [
        "python", "-m", "sitebuild", "serve",
        HOST_FLAGS[0], SERVE_HOST, PORT_FLAGS[0], str(port),
    ]


def render_dockerfile(config: SiteConfig) -> str:
    template = container_environment().get_template("Dockerfile.j2")
    return template.render(
        container=config.container,
        port=config.port,
        cmd_json=json.dumps(serve_command(config.port)),
    )


# ---------- Checks

def _install_index(instrs: List[Instruction], config: SiteConfig) -> Optional[int]:
    cc = config.container
    for i, ins in enumerate(instrs):
        if ins.keyword == "RUN" and (ins.args == cc.install or cc.lockfile in ins.args):
            return i
    return None


def copy_sources(instr: Instruction) -> Optional[List[str]]:
    """Context paths read by a COPY/ADD, or None when it copies from a stage."""
    words = instr.words()
    if any(w.startswith("--from") for w in words):
        return None
    words = [w for w in words if not w.startswith("--")]
    return [_norm_src(w) for w in words[:-1]]


def _norm_src(src: str) -> str:
    while src.startswith("./"):
        src = src[2:]
    return src.rstrip("/") or "."


def _flag_value(words: List[str], flags) -> Optional[str]:
    for i, w in enumerate(words):
        if w in flags and i + 1 < len(words):
            return words[i + 1]
        for f in flags:
            if f.startswith("--") and w.startswith(f + "="):
                return w.split("=", 1)[1]
    return None


def _exposed_ports(instrs: List[Instruction]) -> List[int]:
    ports = []
    for ins in instrs:
        if ins.keyword != "EXPOSE":
            continue
        for w in ins.args.split():
            try:
                ports.append(int(w.split("/", 1)[0]))
            except ValueError:
                continue
    return ports


def check_dockerfile(instrs: List[Instruction], config: SiteConfig) -> List[str]:
    """Problems with a Dockerfile's layer order and serve command."""
    problems: List[str] = []
    cc = config.container
    if not instrs or instrs[0].keyword != "FROM":
        problems.append("the first instruction must be FROM")

    ports = _exposed_ports(instrs)
    if not ports:
        problems.append("no EXPOSE instruction")
    elif config.port not in ports:
        problems.append(f"EXPOSE {ports} does not include port {config.port}")

    install_idx = _install_index(instrs, config)
    if install_idx is None:
        problems.append(f"no RUN step installing dependencies from {cc.lockfile}")
        install_idx = len(instrs)

    copied: Set[str] = set()
    for ins in instrs[:install_idx]:
        if ins.keyword not in ("COPY", "ADD"):
            continue
        sources = copy_sources(ins)
        if sources is None:
            continue
        for src in sources:
            if src in (cc.manifest, cc.lockfile):
                copied.add(src)
            else:
                problems.append(
                    f"line {ins.line}: {ins.keyword} of '{src}' before the "
                    "dependency install invalidates its cache on every edit"
                )
    for name in (cc.manifest, cc.lockfile):
        if name not in copied:
            problems.append(f"{name} is not copied before the dependency install")

    cmds = [ins for ins in instrs if ins.keyword == "CMD"]
    if not cmds:
        problems.append("no CMD instruction")
        return problems
    words = cmds[-1].words()
    if "serve" not in words:
        problems.append("CMD does not run the serve command")
    host = _flag_value(words, HOST_FLAGS)
    if host != SERVE_HOST:
        problems.append(f"serve command must bind {SERVE_HOST}, got {host!r}")
    port = _flag_value(words, PORT_FLAGS)
    if port is None:
        problems.append("serve command does not pass the port explicitly")
    elif not port.isdigit() or int(port) not in ports:
        problems.append(f"serve port {port} is not the exposed port")
    return problems


# ---------- Layer cache keys

def load_dockerignore(context_dir: pathlib.Path) -> List[str]:
    path = context_dir / DOCKERIGNORE_NAME
    if not path.exists():
        return []
    patterns = []
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            patterns.append(line)
    return patterns


def is_ignored(rel: str, patterns: List[str]) -> bool:
    ignored = False
    parts = rel.split("/")
    prefixes = ["/".join(parts[: i + 1]) for i in range(len(parts))]
    for pat in patterns:
        negate = pat.startswith("!")
        p = _norm_src(pat.lstrip("!").lstrip("/"))
        variants = [p]
        # a leading **/ also matches zero directories
        while p.startswith("**/"):
            p = p[3:]
            variants.append(p)
        if any(fnmatch.fnmatchcase(x, v) for x in prefixes for v in variants):
            ignored = not negate
    return ignored


def _context_files(
    context_dir: pathlib.Path, src: str, patterns: List[str]
) -> List[pathlib.Path]:
    if src == ".":
        candidates = list(context_dir.rglob("*"))
    elif any(ch in src for ch in "*?["):
        candidates = []
        for m in context_dir.glob(src):
            candidates.extend([m] if m.is_file() else m.rglob("*"))
    else:
        target = context_dir / src
        if target.is_file():
            candidates = [target]
        elif target.is_dir():
            candidates = list(target.rglob("*"))
        else:
            raise BuildError(f"COPY source not found in build context: {src}")
    files = []
    for p in candidates:
        if not p.is_file():
            continue
        rel = p.relative_to(context_dir).as_posix()
        if not is_ignored(rel, patterns):
            files.append(p)
    return sorted(files)


def layer_cache_keys(
    instrs: List[Instruction], context_dir: pathlib.Path
) -> List[str]:
    """One chained cache key per instruction.

    A key changes when its instruction, any earlier instruction, or the
    content of any file a COPY/ADD reads changes.
    """
    patterns = load_dockerignore(context_dir)
    keys: List[str] = []
    key = ""
    for ins in instrs:
        h = hashlib.sha256()
        h.update(key.encode("utf-8"))
        h.update(b"\0")
        h.update(str(ins).encode("utf-8"))
        if ins.keyword in ("COPY", "ADD"):
            for src in copy_sources(ins) or []:
                for f in _context_files(context_dir, src, patterns):
                    h.update(b"\0")
                    h.update(f.relative_to(context_dir).as_posix().encode("utf-8"))
                    h.update(b"\0")
                    h.update(f.read_bytes())
        key = h.hexdigest()
        keys.append(key)
    return keys


def install_step_index(instrs: List[Instruction], config: SiteConfig) -> int:
    idx = _install_index(instrs, config)
    if idx is None:
        raise BuildError(
            f"no RUN step installing dependencies from {config.container.lockfile}"
        )
    return idx


# ---------- Image build

def write_dockerfile(config: SiteConfig, path: Optional[pathlib.Path] = None) -> pathlib.Path:
    path = path or config.root / DOCKERFILE_NAME
    path.write_text(render_dockerfile(config), encoding="utf-8")
    log.info("✓ wrote %s", path)
    return path


def check_build_context(
    config: SiteConfig, dockerfile: Optional[pathlib.Path] = None
) -> List[Instruction]:
    """Fail fast on a bad manifest/lock pair or a mis-ordered Dockerfile."""
    deps = load_manifest(config)
    log.info(
        "✓ %s and %s agree (%d requirements, %d pins)",
        deps.manifest_path.name,
        deps.lock_path.name,
        len(deps.requirements),
        len(deps.pins),
    )
    dockerfile = dockerfile or config.root / DOCKERFILE_NAME
    if not dockerfile.is_file():
        raise BuildError(f"Dockerfile not found: {dockerfile}")
    instrs = parse_dockerfile(dockerfile.read_text(encoding="utf-8"))
    problems = check_dockerfile(instrs, config)
    if problems:
        raise BuildError(
            f"{dockerfile.name} problems:\n  " + "\n  ".join(problems)
        )
    log.info("✓ %s layer order ok", dockerfile.name)
    return instrs


def build_image(
    config: SiteConfig,
    tag: str,
    dockerfile: Optional[pathlib.Path] = None,
    docker: str = "docker",
) -> None:
    dockerfile = dockerfile or config.root / DOCKERFILE_NAME
    if not dockerfile.exists():
        write_dockerfile(config, dockerfile)
    check_build_context(config, dockerfile)
    run(
        [docker, "build", "-t", tag, "-f", str(dockerfile), str(config.root)],
        cwd=config.root,
    )
    log.info("✓ built image %s", tag)
