from __future__ import annotations

import functools
import logging
import threading
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from typing import Callable, Optional, Tuple
from urllib.parse import urlsplit

from .config import SiteConfig, load_site_config
from .container import ContainerLifecycle, ContainerState
from .errors import ServeError, SiteError
from .site import build_site
from .utils import tree_hash

log = logging.getLogger(__name__)

WATCH_INTERVAL = 1.0


class SiteRequestHandler(SimpleHTTPRequestHandler):
    baseurl = ""
    verbose = False

    def translate_path(self, path: str) -> str:
        if self.baseurl:
            p = urlsplit(path).path
            if p == self.baseurl or p.startswith(self.baseurl + "/"):
                path = p[len(self.baseurl):] or "/"
        return super().translate_path(path)

    def log_message(self, format, *args):
        if self.verbose:
            log.info("%s - %s", self.address_string(), format % args)


def make_handler(config: SiteConfig, verbose: bool = False):
    handler = type(
        "Handler",
        (SiteRequestHandler,),
        {"baseurl": config.baseurl, "verbose": verbose},
    )
    return functools.partial(handler, directory=str(config.destination_path))


class Watcher(threading.Thread):
    """Polls the site sources and calls `on_change` when their hash moves."""

    def __init__(
        self,
        config: SiteConfig,
        on_change: Callable[[], None],
        interval: float = WATCH_INTERVAL,
    ) -> None:
        super().__init__(name="sitebuild-watch", daemon=True)
        self.config = config
        self.on_change = on_change
        self.interval = interval
        self._stop_event = threading.Event()
        self._last = self.snapshot()

    def snapshot(self) -> str:
        c = self.config
        return tree_hash(
            [c.posts_path, c.layouts_path, c.config_path, *c.static_paths]
        )

    def run(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                current = self.snapshot()
            except OSError:
                # a file vanished mid-walk; look again next tick
                continue
            if current != self._last:
                self._last = current
                try:
                    self.on_change()
                except Exception:
                    log.exception("! rebuild crashed, still watching")

    def stop(self) -> None:
        self._stop_event.set()


class SiteServer:
    def __init__(
        self,
        config: SiteConfig,
        host: Optional[str] = None,
        port: Optional[int] = None,
        watch: bool = True,
        interval: float = WATCH_INTERVAL,
        verbose: bool = False,
    ) -> None:
        self.config = config
        self.host = config.host if host is None else host
        self.port = config.port if port is None else port
        self.watch = watch
        self.interval = interval
        self.verbose = verbose
        self.lifecycle = ContainerLifecycle()
        self.httpd: Optional[ThreadingHTTPServer] = None
        self.watcher: Optional[Watcher] = None
        self._build_lock = threading.Lock()

    @property
    def state(self) -> ContainerState:
        return self.lifecycle.state

    @property
    def address(self) -> Tuple[str, int]:
        if self.httpd is None:
            raise ServeError("server is not bound")
        host, port = self.httpd.server_address[:2]
        return host, port

    def start(self) -> None:
        """Build the site, bind the socket and start watching."""
        try:
            with self._build_lock:
                build_site(self.config)
        except SiteError as exc:
            self.lifecycle.fail(exc)
            raise

        try:
            self.httpd = ThreadingHTTPServer(
                (self.host, self.port), make_handler(self.config, self.verbose)
            )
        except OSError as exc:
            err = ServeError(
                f"cannot bind {self.host}:{self.port}: {exc.strerror or exc}"
            )
            self.lifecycle.fail(err)
            raise err from exc

        self.lifecycle.advance(ContainerState.SERVING)
        if self.watch:
            self.watcher = Watcher(self.config, self.rebuild, self.interval)
            self.watcher.start()
        host, port = self.address
        log.info(
            "✓ serving %s at http://%s:%d%s/",
            self.config.destination_path,
            host,
            port,
            self.config.baseurl,
        )

    def rebuild(self) -> None:
        """Incremental rebuild. Failures are logged and the old output stays."""
        with self._build_lock:
            try:
                if self.config.config_path.exists():
                    fresh = load_site_config(self.config.root)
                    if fresh.destination != self.config.destination:
                        log.warning(
                            "! destination changed in %s, restart to apply",
                            fresh.config_path.name,
                        )
                        fresh.destination = self.config.destination
                    self.config = fresh
                    if self.watcher is not None:
                        self.watcher.config = fresh
                build_site(self.config)
            except SiteError as exc:
                log.error("! rebuild failed: %s", exc)

    def serve_forever(self) -> None:
        if self.httpd is None:
            raise ServeError("server is not bound")
        try:
            self.httpd.serve_forever()
        except Exception as exc:
            self.lifecycle.fail(exc)
            raise

    def stop(self) -> None:
        if self.httpd is not None:
            self.httpd.shutdown()

    def close(self) -> None:
        if self.watcher is not None:
            self.watcher.stop()
            self.watcher.join(timeout=self.interval * 2)
            self.watcher = None
        if self.httpd is not None:
            self.httpd.server_close()


def serve(
    config: SiteConfig,
    host: Optional[str] = None,
    port: Optional[int] = None,
    watch: bool = True,
    verbose: bool = False,
) -> None:
    server = SiteServer(config, host=host, port=port, watch=watch, verbose=verbose)
    server.start()
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        log.info("- shutting down")
    finally:
        server.close()
