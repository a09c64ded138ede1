from __future__ import annotations


class SiteError(Exception):
    """Base class for every fatal sitebuild error."""


class ConfigError(SiteError):
    pass


class ManifestError(SiteError):
    pass


class ContentError(SiteError):
    def __init__(self, path, message: str):
        self.path = path
        super().__init__(f"{path}: {message}")


class BuildError(SiteError):
    pass


class ServeError(SiteError):
    pass


class LifecycleError(SiteError):
    pass
