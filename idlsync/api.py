"""
High-level Python API for idlsync.

Example:
    import idlsync

    # From a config file
    sync = idlsync.IdlSync(config_path="idlsync.json")
    report = sync.bootstrap()
    print(report.success, report.commit)

    # Or from a config dict (relative paths resolve against base_dir)
    sync = idlsync.IdlSync(config={
        "upstream": "git@github.com:org/idl-registry.git",
        "repositoryFolder": "./registry",
        "cacheLocation": "./remote-cache",
        "remotes": [{"repository": "git@github.com:org/users.git", "branch": "master"}],
    })

    # Cache maintenance
    sync.cache.invalidate("users")
"""

from pathlib import Path
from typing import Any, Callable, Dict, Optional
import logging

from .config import (
    SyncSettings,
    build_settings,
    get_default_config,
    load_settings,
    merge_configs,
)
from .domain import RunReport
from .infra import GitClient
from .services import BootstrapService, RemoteCache

logger = logging.getLogger(__name__)


class IdlSync:
    """
    High-level API for idlsync.

    Wraps settings resolution and the BootstrapService; one instance can
    run bootstrap repeatedly, reusing the same cache handle.
    """

    def __init__(
        self,
        config_path: Optional[str] = None,
        config: Optional[Dict[str, Any]] = None,
        base_dir: Optional[Path] = None,
        settings: Optional[SyncSettings] = None,
        git_client: Optional[GitClient] = None
    ):
        """
        Initialize IdlSync.

        Args:
            config_path: Path to config file (default lookup if None)
            config: Config dict merged over the defaults (overrides file if provided)
            base_dir: Directory relative paths in ``config`` resolve against
            settings: Prebuilt settings (overrides both of the above)
            git_client: GitClient to use for all git operations
        """
        if settings is not None:
            self.settings = settings
        elif config is not None:
            self.settings = build_settings(merge_configs(get_default_config(), config), base_dir)
        else:
            self.settings = load_settings(config_path)

        self._service = BootstrapService(self.settings, git_client=git_client)

    @property
    def service(self) -> BootstrapService:
        return self._service

    @property
    def cache(self) -> RemoteCache:
        return self._service.cache

    def bootstrap(self, progress: Optional[Callable[[str], None]] = None) -> RunReport:
        """Run one sync; see BootstrapService.bootstrap."""
        return self._service.bootstrap(progress)

    def cancel(self) -> None:
        self._service.cancel()


def bootstrap(
    config_path: Optional[str] = None,
    config: Optional[Dict[str, Any]] = None,
    base_dir: Optional[Path] = None
) -> RunReport:
    """Convenience function: load configuration and run one sync."""
    return IdlSync(config_path=config_path, config=config, base_dir=base_dir).bootstrap()
