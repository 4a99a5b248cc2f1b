#!/usr/bin/env python3

import os
import json
import tomllib
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional, Tuple

import logging
import sys

import toml
import yaml

from .domain.naming import FileNameStrategy
from .domain.result import META_FILENAME, CollisionPolicy
from .domain.source import RemoteSource, DEFAULT_IDL_DIRECTORY
from .exit_codes import ConfigError

logger = logging.getLogger("idlsync")

CONFIG_FILENAMES = ['config.json', 'config.toml', 'config.yaml', 'config.yml']
LOCAL_CONFIG_FILENAME = 'idlsync.json'


def configure_logging(config: Optional[Dict[str, Any]] = None, debug: bool = False) -> logging.Logger:
    """Attach a stderr handler to the idlsync logger using the logging section."""
    log_config = (config or {}).get("logging", {})
    level_name = "DEBUG" if debug else str(log_config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    # Reset handlers to avoid duplicate output when invoked more than once
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)  # Default to stderr
    handler.setFormatter(logging.Formatter(log_config.get("format", "%(levelname)s: %(message)s")))
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger


def get_config_path(explicit: Optional[str] = None) -> Path:
    """Get the path to the configuration file.

    Checks in order:
    1. An explicit path (e.g. from --config)
    2. IDLSYNC_CONFIG environment variable
    3. ./idlsync.json in the current directory
    4. ~/.idlsync/ directory
    """
    if explicit:
        return Path(explicit).expanduser()

    # Check for environment variable override
    if 'IDLSYNC_CONFIG' in os.environ:
        return Path(os.environ['IDLSYNC_CONFIG']).expanduser()

    local = Path.cwd() / LOCAL_CONFIG_FILENAME
    if local.exists():
        return local

    idlsync_dir = Path.home() / '.idlsync'
    for filename in CONFIG_FILENAMES:
        path = idlsync_dir / filename
        if path.exists():
            return path

    # If no file exists, return default path for saving
    return idlsync_dir / 'config.json'


def read_config_file(config_path: Path) -> Dict[str, Any]:
    """Parse a JSON, TOML or YAML config file by suffix."""
    suffix = config_path.suffix.lower()
    try:
        if suffix == '.toml':
            with open(config_path, 'rb') as f:
                file_config = tomllib.load(f)
        elif suffix in ['.yaml', '.yml']:
            with open(config_path, 'r', encoding='utf-8') as f:
                file_config = yaml.safe_load(f)
        else:
            # Default to JSON format
            with open(config_path, 'r', encoding='utf-8') as f:
                file_config = json.load(f)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise ConfigError(f"Error loading config from {config_path}: {e}") from e

    if file_config is None:
        return {}
    if not isinstance(file_config, dict):
        raise ConfigError(f"{config_path} must contain a mapping at the top level")
    return file_config


def load_config(path: Optional[str] = None, required: bool = False) -> Dict[str, Any]:
    """
    Load configuration from file.

    Starts from the defaults, merges the file over them, then applies
    IDLSYNC_* environment overrides.

    Args:
        path: Explicit config file; missing explicit files are an error
        required: Raise if no config file can be found
    """
    config_path = get_config_path(path)

    # Start with default config
    config = get_default_config()

    if config_path.exists():
        config = merge_configs(config, read_config_file(config_path))
        logger.debug(f"Loaded configuration from {config_path}")
    elif path or required:
        raise ConfigError(f"Configuration file not found: {config_path}")

    # Apply environment variable overrides
    config = apply_env_overrides(config)

    return config


def save_config(config: Dict[str, Any], path: Optional[str] = None) -> Path:
    """Save configuration to file, choosing the format by suffix."""
    config_path = get_config_path(path)

    # Create directory if it doesn't exist
    config_path.parent.mkdir(parents=True, exist_ok=True)

    if config_path.suffix.lower() in ['.toml']:
        with open(config_path, 'w', encoding='utf-8') as f:
            toml.dump(config, f)
    elif config_path.suffix.lower() in ['.yaml', '.yml']:
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(config, f, default_flow_style=False, sort_keys=False)
    else:
        # Default to JSON format
        with open(config_path, 'w', encoding='utf-8') as f:
            json.dump(config, f, indent=4)
            f.write('\n')

    logger.info(f"Configuration saved to {config_path}")
    return config_path


def get_default_config() -> Dict[str, Any]:
    """Get default configuration."""
    return {
        "upstream": "",
        "upstreamBranch": "master",
        "repositoryFolder": "",
        "fileNameStrategy": "sourceName",
        "cacheLocation": "~/.idlsync/remote-cache",
        "idlDirectory": DEFAULT_IDL_DIRECTORY,
        "remotes": [],
        "general": {
            "max_concurrent_operations": 5,
            "git_timeout_seconds": 120,
            "git_user_name": "idlsync",
            "git_user_email": "idlsync@localhost"
        },
        "extraction": {
            "extensions": [".thrift"]
        },
        "aggregation": {
            "collision_policy": "first",
            "fail_on_collision": False
        },
        "publish": {
            "directory": "idl",
            "commit_message": "Update IDL registry",
            "allow_empty_commits": False,
            "push": True
        },
        "logging": {
            "level": "INFO",
            "format": "%(levelname)s: %(message)s"
        }
    }


def generate_config_example(path: Optional[str] = None) -> Path:
    """Write an example configuration file with two sample remotes."""
    config = get_default_config()
    config.update({
        "upstream": "git@github.com:example/idl-registry.git",
        "repositoryFolder": "./registry",
        "cacheLocation": "./remote-cache",
        "remotes": [
            {"repository": "git@github.com:example/users-service.git", "branch": "master"},
            {"repository": "git@github.com:example/billing-service.git", "branch": "release",
             "idlDirectory": "thrift"},
        ],
    })
    return save_config(config, path or LOCAL_CONFIG_FILENAME)


def merge_configs(base_config, override_config):
    """
    Recursively merge two configuration dictionaries.

    Args:
        base_config (dict): Base configuration
        override_config (dict): Configuration to merge/override with

    Returns:
        dict: Merged configuration
    """
    merged = base_config.copy()

    for key, value in override_config.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            # Recursively merge nested dictionaries
            merged[key] = merge_configs(merged[key], value)
        else:
            # Override or add new key
            merged[key] = value

    return merged


def apply_env_overrides(config):
    """
    Apply environment variable overrides to configuration.
    Environment variables follow the pattern: IDLSYNC_SECTION_SUBSECTION_KEY
    For example: IDLSYNC_PUBLISH_PUSH=false or IDLSYNC_UPSTREAMBRANCH=main
    """
    env_prefix = "IDLSYNC_"

    for env_key, value in os.environ.items():
        if not env_key.startswith(env_prefix) or env_key == 'IDLSYNC_CONFIG':
            continue

        key_parts = env_key[len(env_prefix):].lower().split('_')

        # Convert value
        if value.lower() in ('true', 'yes', 'on'):
            typed_value = True
        elif value.lower() in ('false', 'no', 'off'):
            typed_value = False
        elif value.isdigit():
            typed_value = int(value)
        else:
            typed_value = value

        current_level = config
        i = 0
        while i < len(key_parts):
            # Find the longest key in current_level that is a prefix of the remaining key_parts
            best_match_len = 0
            matched_key = None

            for config_key in current_level.keys():
                config_key_parts_from_key = config_key.lower().split('_')
                if key_parts[i : i + len(config_key_parts_from_key)] == config_key_parts_from_key:
                    if len(config_key_parts_from_key) > best_match_len:
                        best_match_len = len(config_key_parts_from_key)
                        matched_key = config_key

            if matched_key:
                # If we are at the end of the env var, we have found the key to set
                if i + best_match_len == len(key_parts):
                    current_level[matched_key] = typed_value
                    break

                # Otherwise, we descend into the dictionary
                if isinstance(current_level[matched_key], dict):
                    current_level = current_level[matched_key]
                    i += best_match_len
                else:
                    # Path conflict, e.g., env var is longer but we found a non-dict value
                    break
            else:
                # No match found
                break

    return config


# ---------------------------------------------------------------------------
# Typed settings

@dataclass
class SyncSettings:
    """Validated, typed view of the configuration consumed by the engine."""
    upstream: str
    repository_folder: Path
    cache_location: Path
    upstream_branch: str = "master"
    file_name_strategy: FileNameStrategy = FileNameStrategy.SOURCE_NAME
    sources: List[RemoteSource] = field(default_factory=list)
    extensions: Tuple[str, ...] = (".thrift",)
    collision_policy: CollisionPolicy = CollisionPolicy.FIRST
    fail_on_collision: bool = False
    publish_directory: str = "idl"
    commit_message: str = "Update IDL registry"
    allow_empty_commits: bool = False
    push: bool = True
    max_concurrent_operations: int = 5
    git_timeout_seconds: Optional[float] = 120
    git_user_name: str = "idlsync"
    git_user_email: str = "idlsync@localhost"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'upstream': self.upstream,
            'upstream_branch': self.upstream_branch,
            'repository_folder': str(self.repository_folder),
            'cache_location': str(self.cache_location),
            'file_name_strategy': self.file_name_strategy.value,
            'sources': [s.to_dict() for s in self.sources],
            'extensions': list(self.extensions),
            'collision_policy': self.collision_policy.value,
            'fail_on_collision': self.fail_on_collision,
            'publish_directory': self.publish_directory,
            'allow_empty_commits': self.allow_empty_commits,
            'push': self.push,
            'commit_message': self.commit_message,
            'max_concurrent_operations': self.max_concurrent_operations,
            'git_timeout_seconds': self.git_timeout_seconds,
            'git_user_name': self.git_user_name,
            'git_user_email': self.git_user_email,
        }


def _is_plain_path(location: str) -> bool:
    """True for filesystem paths (as opposed to URLs and scp-style remotes)."""
    if '://' in location:
        return False
    head = location.split('/', 1)[0]
    return ':' not in head or len(head.split(':', 1)[0]) == 1


def _resolve_path(value: Any, base_dir: Path, key: str) -> Path:
    if not value:
        raise ConfigError(f"'{key}' is required")
    path = Path(str(value)).expanduser()
    if not path.is_absolute():
        path = base_dir / path
    return path.resolve()


def _publish_directory(value: str) -> Optional[str]:
    """Normalised publish directory, or None if it would cover the repo root, .git or meta.json."""
    raw = [part for part in value.strip().split('/') if part]
    if not raw or any(part in ('.', '..', '.git') for part in raw):
        return None
    path = str(PurePosixPath(*raw))
    if path == META_FILENAME:
        return None
    return path


def _valid_source_name(name: str) -> bool:
    """A source name is one plain path segment; dot-names are reserved for temp clones."""
    return bool(name) and '/' not in name and '\\' not in name and not name.startswith('.')


def _resolve_location(value: str, base_dir: Path) -> str:
    """Resolve relative filesystem remotes; leave URLs alone."""
    if _is_plain_path(value):
        path = Path(value).expanduser()
        if not path.is_absolute():
            path = base_dir / path
        return str(path.resolve())
    return value


def _section(config: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = config.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{name}' must be a mapping")
    return value


def _extensions(values: Any) -> Tuple[str, ...]:
    if isinstance(values, str):
        values = [values]
    if not isinstance(values, list) or not values:
        raise ConfigError("'extraction.extensions' must be a non-empty list")
    normalized = []
    for ext in values:
        ext = str(ext).strip().lower()
        if not ext.startswith('.'):
            ext = f".{ext}"
        normalized.append(ext)
    return tuple(sorted(set(normalized)))


def build_settings(config: Dict[str, Any], base_dir: Optional[Path] = None) -> SyncSettings:
    """
    Convert a merged config dict into SyncSettings.

    Args:
        config: Configuration dict (defaults already merged)
        base_dir: Directory that relative paths resolve against

    Raises:
        ConfigError: On missing or invalid values
    """
    base_dir = (base_dir or Path.cwd()).resolve()

    upstream = str(config.get("upstream") or "")
    if not upstream:
        raise ConfigError("'upstream' is required")

    general = _section(config, "general")
    extraction = _section(config, "extraction")
    aggregation = _section(config, "aggregation")
    publish = _section(config, "publish")

    try:
        collision_policy = CollisionPolicy(str(aggregation.get("collision_policy", "first")).lower())
    except ValueError:
        raise ConfigError(
            f"Unknown aggregation.collision_policy '{aggregation.get('collision_policy')}'"
            " (expected 'first' or 'last')"
        )

    remotes = config.get("remotes") or []
    if not isinstance(remotes, list):
        raise ConfigError("'remotes' must be a list")

    default_idl_directory = str(config.get("idlDirectory") or DEFAULT_IDL_DIRECTORY)
    sources: List[RemoteSource] = []
    seen: Dict[str, str] = {}
    for index, entry in enumerate(remotes):
        if not isinstance(entry, dict) or not entry.get("repository"):
            raise ConfigError(f"remotes[{index}] must be a mapping with a 'repository'")
        entry = dict(entry)
        entry["repository"] = _resolve_location(str(entry["repository"]), base_dir)
        source = RemoteSource.from_config(entry, default_idl_directory)
        if not _valid_source_name(source.name):
            if entry.get("name"):
                raise ConfigError(f"remotes[{index}]: invalid name '{source.name}'")
            raise ConfigError(f"remotes[{index}]: cannot derive a name from '{source.repository}'")
        if source.name in seen:
            raise ConfigError(
                f"Duplicate source name '{source.name}' "
                f"({seen[source.name]} and {source.repository}); set 'name' explicitly"
            )
        seen[source.name] = source.repository
        sources.append(source)

    try:
        max_workers = int(general.get("max_concurrent_operations", 5))
    except (TypeError, ValueError):
        raise ConfigError("'general.max_concurrent_operations' must be an integer")

    timeout = general.get("git_timeout_seconds", 120)
    publish_directory = _publish_directory(str(publish.get("directory") or "idl"))
    if publish_directory is None:
        raise ConfigError(f"Invalid publish.directory '{publish.get('directory')}'")

    return SyncSettings(
        upstream=_resolve_location(upstream, base_dir),
        upstream_branch=str(config.get("upstreamBranch") or "master"),
        repository_folder=_resolve_path(config.get("repositoryFolder"), base_dir, "repositoryFolder"),
        cache_location=_resolve_path(config.get("cacheLocation"), base_dir, "cacheLocation"),
        file_name_strategy=FileNameStrategy.from_config(config.get("fileNameStrategy") or "sourceName"),
        sources=sources,
        extensions=_extensions(extraction.get("extensions", [".thrift"])),
        collision_policy=collision_policy,
        fail_on_collision=bool(aggregation.get("fail_on_collision", False)),
        publish_directory=publish_directory,
        commit_message=str(publish.get("commit_message") or "Update IDL registry"),
        allow_empty_commits=bool(publish.get("allow_empty_commits", False)),
        push=bool(publish.get("push", True)),
        max_concurrent_operations=max(1, max_workers),
        git_timeout_seconds=float(timeout) if timeout else None,
        git_user_name=str(general.get("git_user_name") or "idlsync"),
        git_user_email=str(general.get("git_user_email") or "idlsync@localhost"),
    )


def load_settings(path: Optional[str] = None) -> SyncSettings:
    """Load the config file and build settings relative to its directory."""
    config_path = get_config_path(path)
    config = load_config(path, required=True)
    return build_settings(config, base_dir=config_path.parent)
