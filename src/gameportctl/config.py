"""Configuration loader for gameportctl.

Configuration values are merged from multiple sources, later sources winning:

1. Built-in defaults.
2. ``/etc/gameportctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``GAMEPORTCTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export GAMEPORTCTL_APP__PORT=8080
    export GAMEPORTCTL_DEPLOY__ENABLED=false

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses`` for convenient access and type safety.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load gameportctl configuration. Install with "
        "`pip install gameportctl` or ensure PyYAML>=6.0 is available."
    ) from exc


ENV_PREFIX = "GAMEPORTCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class AppSettings:
    """Panel application settings written into the persisted config."""

    name: str = "GamePort"
    url: str | None = None
    port: int = 3000
    environment: str = "production"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "name": self.name,
            "url": self.url,
            "port": self.port,
            "environment": self.environment,
        }


@dataclass(frozen=True)
class DatabaseSettings:
    """Datastore connection and provisioning settings."""

    client: str = "mysql"
    host: str = "localhost"
    port: int = 3306
    user: str = "gameport"
    name: str = "gameport"
    provision: bool = True
    mysql_bin: str = "mysql"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "client": self.client,
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "name": self.name,
            "provision": self.provision,
            "mysql_bin": self.mysql_bin,
        }


@dataclass(frozen=True)
class CacheSettings:
    """Cache endpoint settings."""

    host: str = "localhost"
    port: int = 6379

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"host": self.host, "port": self.port}


@dataclass(frozen=True)
class OrchestrationSettings:
    """Container runtime settings."""

    socket: Path = Path("/var/run/docker.sock")
    group: str = "docker"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"socket": str(self.socket), "group": self.group}


@dataclass(frozen=True)
class DeploySettings:
    """Application checkout, dependency and migration settings."""

    enabled: bool = True
    repository: str = "https://github.com/gameport/gameport.git"
    migrate: bool = True
    git_bin: str = "git"
    npm_bin: str = "npm"
    node_bin: str = "/usr/bin/node"
    entry_point: str = "index.js"
    cli_script: str = "scripts/gameport-cli.js"
    cli_link: Path = Path("/usr/local/bin/gameport-cli")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "enabled": self.enabled,
            "repository": self.repository,
            "migrate": self.migrate,
            "git_bin": self.git_bin,
            "npm_bin": self.npm_bin,
            "node_bin": self.node_bin,
            "entry_point": self.entry_point,
            "cli_script": self.cli_script,
            "cli_link": str(self.cli_link),
        }


@dataclass(frozen=True)
class PackagesConfig:
    """System package reconciliation settings."""

    skip: bool = False
    extra: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"skip": self.skip, "extra": list(self.extra)}


@dataclass(frozen=True)
class SystemdConfig:
    """Systemd integration configuration values."""

    unit_dir: Path = Path("/etc/systemd/system")
    systemctl_bin: str = "systemctl"
    export_signing_secret: bool = True

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "unit_dir": str(self.unit_dir),
            "systemctl_bin": self.systemctl_bin,
            "export_signing_secret": self.export_signing_secret,
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for gameportctl."""

    config_file: Path
    service_name: str
    service_user: str
    service_group: str
    install_root: Path
    data_root: Path
    config_root: Path
    log_root: Path
    state_dir: Path
    logs_dir: Path
    templates_dir: Path
    app: AppSettings
    database: DatabaseSettings
    cache: CacheSettings
    orchestration: OrchestrationSettings
    deploy: DeploySettings
    packages: PackagesConfig
    systemd: SystemdConfig

    @property
    def panel_config_path(self) -> Path:
        """Return the path of the persisted panel configuration."""
        return self.config_root / "config.json"

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "service_name": self.service_name,
            "service_user": self.service_user,
            "service_group": self.service_group,
            "install_root": str(self.install_root),
            "data_root": str(self.data_root),
            "config_root": str(self.config_root),
            "log_root": str(self.log_root),
            "state_dir": str(self.state_dir),
            "logs_dir": str(self.logs_dir),
            "templates_dir": str(self.templates_dir),
            "app": self.app.to_dict(),
            "database": self.database.to_dict(),
            "cache": self.cache.to_dict(),
            "orchestration": self.orchestration.to_dict(),
            "deploy": self.deploy.to_dict(),
            "packages": self.packages.to_dict(),
            "systemd": self.systemd.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/gameportctl/config.yml",
    "service_name": "gameport",
    "service_user": "gameport",
    "service_group": None,  # derived from service_user when absent
    "install_root": "/opt/gameport",
    "data_root": "/var/lib/gameport",
    "config_root": "/etc/gameport",
    "log_root": "/var/log/gameport",
    "state_dir": "/var/lib/gameportctl",
    "logs_dir": "/var/log/gameportctl",
    "templates_dir": "/etc/gameportctl/templates",
    "app": {
        "name": "GamePort",
        "url": None,
        "port": 3000,
        "environment": "production",
    },
    "database": {
        "client": "mysql",
        "host": "localhost",
        "port": 3306,
        "user": "gameport",
        "name": "gameport",
        "provision": True,
        "mysql_bin": "mysql",
    },
    "cache": {
        "host": "localhost",
        "port": 6379,
    },
    "orchestration": {
        "socket": "/var/run/docker.sock",
        "group": "docker",
    },
    "deploy": {
        "enabled": True,
        "repository": "https://github.com/gameport/gameport.git",
        "migrate": True,
        "git_bin": "git",
        "npm_bin": "npm",
        "node_bin": "/usr/bin/node",
        "entry_point": "index.js",
        "cli_script": "scripts/gameport-cli.js",
        "cli_link": "/usr/local/bin/gameport-cli",
    },
    "packages": {
        "skip": False,
        "extra": [],
    },
    "systemd": {
        "unit_dir": "/etc/systemd/system",
        "systemctl_bin": "systemctl",
        "export_signing_secret": True,
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_SECTION_KEYS: dict[str, set[str]] = {
    section: set(values.keys())
    for section, values in DEFAULTS.items()
    if isinstance(values, Mapping)
}
ALLOWED_DATABASE_CLIENTS = {"mysql"}
ALLOWED_ENVIRONMENTS = {"production", "development", "staging"}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    try:
        if not path.exists():
            return {}
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Cannot read config file {path}: {exc}") from exc
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in ALLOWED_SECTION_KEYS.items():
        mapping = _as_dict(raw.get(section), section)
        unknown = set(mapping.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    database = _as_dict(raw.get("database"), "database")
    client = database.get("client")
    if client is not None and str(client) not in ALLOWED_DATABASE_CLIENTS:
        allowed_clients = ", ".join(sorted(ALLOWED_DATABASE_CLIENTS))
        raise ConfigError(
            f"Unsupported database client '{client}'. Allowed: {allowed_clients}."
        )

    app = _as_dict(raw.get("app"), "app")
    environment = app.get("environment")
    if environment is not None and str(environment) not in ALLOWED_ENVIRONMENTS:
        allowed_envs = ", ".join(sorted(ALLOWED_ENVIRONMENTS))
        raise ConfigError(
            f"Unsupported app environment '{environment}'. Allowed: {allowed_envs}."
        )

    for label, value in (("app.port", app.get("port")), ("database.port", database.get("port"))):
        _expect_port(value, label)
    _expect_port(_as_dict(raw.get("cache"), "cache").get("port"), "cache.port")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    service_user = _expect_str(raw.get("service_user"), "service_user").strip()
    if not service_user:
        raise ConfigError("service_user must be a non-empty string.")
    group_value = raw.get("service_group")
    service_group = str(group_value).strip() if group_value else service_user

    service_name = _expect_str(raw.get("service_name"), "service_name").strip()
    if not service_name or "/" in service_name:
        raise ConfigError("service_name must be a non-empty name without '/'.")

    app_mapping = _as_dict(raw.get("app"), "app")
    url_value = app_mapping.get("url")
    app = AppSettings(
        name=str(app_mapping.get("name", "GamePort")),
        url=str(url_value) if url_value else None,
        port=_expect_port(app_mapping.get("port"), "app.port", default=3000),
        environment=str(app_mapping.get("environment", "production")),
    )

    database_mapping = _as_dict(raw.get("database"), "database")
    database = DatabaseSettings(
        client=str(database_mapping.get("client", "mysql")),
        host=str(database_mapping.get("host", "localhost")),
        port=_expect_port(database_mapping.get("port"), "database.port", default=3306),
        user=str(database_mapping.get("user", "gameport")),
        name=str(database_mapping.get("name", "gameport")),
        provision=_expect_bool(database_mapping.get("provision"), "database.provision", True),
        mysql_bin=str(database_mapping.get("mysql_bin", "mysql")),
    )

    cache_mapping = _as_dict(raw.get("cache"), "cache")
    cache = CacheSettings(
        host=str(cache_mapping.get("host", "localhost")),
        port=_expect_port(cache_mapping.get("port"), "cache.port", default=6379),
    )

    orchestration_mapping = _as_dict(raw.get("orchestration"), "orchestration")
    orchestration = OrchestrationSettings(
        socket=_to_path(orchestration_mapping.get("socket", "/var/run/docker.sock")),
        group=str(orchestration_mapping.get("group", "docker")),
    )

    deploy_mapping = _as_dict(raw.get("deploy"), "deploy")
    deploy = DeploySettings(
        enabled=_expect_bool(deploy_mapping.get("enabled"), "deploy.enabled", True),
        repository=str(deploy_mapping.get("repository", DeploySettings.repository)),
        migrate=_expect_bool(deploy_mapping.get("migrate"), "deploy.migrate", True),
        git_bin=str(deploy_mapping.get("git_bin", "git")),
        npm_bin=str(deploy_mapping.get("npm_bin", "npm")),
        node_bin=str(deploy_mapping.get("node_bin", "/usr/bin/node")),
        entry_point=str(deploy_mapping.get("entry_point", "index.js")),
        cli_script=str(deploy_mapping.get("cli_script", "scripts/gameport-cli.js")),
        cli_link=_to_path(deploy_mapping.get("cli_link", "/usr/local/bin/gameport-cli")),
    )

    packages_mapping = _as_dict(raw.get("packages"), "packages")
    extra_raw = packages_mapping.get("extra")
    extra: tuple[str, ...] = ()
    if extra_raw is not None:
        extra = tuple(str(item) for item in _as_sequence(extra_raw, "packages.extra"))
    packages = PackagesConfig(
        skip=_expect_bool(packages_mapping.get("skip"), "packages.skip", False),
        extra=extra,
    )

    systemd_mapping = _as_dict(raw.get("systemd"), "systemd")
    systemd = SystemdConfig(
        unit_dir=_to_path(systemd_mapping.get("unit_dir", "/etc/systemd/system")),
        systemctl_bin=str(systemd_mapping.get("systemctl_bin", "systemctl")),
        export_signing_secret=_expect_bool(
            systemd_mapping.get("export_signing_secret"),
            "systemd.export_signing_secret",
            True,
        ),
    )

    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        service_name=service_name,
        service_user=service_user,
        service_group=service_group,
        install_root=_to_path(raw.get("install_root")),
        data_root=_to_path(raw.get("data_root")),
        config_root=_to_path(raw.get("config_root")),
        log_root=_to_path(raw.get("log_root")),
        state_dir=_to_path(raw.get("state_dir")),
        logs_dir=_to_path(raw.get("logs_dir")),
        templates_dir=_to_path(raw.get("templates_dir")),
        app=app,
        database=database,
        cache=cache,
        orchestration=orchestration,
        deploy=deploy,
        packages=packages,
        systemd=systemd,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    if not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_port(value: object | None, label: str, *, default: int = 1) -> int:
    port = _expect_int(value, label, default=default)
    if not 0 < port < 65536:
        raise ConfigError(f"{label} must be between 1 and 65535. Got {port}.")
    return port


def _expect_bool(value: object | None, label: str, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    raise ConfigError(f"Expected {label} to be a boolean. Got {value!r}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "AppSettings",
    "CacheSettings",
    "ConfigError",
    "DatabaseSettings",
    "DeploySettings",
    "OrchestrationSettings",
    "PackagesConfig",
    "SystemdConfig",
    "load_config",
]
