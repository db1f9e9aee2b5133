"""TOML-based cluster and role configuration.

Loads ~/.nimbus/defaults.toml (global) and nimbus.toml (project),
merges them, and resolves named clusters into ClusterSpec instances
and ``[roles.*]`` tables into a HandlerRegistry.

    [clusters.hadoop]
    provider = "aws"
    instance-templates = "1 namenode+jobtracker, 3 datanode+tasktracker"
    private-key-file = "~/.ssh/id_rsa"

    [roles.namenode]
    configure = "apt-get install -y openjdk-17-jre"
    start = "start-dfs.sh"
"""

from __future__ import annotations

import dataclasses
import tomllib
from pathlib import Path
from typing import Any

from nimbus.api.spec import ClusterSpec, FirewallRule, InstanceTemplate
from nimbus.core.exceptions import ConfigurationError
from nimbus.service.handler import ClusterActionName, HandlerRegistry
from nimbus.service.script import ScriptRoleHandler

type RawConfig = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".nimbus" / "defaults.toml"
PROJECT_CONFIG_NAME = "nimbus.toml"

_SPEC_FIELDS = {f.name for f in dataclasses.fields(ClusterSpec)}


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_path = (project_dir or Path.cwd()) / PROJECT_CONFIG_NAME
    project_cfg = _read_toml(project_path)

    merged = _deep_merge(global_cfg, project_cfg)
    merged.setdefault("clusters", {})
    merged.setdefault("roles", {})
    return merged


def _key(name: str) -> str:
    return name.replace("-", "_")


def _read_text(path: str, what: str) -> str:
    try:
        return Path(path).expanduser().read_text()
    except OSError as e:
        raise ConfigurationError(f"Unable to read {what} {path}: {e}") from e


def _build_templates(raw: str | list[Any]) -> tuple[InstanceTemplate, ...]:
    if isinstance(raw, str):
        return InstanceTemplate.parse_all(raw)
    templates = []
    for entry in raw:
        if isinstance(entry, str):
            templates.append(InstanceTemplate.parse(entry))
            continue
        entry = {_key(k): v for k, v in entry.items()}
        roles = entry.pop("roles", ())
        if isinstance(roles, str):
            roles = roles.split("+")
        try:
            templates.append(InstanceTemplate(roles=frozenset(roles), **entry))
        except TypeError as e:
            raise ConfigurationError(f"Invalid instance template {entry}: {e}") from e
    return tuple(templates)


def _build_keys(raw: RawConfig) -> None:
    key_file = raw.get("private_key_file")
    if key_file is None:
        return
    raw.setdefault("private_key", _read_text(key_file, "private key"))

    public_file = raw.pop("public_key_file", None)
    if public_file is not None:
        raw.setdefault("public_key", _read_text(public_file, "public key"))
    elif "public_key" not in raw:
        default = Path(f"{key_file}.pub").expanduser()
        if default.is_file():
            raw["public_key"] = default.read_text()


def build_spec(name: str, raw_cluster: RawConfig) -> ClusterSpec:
    """Build a ClusterSpec from one ``[clusters.<name>]`` table.

    Raises:
        ConfigurationError: For unknown keys or invalid values.
    """
    raw = {_key(k): v for k, v in raw_cluster.items()}

    if "instance_templates" in raw:
        raw["instance_templates"] = _build_templates(raw["instance_templates"])
    if "firewall_rules" in raw:
        raw["firewall_rules"] = tuple(FirewallRule.parse(str(r)) for r in raw["firewall_rules"])
    _build_keys(raw)

    unknown = set(raw) - _SPEC_FIELDS
    if unknown:
        raise ConfigurationError(
            f"Unknown settings for cluster '{name}': {', '.join(sorted(unknown))}"
        )
    raw.setdefault("cluster_name", name)

    try:
        return ClusterSpec(**raw)
    except TypeError as e:
        raise ConfigurationError(f"Invalid settings for cluster '{name}': {e}") from e


def resolve_cluster(
    name: str,
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
    config: RawConfig | None = None,
) -> ClusterSpec:
    if config is None:
        config = load_config(project_dir=project_dir, global_path=global_path)

    clusters = config["clusters"]
    if name not in clusters:
        raise KeyError(f"Cluster '{name}' not found. Available: {', '.join(clusters) or 'none'}")
    return build_spec(name, clusters[name])


def build_handlers(config: RawConfig) -> HandlerRegistry:
    """One ScriptRoleHandler per ``[roles.<name>]`` table."""
    phases = {str(p) for p in ClusterActionName}
    handlers = []
    for role, raw_role in config.get("roles", {}).items():
        raw = dict(raw_role)
        depends_on = raw.pop("depends-on", raw.pop("depends_on", ()))
        if unknown := set(raw) - phases:
            raise ConfigurationError(
                f"Unknown settings for role '{role}': {', '.join(sorted(unknown))}. "
                f"Valid: {', '.join(sorted(phases))}, depends-on"
            )
        handlers.append(ScriptRoleHandler(role=role, scripts=raw, depends_on=tuple(depends_on)))
    return HandlerRegistry(handlers)
