# Copyright NTESS. See COPYRIGHT file for details.
#
# SPDX-License-Identifier: MIT
"""Scoped configuration.

Settings are read, lowest precedence first, from the builtin defaults, the site, global and local
yaml files, ``GANGSCHED_*`` environment variables and ``-c`` command line options.  Every file
holds a single ``gangsched`` mapping whose sections are validated by the schemas in
``gangsched.schemas``.  Values are addressed by colon separated paths: ``scheduler:retries``.
"""
import argparse
import logging
import os
import sys
from typing import IO
from typing import Any
from typing import Iterable

import schema
import yaml

from .pluginmanager import GangSchedPluginManager
from .schemas import config_schema
from .schemas import environment_variable_schema
from .schemas import kubernetes_schema
from .schemas import scheduler_schema
from .util import collections
from .util import safe_loads
from .util import strip_quotes

logger = logging.getLogger("gangsched.config")

top_level_key = "gangsched"

section_schemas: dict[str, schema.Schema] = {
    "config": config_schema,
    "scheduler": scheduler_schema,
    "kubernetes": kubernetes_schema,
}

file_scopes = ("site", "global", "local")
read_only_scopes = ("defaults", "environment", "command_line")


def default_config() -> dict[str, Any]:
    return {
        "config": {"debug": False, "plugins": []},
        "scheduler": {"enable": True, "default": None, "retries": 3},
        "kubernetes": {
            "kubeconfig": None,
            "context": None,
            "in_cluster": False,
            "request_timeout": None,
        },
    }


def validate_section(section: str, data: Any) -> Any:
    if section not in section_schemas:
        raise KeyError(f"Unknown config section {section!r}")
    return section_schemas[section].validate(data)


class ConfigScope:
    """Validated settings of one scope, backed by ``file`` unless the scope is in-memory"""

    def __init__(self, name: str, file: str | None, data: dict[str, Any]) -> None:
        self.name = name
        self.file = file
        self.data: dict[str, Any] = {s: validate_section(s, d) for s, d in data.items()}

    def __repr__(self):
        return f"ConfigScope({self.name}: {self.file or '<none>'})"

    def __eq__(self, other):
        if not isinstance(other, ConfigScope):
            return False
        return (self.name, self.file, self.data) == (other.name, other.file, other.data)

    def __iter__(self):
        return iter(self.data)

    def __contains__(self, section: str) -> bool:
        return section in self.data

    def get_section(self, section: str) -> Any:
        return self.data.get(section)

    def set_section(self, section: str, data: dict[str, Any]) -> None:
        self.data[section] = validate_section(section, data)

    def write(self) -> None:
        if self.file is None:
            return
        logger.debug(f"writing {self.name} configuration to {self.file}")
        with open(self.file, "w") as fh:
            yaml.dump({top_level_key: self.data}, fh, default_flow_style=False)


class Config:
    def __init__(self) -> None:
        self.pluginmanager = GangSchedPluginManager()
        self.scopes: dict[str, ConfigScope] = {}
        self.push_scope(ConfigScope("defaults", None, default_config()))
        for name in file_scopes:
            self.push_scope(read_config_scope(name))
        if scope := read_env_config():
            self.push_scope(scope)
        if self.get("config:debug"):
            set_logging_level("debug")

    def push_scope(self, scope: ConfigScope) -> None:
        """Add ``scope`` with higher precedence than the scopes already present"""
        self.scopes[scope.name] = scope
        section = scope.get_section("config") or {}
        for name in section.get("plugins") or []:
            self.pluginmanager.consider_plugin(name)

    def pop_scope(self, scope: ConfigScope) -> ConfigScope | None:
        return self.scopes.pop(scope.name, None)

    def iter_scopes(self, scope: str | None = None) -> Iterable[ConfigScope]:
        if scope is None:
            return list(self.scopes.values())
        return [self.validate_scope(scope)]

    def get_config(self, section: str, scope: str | None = None) -> dict[str, Any]:
        """``section`` merged over all scopes (or taken from ``scope`` only), as a new dict"""
        merged: dict[str, Any] = {}
        for config_scope in self.iter_scopes(scope):
            data = config_scope.get_section(section)
            if isinstance(data, dict) and data:
                merged = collections.merge(merged, data)
        return merged

    def get(self, path: str, default: Any = None, scope: str | None = None) -> Any:
        section, *keys = process_config_path(path)
        value: Any = self.get_config(section, scope=scope)
        for key in keys:
            if not isinstance(value, dict) or key not in value:
                return default
            value = value[key]
        return value

    def get_highest_priority(self, path: str, default: Any = None) -> tuple[Any, str]:
        """Value of ``path`` and the name of the highest precedence scope that sets it"""
        missing = object()
        for name in reversed(list(self.scopes)):
            value = self.get(path, default=missing, scope=name)
            if value is not missing:
                return value, name
        return default, "none"

    def set(self, path: str, value: Any, scope: str | None = None) -> None:
        section, *keys = process_config_path(path)
        if not keys:
            self.update_config(section, value, scope=scope)
            return
        data = self.get_config(section, scope=scope)
        node = data
        for key in keys[:-1]:
            child = node.get(key)
            node[key] = dict(child) if isinstance(child, dict) else {}
            node = node[key]
        node[keys[-1]] = value
        self.update_config(section, data, scope=scope)

    def add(self, fullpath: str, scope: str | None = None) -> None:
        """Add the value at the end of ``fullpath`` to the current value: lists are extended,
        mappings merged and anything else replaced"""
        *keys, text = process_config_path(fullpath)
        if not keys:
            raise ValueError(f"No value in config path {fullpath!r}")
        existing: Any = None
        for i in range(1, len(keys) + 1):
            path = ":".join(keys[:i])
            if self.get(path, scope=scope) is None:
                value = safe_loads(text)
                for key in reversed(keys[i:]):
                    value = {key: value}
                break
        else:
            path = ":".join(keys)
            value = safe_loads(strip_quotes(text))
            existing = self.get(path, scope=scope)
        if isinstance(existing, list) and not isinstance(value, list):
            value = [value]
        self.set(path, collections.merge(existing, value), scope=scope)

    def highest_precedence_scope(self) -> ConfigScope:
        """File backed scope with highest precedence"""
        return [scope for scope in self.scopes.values() if scope.file is not None][-1]

    def validate_scope(self, scope: str | None) -> ConfigScope:
        if scope is None:
            return self.highest_precedence_scope()
        if scope not in self.scopes and scope == "internal":
            self.scopes["internal"] = ConfigScope("internal", None, {})
        if scope not in self.scopes:
            raise ValueError(f"Invalid scope {scope!r}")
        return self.scopes[scope]

    def update_config(self, section: str, data: dict[str, Any], scope: str | None = None):
        """Replace ``section`` of ``scope`` with ``data`` and write the scope's file.

        Args:
            section (str): section of the configuration to be replaced
            data (dict): new content of the section
            scope (str): scope to be updated, the highest precedence file scope by default
        """
        config_scope = self.validate_scope(scope)
        if config_scope.name in read_only_scopes:
            raise ValueError(f"Config scope {config_scope.name!r} is read only")
        config_scope.set_section(section, dict(data))
        config_scope.write()

    def set_main_options(self, args: argparse.Namespace) -> None:
        """Push the ``-c section:key:value`` options in ``args`` as the ``command_line`` scope"""
        if not args.config_mods:
            return
        data: dict[str, Any] = {}
        for fullpath in args.config_mods:
            *keys, text = process_config_path(fullpath)
            if len(keys) < 2:
                raise ValueError(f"Expected section:key:value, got {fullpath!r}")
            node = data
            for key in keys[:-1]:
                node = node.setdefault(key, {})
            node[keys[-1]] = safe_loads(text)
        self.push_scope(ConfigScope("command_line", None, data))
        if self.get("config:debug", scope="command_line"):
            set_logging_level("debug")

    def scheduler_options(self, name: str) -> dict[str, Any]:
        """Options of the ``scheduler:<name>`` table, empty if the backend has none"""
        value = self.get(f"scheduler:{name}")
        return dict(value) if isinstance(value, dict) else {}

    def dump(self, stream: IO[Any], scope: str | None = None, **kwargs: Any) -> None:
        data: dict[str, Any] = {}
        for section in section_schemas:
            section_data = self.get_config(section, scope=scope)
            if section_data or scope is None:
                data[section] = section_data
        yaml.dump({top_level_key: data}, stream, **kwargs)


def read_config_scope(scope: str) -> ConfigScope:
    file = get_scope_filename(scope)
    data: dict[str, Any] = {}
    if file is not None and (contents := read_config_file(file)):
        if top_level_key not in contents:
            raise KeyError(f"{file}: missing top level key {top_level_key!r}")
        data.update(contents[top_level_key] or {})
    return ConfigScope(scope, file, data)


def get_scope_filename(scope: str) -> str | None:
    if scope == "site":
        default = os.path.join(sys.prefix, "etc/gangsched/config.yaml")
        return os.getenv("GANGSCHED_SITE_CONFIG") or default
    if scope == "global":
        if var := os.getenv("GANGSCHED_GLOBAL_CONFIG"):
            return var
        if xdg := os.getenv("XDG_CONFIG_HOME"):
            file = os.path.join(xdg, "gangsched/config.yaml")
            if os.path.exists(file):
                return file
        return os.path.expanduser("~/.config/gangsched.yaml")
    if scope == "local":
        return os.path.abspath("gangsched.yaml")
    raise ValueError(f"Could not determine filename for scope {scope!r}")


def read_env_config() -> ConfigScope | None:
    variables = {k: v for k, v in os.environ.items() if k.startswith("GANGSCHED_")}
    if data := environment_variable_schema.validate(variables):
        return ConfigScope("environment", None, data)
    return None


def read_config_file(file: str) -> dict[str, Any] | None:
    if not os.path.exists(file):
        return None
    with open(file) as fh:
        return yaml.safe_load(fh)


def process_config_path(path: str) -> list[str]:
    """Split ``path`` at colons; a part starting with ``{`` or ``[`` is a value and ends the path"""
    if path.startswith(":"):
        raise ValueError(f"Illegal leading ':' in path {path}")
    parts: list[str] = []
    rest = path
    while rest:
        if parts and rest.startswith(("{", "[")):
            parts.append(rest)
            break
        head, _, rest = rest.partition(":")
        parts.append(head)
    return parts


def set_logging_level(levelname: str) -> None:
    from .logging import set_logging_level as _set_logging_level

    _set_logging_level(levelname)
