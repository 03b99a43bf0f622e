# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

"""Transforms applied to rendered user data before it reaches the instance.

A postprocessor is a plain function from text to text. They are looked up by
the name found in the user-data secret, see ``POSTPROCESSORS``.

The ``ct`` postprocessor translates a YAML Container Linux Config into an
Ignition 2.2.0 JSON document. Every problem found while translating is
collected into a report, and a non-empty report rejects the user data.
"""

import json
import logging
import posixpath
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Type
from urllib.parse import quote

import yaml

from openstack_machine.errors import PostprocessorError, UnknownPostprocessorError

log = logging.getLogger(__name__)

IGNITION_VERSION = "2.2.0"
DEFAULT_FILESYSTEM = "root"

Postprocessor = Callable[[str], str]


@dataclass
class Entry:
    """A single finding of a translation.

    Attributes:
        kind: "error" or "warning"
        path: dotted location of the offending value
        message: description of the problem
    """

    kind: str
    path: str
    message: str

    def __str__(self) -> str:
        """Format the entry like a compiler diagnostic."""
        where = f"{self.path}: " if self.path else ""
        return f"{self.kind}: {where}{self.message}"


@dataclass
class Report:
    """Findings collected while translating a config."""

    entries: List[Entry] = field(default_factory=list)

    def error(self, path: str, message: str) -> None:
        """Record an error."""
        self.entries.append(Entry("error", path, message))

    def warning(self, path: str, message: str) -> None:
        """Record a warning."""
        self.entries.append(Entry("warning", path, message))

    def __str__(self) -> str:
        """Join all entries, one per line."""
        return "\n".join(str(e) for e in self.entries)


class _Translator:
    """Walks a Container Linux Config and builds the Ignition equivalent."""

    def __init__(self, report: Report):
        self.report = report

    def _mapping(self, value: Any, path: str, known: Tuple[str, ...]) -> Dict[str, Any]:
        if value is None:
            return {}
        if not isinstance(value, dict):
            self.report.error(path, f"expected a mapping, got {type(value).__name__}")
            return {}
        for key in value:
            if key not in known:
                self.report.warning(path, f"Config has unrecognized key: {key}")
        return value

    def _list(self, value: Any, path: str) -> List[Any]:
        if value is None:
            return []
        if not isinstance(value, list):
            self.report.error(path, f"expected a list, got {type(value).__name__}")
            return []
        return value

    def _typed(self, value: Any, path: str, kind: Type, required: bool = False) -> Any:
        if value is None:
            if required:
                self.report.error(path, "is required")
            return None
        # bool is an int, but not a valid one here
        if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
            self.report.error(path, f"expected {kind.__name__}, got {type(value).__name__}")
            return None
        return value

    def _strings(self, value: Any, path: str) -> List[str]:
        return [
            s
            for i, item in enumerate(self._list(value, path))
            if (s := self._typed(item, f"{path}.{i}", str)) is not None
        ]

    def translate(self, config: Any) -> Dict[str, Any]:
        config = self._mapping(
            config, "", ("ignition", "passwd", "storage", "systemd", "networkd")
        )
        return {
            "ignition": self._ignition(config.get("ignition")),
            "networkd": self._networkd(config.get("networkd")),
            "passwd": self._passwd(config.get("passwd")),
            "storage": self._storage(config.get("storage")),
            "systemd": self._systemd(config.get("systemd")),
        }

    def _verification(self, value: Any, path: str) -> Dict[str, str]:
        verification = self._mapping(value, path, ("hash",))
        digest = self._mapping(verification.get("hash"), f"{path}.hash", ("function", "sum"))
        if not digest:
            return {}
        function = self._typed(digest.get("function"), f"{path}.hash.function", str, True)
        checksum = self._typed(digest.get("sum"), f"{path}.hash.sum", str, True)
        if function not in (None, "sha512"):
            self.report.error(f"{path}.hash.function", f"unsupported hash function: {function}")
        if function and checksum:
            return {"hash": f"{function}-{checksum}"}
        return {}

    def _config_reference(self, value: Any, path: str) -> Dict[str, Any]:
        ref = self._mapping(value, path, ("source", "verification"))
        return {
            "source": self._typed(ref.get("source"), f"{path}.source", str, True),
            "verification": self._verification(ref.get("verification"), f"{path}.verification"),
        }

    def _ignition(self, value: Any) -> Dict[str, Any]:
        ignition = self._mapping(value, "ignition", ("config",))
        config = self._mapping(ignition.get("config"), "ignition.config", ("append", "replace"))
        out: Dict[str, Any] = {}
        if appends := self._list(config.get("append"), "ignition.config.append"):
            out["append"] = [
                self._config_reference(ref, f"ignition.config.append.{i}")
                for i, ref in enumerate(appends)
            ]
        if config.get("replace") is not None:
            out["replace"] = self._config_reference(config["replace"], "ignition.config.replace")
        return {
            "config": out,
            "security": {"tls": {}},
            "timeouts": {},
            "version": IGNITION_VERSION,
        }

    _USER_FIELDS = {
        "password_hash": ("passwordHash", str),
        "uid": ("uid", int),
        "gecos": ("gecos", str),
        "home_dir": ("homeDir", str),
        "no_create_home": ("noCreateHome", bool),
        "primary_group": ("primaryGroup", str),
        "no_user_group": ("noUserGroup", bool),
        "no_log_init": ("noLogInit", bool),
        "shell": ("shell", str),
        "system": ("system", bool),
    }

    def _passwd(self, value: Any) -> Dict[str, Any]:
        passwd = self._mapping(value, "passwd", ("users",))
        users = []
        for i, raw in enumerate(self._list(passwd.get("users"), "passwd.users")):
            path = f"passwd.users.{i}"
            user = self._mapping(
                raw, path, ("name", "ssh_authorized_keys", "groups", *self._USER_FIELDS)
            )
            name = self._typed(user.get("name"), f"{path}.name", str, True)
            out: Dict[str, Any] = {"name": name}
            for key, (target, kind) in self._USER_FIELDS.items():
                if (v := self._typed(user.get(key), f"{path}.{key}", kind)) is not None:
                    out[target] = v
            keys = self._strings(user.get("ssh_authorized_keys"), f"{path}.ssh_authorized_keys")
            if keys:
                out["sshAuthorizedKeys"] = keys
            if groups := self._strings(user.get("groups"), f"{path}.groups"):
                out["groups"] = groups
            users.append(out)
        return {"users": users} if users else {}

    def _path(self, value: Any, path: str) -> Optional[str]:
        if (p := self._typed(value, path, str, True)) is not None and not posixpath.isabs(p):
            self.report.error(path, f"path not absolute: {p}")
        return p

    def _owner(self, value: Any, path: str) -> Dict[str, Any]:
        owner = self._mapping(value, path, ("id", "name"))
        out: Dict[str, Any] = {}
        if (uid := self._typed(owner.get("id"), f"{path}.id", int)) is not None:
            out["id"] = uid
        if (name := self._typed(owner.get("name"), f"{path}.name", str)) is not None:
            out["name"] = name
        if len(out) > 1:
            self.report.error(path, "cannot set both id and name")
        return out

    def _node(self, raw: Dict[str, Any], path: str) -> Dict[str, Any]:
        fs = self._typed(raw.get("filesystem"), f"{path}.filesystem", str)
        return {
            "filesystem": fs or DEFAULT_FILESYSTEM,
            "path": self._path(raw.get("path"), f"{path}.path"),
            "user": self._owner(raw.get("user"), f"{path}.user"),
            "group": self._owner(raw.get("group"), f"{path}.group"),
        }

    def _contents(self, value: Any, path: str) -> Dict[str, Any]:
        contents = self._mapping(value, path, ("inline", "remote"))
        inline = self._typed(contents.get("inline"), f"{path}.inline", str)
        remote = self._mapping(
            contents.get("remote"), f"{path}.remote", ("url", "compression", "verification")
        )
        if inline is not None and remote:
            self.report.error(path, "cannot specify both inline and remote contents")
        if remote:
            out = {
                "source": self._typed(remote.get("url"), f"{path}.remote.url", str, True),
                "verification": self._verification(
                    remote.get("verification"), f"{path}.remote.verification"
                ),
            }
            if compression := self._typed(
                remote.get("compression"), f"{path}.remote.compression", str
            ):
                out["compression"] = compression
            return out
        return {"source": "data:," + quote(inline or "", safe=""), "verification": {}}

    def _storage(self, value: Any) -> Dict[str, Any]:
        storage = self._mapping(value, "storage", ("files", "directories", "links"))
        out: Dict[str, Any] = {}

        files = []
        for i, raw in enumerate(self._list(storage.get("files"), "storage.files")):
            path = f"storage.files.{i}"
            spec = self._mapping(
                raw, path, ("path", "filesystem", "mode", "user", "group", "contents", "append")
            )
            entry = self._node(spec, path)
            entry["contents"] = self._contents(spec.get("contents"), f"{path}.contents")
            if (mode := self._typed(spec.get("mode"), f"{path}.mode", int)) is not None:
                entry["mode"] = mode
            if self._typed(spec.get("append"), f"{path}.append", bool):
                entry["append"] = True
            files.append(entry)
        if files:
            out["files"] = files

        directories = []
        for i, raw in enumerate(self._list(storage.get("directories"), "storage.directories")):
            path = f"storage.directories.{i}"
            spec = self._mapping(raw, path, ("path", "filesystem", "mode", "user", "group"))
            entry = self._node(spec, path)
            if (mode := self._typed(spec.get("mode"), f"{path}.mode", int)) is not None:
                entry["mode"] = mode
            directories.append(entry)
        if directories:
            out["directories"] = directories

        links = []
        for i, raw in enumerate(self._list(storage.get("links"), "storage.links")):
            path = f"storage.links.{i}"
            spec = self._mapping(
                raw, path, ("path", "filesystem", "target", "hard", "user", "group")
            )
            entry = self._node(spec, path)
            entry["target"] = self._typed(spec.get("target"), f"{path}.target", str, True)
            if self._typed(spec.get("hard"), f"{path}.hard", bool):
                entry["hard"] = True
            links.append(entry)
        if links:
            out["links"] = links
        return out

    def _unit_contents(self, spec: Dict[str, Any], path: str, out: Dict[str, Any]) -> None:
        out["name"] = self._typed(spec.get("name"), f"{path}.name", str, True)
        if (contents := self._typed(spec.get("contents"), f"{path}.contents", str)) is not None:
            out["contents"] = contents

    def _systemd(self, value: Any) -> Dict[str, Any]:
        systemd = self._mapping(value, "systemd", ("units",))
        units = []
        for i, raw in enumerate(self._list(systemd.get("units"), "systemd.units")):
            path = f"systemd.units.{i}"
            spec = self._mapping(raw, path, ("name", "enabled", "mask", "contents", "dropins"))
            unit: Dict[str, Any] = {}
            self._unit_contents(spec, path, unit)
            if (enabled := self._typed(spec.get("enabled"), f"{path}.enabled", bool)) is not None:
                unit["enabled"] = enabled
            if self._typed(spec.get("mask"), f"{path}.mask", bool):
                unit["mask"] = True
            dropins = []
            for j, raw_dropin in enumerate(self._list(spec.get("dropins"), f"{path}.dropins")):
                dropin_path = f"{path}.dropins.{j}"
                dropin: Dict[str, Any] = {}
                self._unit_contents(
                    self._mapping(raw_dropin, dropin_path, ("name", "contents")),
                    dropin_path,
                    dropin,
                )
                dropins.append(dropin)
            if dropins:
                unit["dropins"] = dropins
            units.append(unit)
        return {"units": units} if units else {}

    def _networkd(self, value: Any) -> Dict[str, Any]:
        networkd = self._mapping(value, "networkd", ("units",))
        units = []
        for i, raw in enumerate(self._list(networkd.get("units"), "networkd.units")):
            path = f"networkd.units.{i}"
            unit: Dict[str, Any] = {}
            self._unit_contents(self._mapping(raw, path, ("name", "contents")), path, unit)
            units.append(unit)
        return {"units": units} if units else {}


def container_linux_config(text: str) -> str:
    """Translate a Container Linux Config into Ignition JSON.

    Args:
        text: the config as YAML, empty text is an empty config

    Returns:
        the Ignition config, serialised as compact JSON

    Raises:
        PostprocessorError: if the config is not valid YAML or the
            translation reports any entry
    """
    report = Report()
    try:
        config = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise PostprocessorError(f"Postprocessor error: {e}") from e

    ignition = _Translator(report).translate(config)
    if report.entries:
        raise PostprocessorError(f"Postprocessor error: {report}")
    return json.dumps(ignition, sort_keys=True, separators=(",", ":"))


POSTPROCESSORS: Dict[str, Postprocessor] = {
    "ct": container_linux_config,
}


def apply(name: str, text: str, registry: Optional[Mapping[str, Postprocessor]] = None) -> str:
    """Run the postprocessor called ``name`` over ``text``.

    Args:
        name: name of the postprocessor
        text: rendered user data
        registry: postprocessors to choose from, defaults to ``POSTPROCESSORS``

    Returns:
        the transformed user data

    Raises:
        UnknownPostprocessorError: if no postprocessor has that name
        PostprocessorError: if the postprocessor rejects the user data
    """
    registry = POSTPROCESSORS if registry is None else registry
    if (postprocessor := registry.get(name)) is None:
        raise UnknownPostprocessorError(f"Postprocessor error: unknown postprocessor: '{name}'")
    log.info("Postprocessing user data with %s", name)
    return postprocessor(text)
