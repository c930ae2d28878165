"""Parsing of YAML manifest files into kfg resources."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml

from kfg.manifest import (
    SUPPORTED_KINDS,
    Cmd,
    CmdWorkflow,
    ManifestParseError,
    ManifestValidationError,
    ResourceIdentity,
    Step,
)

_YAML_EXTENSIONS = (".yaml", ".yml")
_ENV_REFERENCE = re.compile(r"\$(?:\{([^}]*)\}|([A-Za-z0-9_]+))")


@dataclass
class ParsedResource:
    """A parsed resource of any supported kind; at most one field is set."""

    step: Step | None = None
    cmd: Cmd | None = None
    cmd_workflow: CmdWorkflow | None = None

    def _resource(self) -> Step | Cmd | CmdWorkflow | None:
        return self.step or self.cmd or self.cmd_workflow

    def kind(self) -> str:
        """Return the resource kind, or an empty string if nothing is set."""
        if self.step is not None:
            return "Step"
        if self.cmd is not None:
            return "Cmd"
        if self.cmd_workflow is not None:
            return "CmdWorkflow"
        return ""

    def name(self) -> str:
        """Return the resource's metadata name, or an empty string."""
        resource = self._resource()
        return resource.metadata.name if resource is not None else ""

    def identity(self) -> ResourceIdentity:
        """Return the resource identity, or an empty one if nothing is set."""
        resource = self._resource()
        return resource.identity() if resource is not None else ResourceIdentity()

    def validate(self) -> None:
        """Validate the contained resource; raise if there is none."""
        resource = self._resource()
        if resource is None:
            raise ManifestValidationError("empty ParsedResource")
        resource.validate()


_DECODERS = {
    "Step": (Step, "step"),
    "Cmd": (Cmd, "cmd"),
    "CmdWorkflow": (CmdWorkflow, "cmd_workflow"),
}


class ManifestParser:
    """Parses YAML manifests (single or multi-document) into resources."""

    def parse_file(self, path: str | os.PathLike[str]) -> list[ParsedResource]:
        """Parse one YAML file."""
        path_str = os.fspath(path)
        try:
            data = Path(path_str).read_bytes()
        except OSError as exc:
            raise ManifestParseError(path_str, f"failed to read file: {exc}") from exc
        return self.parse_data(path_str, data)

    def parse_data(self, path: str, data: bytes | str) -> list[ParsedResource]:
        """Parse YAML text; ``path`` is used only in error messages."""
        if isinstance(data, bytes):
            try:
                text = data.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise ManifestParseError(path, f"failed to parse YAML: {exc}") from exc
        else:
            text = data

        resources: list[ParsedResource] = []
        loader = yaml.SafeLoader(text)
        try:
            while True:
                try:
                    if not loader.check_node():
                        break
                    node = loader.get_node()
                    document = loader.construct_document(node)
                except yaml.YAMLError as exc:
                    raise ManifestParseError(path, f"failed to parse YAML: {exc}") from exc
                if document is None:
                    continue
                resources.append(self._parse_document(path, document, node.start_mark.line + 1))
        finally:
            loader.dispose()
        return resources

    @staticmethod
    def _parse_document(path: str, document: Any, line: int) -> ParsedResource:
        if not isinstance(document, Mapping):
            raise ManifestParseError(
                path,
                f"failed to decode kind: cannot decode {type(document).__name__} into a resource",
                line,
            )
        raw_kind = document.get("kind")
        if raw_kind is None:
            kind = ""
        elif isinstance(raw_kind, (str, int, float)) and not isinstance(raw_kind, bool):
            kind = str(raw_kind)
        else:
            raise ManifestParseError(
                path,
                f"failed to decode kind: cannot decode {type(raw_kind).__name__} into string",
                line,
            )

        decoder = _DECODERS.get(kind)
        if decoder is None:
            raise ManifestParseError(
                path,
                f"unsupported kind: {kind} (supported: {', '.join(SUPPORTED_KINDS)})",
                line,
            )
        cls, field_name = decoder
        try:
            resource = cls.from_dict(document)
        except (TypeError, ValueError) as exc:
            raise ManifestParseError(path, f"failed to decode {kind}: {exc}", line) from exc
        return ParsedResource(**{field_name: resource})

    def parse_directory(self, directory: str | os.PathLike[str]) -> list[ParsedResource]:
        """Parse every YAML file under ``directory`` in lexicographic path order.

        A missing directory yields no resources.
        """
        dir_str = os.fspath(directory)
        if not os.path.exists(dir_str):
            return []
        try:
            files = find_yaml_files(dir_str)
        except OSError as exc:
            raise ManifestParseError(dir_str, f"failed to find YAML files: {exc}") from exc

        resources: list[ParsedResource] = []
        for file in sorted(files):
            resources.extend(self.parse_file(file))
        return resources

    def parse_path(self, path_spec: str) -> list[list[ParsedResource]]:
        """Parse each colon-separated directory of ``path_spec`` into one layer."""
        return [self.parse_directory(expand_path(p)) for p in split_path_spec(path_spec)]


def _is_yaml(path: str) -> bool:
    return os.path.splitext(path)[1].lower() in _YAML_EXTENSIONS


def find_yaml_files(directory: str | os.PathLike[str]) -> list[str]:
    """Return all ``.yaml``/``.yml`` files under ``directory``, recursively."""
    root = os.fspath(directory)
    if not os.path.isdir(root):
        os.stat(root)
        return [root] if _is_yaml(root) else []

    def _raise(exc: OSError) -> None:
        raise exc

    found: list[str] = []
    for current, dirnames, filenames in os.walk(root, onerror=_raise):
        dirnames.sort()
        found.extend(
            os.path.join(current, name) for name in sorted(filenames) if _is_yaml(name)
        )
    return found


def _expand_simple_env(path: str) -> str:
    return _ENV_REFERENCE.sub(
        lambda m: os.environ.get(m.group(1) if m.group(1) is not None else m.group(2), ""),
        path,
    )


def expand_path(path: str) -> str:
    """Expand a leading ``~``, ``${VAR:-default}`` forms and ``$VAR`` references."""
    if path.startswith("~"):
        home = os.path.expanduser("~")
        if home and home != "~":
            path = os.path.normpath(f"{home}/{path[1:]}")
    if "${" in path:
        path = expand_env_vars(path)
    return _expand_simple_env(path)


def expand_env_vars(s: str) -> str:
    """Expand ``${VAR}`` and ``${VAR:-default}``; empty variables take the default."""
    result = s
    start = 0
    while True:
        idx = result.find("${", start)
        if idx == -1:
            break
        end = result.find("}", idx)
        if end == -1:
            break
        var_spec = result[idx + 2 : end]
        if ":-" in var_spec:
            name, default = var_spec.split(":-", 1)
            value = os.environ.get(name, "") or default
        else:
            value = os.environ.get(var_spec, "")
        result = result[:idx] + value + result[end + 1 :]
        start = idx + len(var_spec)
    return result


def split_path_spec(path_spec: str) -> list[str]:
    """Split a colon-separated path specification."""
    return path_spec.split(":")