"""Resource types for kfg manifests and their validation rules."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Mapping

API_VERSION = "kfg.dev/v1alpha1"
SUPPORTED_KINDS = ("Step", "Cmd", "CmdWorkflow")
VALID_SHELLS = ("bash", "zsh", "fish", "sh")

_LOWER = frozenset("abcdefghijklmnopqrstuvwxyz")
_UPPER = frozenset("ABCDEFGHIJKLMNOPQRSTUVWXYZ")
_DIGITS = frozenset("0123456789")
_NAMESPACE_CHARS = _LOWER | _DIGITS | {"-", "."}
_BASH_FIRST = _LOWER | _UPPER | {"_"}
_BASH_CHARS = _BASH_FIRST | _DIGITS | {"-"}


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ManifestParseError(Exception):
    """An error raised while reading or decoding a manifest file."""

    def __init__(self, file: str, message: str, line: int = 0) -> None:
        self.file = file
        self.line = line
        self.message = message
        super().__init__(str(self))

    def __str__(self) -> str:
        if self.line > 0:
            return f"{self.file}:{self.line}: {self.message}"
        return f"{self.file}: {self.message}"


class ManifestValidationError(Exception):
    """A resource does not satisfy the manifest rules."""


class ValidationError(ManifestValidationError):
    """A validation failure tied to a resource identity, with optional context."""

    def __init__(
        self,
        identity: "ResourceIdentity",
        message: str,
        file: str = "",
        hint: str = "",
    ) -> None:
        self.identity = identity
        self.message = message
        self.file = file
        self.hint = hint
        super().__init__(str(self))

    def __str__(self) -> str:
        msg = f"{self.identity}: {self.message}"
        if self.file:
            msg = f"{msg} (File: {self.file})"
        if self.hint:
            msg = f"{msg}\nHint: {self.hint}"
        return msg


# ---------------------------------------------------------------------------
# Decoding helpers
# ---------------------------------------------------------------------------


def _as_str(value: Any, name: str) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return str(value)
    raise TypeError(f"cannot decode {type(value).__name__} into string field {name!r}")


def _as_mapping(value: Any, name: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    if isinstance(value, Mapping):
        return value
    raise TypeError(f"cannot decode {type(value).__name__} into mapping field {name!r}")


def _as_list(value: Any, name: str) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    raise TypeError(f"cannot decode {type(value).__name__} into sequence field {name!r}")


def _as_str_list(value: Any, name: str) -> list[str]:
    return [_as_str(item, name) for item in _as_list(value, name)]


def _as_str_map(value: Any, name: str) -> dict[str, str]:
    return {
        _as_str(key, name): _as_str(val, name)
        for key, val in _as_mapping(value, name).items()
    }


# ---------------------------------------------------------------------------
# Core types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ResourceIdentity:
    """Uniquely identifies a resource within a kind."""

    api_version: str = ""
    kind: str = ""
    name: str = ""

    def __str__(self) -> str:
        return f"{self.api_version}/{self.kind}:{self.name}"


@dataclass
class Metadata:
    """Resource metadata: name, command name (Cmd) and shell (CmdWorkflow)."""

    name: str = ""
    command_name: str = ""
    shell: str = ""

    @classmethod
    def _from_dict(cls, data: Any) -> "Metadata":
        raw = _as_mapping(data, "metadata")
        return cls(
            name=_as_str(raw.get("name"), "name"),
            command_name=_as_str(raw.get("commandName"), "commandName"),
            shell=_as_str(raw.get("shell"), "shell"),
        )


@dataclass
class Output:
    """An output a Step can produce."""

    name: str = ""
    type: str = ""

    @classmethod
    def _from_dict(cls, data: Any) -> "Output":
        raw = _as_mapping(data, "output")
        return cls(name=_as_str(raw.get("name"), "name"), type=_as_str(raw.get("type"), "type"))


@dataclass
class StepSpec:
    """Spec of a Step resource."""

    run: str = ""
    output: Output | None = None
    artifacts: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)

    @classmethod
    def _from_dict(cls, data: Any) -> "StepSpec":
        raw = _as_mapping(data, "spec")
        output = raw.get("output")
        return cls(
            run=_as_str(raw.get("run"), "run"),
            output=None if output is None else Output._from_dict(output),
            artifacts=_as_str_list(raw.get("artifacts"), "artifacts"),
            env=_as_str_map(raw.get("env"), "env"),
        )


@dataclass
class CmdSpec:
    """Spec of a Cmd resource: a plain shell function."""

    run: str = ""
    artifacts: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)

    @classmethod
    def _from_dict(cls, data: Any) -> "CmdSpec":
        raw = _as_mapping(data, "spec")
        return cls(
            run=_as_str(raw.get("run"), "run"),
            artifacts=_as_str_list(raw.get("artifacts"), "artifacts"),
            env=_as_str_map(raw.get("env"), "env"),
        )


@dataclass
class OutputCondition:
    """A condition on the output of a step."""

    step: str = ""
    name: str = ""
    equals: str = ""
    in_: list[str] = field(default_factory=list)
    contains: str = ""
    matches: str = ""

    @classmethod
    def _from_dict(cls, data: Any) -> "OutputCondition":
        raw = _as_mapping(data, "output")
        return cls(
            step=_as_str(raw.get("step"), "step"),
            name=_as_str(raw.get("name"), "name"),
            equals=_as_str(raw.get("equals"), "equals"),
            in_=_as_str_list(raw.get("in"), "in"),
            contains=_as_str(raw.get("contains"), "contains"),
            matches=_as_str(raw.get("matches"), "matches"),
        )


@dataclass
class WhenClause:
    """A conditional-execution clause."""

    output: OutputCondition | None = None
    all_of: list["WhenClause"] = field(default_factory=list)
    any_of: list["WhenClause"] = field(default_factory=list)
    not_: "WhenClause | None" = None

    @classmethod
    def _from_dict(cls, data: Any) -> "WhenClause":
        raw = _as_mapping(data, "when")
        output = raw.get("output")
        negated = raw.get("not")
        return cls(
            output=None if output is None else OutputCondition._from_dict(output),
            all_of=[cls._from_dict(c) for c in _as_list(raw.get("allOf"), "allOf")],
            any_of=[cls._from_dict(c) for c in _as_list(raw.get("anyOf"), "anyOf")],
            not_=None if negated is None else cls._from_dict(negated),
        )


@dataclass
class StepReference:
    """A reference to a Step from a workflow's before/after list."""

    step: str = ""
    when: WhenClause | None = None
    failure_policy: str = ""
    env: dict[str, str] = field(default_factory=dict)

    @classmethod
    def _from_dict(cls, data: Any) -> "StepReference":
        raw = _as_mapping(data, "step reference")
        when = raw.get("when")
        return cls(
            step=_as_str(raw.get("step"), "step"),
            when=None if when is None else WhenClause._from_dict(when),
            failure_policy=_as_str(raw.get("failurePolicy"), "failurePolicy"),
            env=_as_str_map(raw.get("env"), "env"),
        )


@dataclass
class CmdWorkflowSpec:
    """Spec of a CmdWorkflow: the cmds plus global before/after steps."""

    cmds: list[str] = field(default_factory=list)
    before: list[StepReference] = field(default_factory=list)
    after: list[StepReference] = field(default_factory=list)

    @classmethod
    def _from_dict(cls, data: Any) -> "CmdWorkflowSpec":
        raw = _as_mapping(data, "spec")
        return cls(
            cmds=_as_str_list(raw.get("cmds"), "cmds"),
            before=[StepReference._from_dict(r) for r in _as_list(raw.get("before"), "before")],
            after=[StepReference._from_dict(r) for r in _as_list(raw.get("after"), "after")],
        )


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------


@dataclass
class _Resource:
    KIND: ClassVar[str] = ""

    api_version: str = ""
    kind: str = ""
    metadata: Metadata = field(default_factory=Metadata)

    def identity(self) -> ResourceIdentity:
        """Return the resource's unique identity."""
        return ResourceIdentity(self.api_version, self.kind, self.metadata.name)

    def validate_api_version(self) -> None:
        """Raise if the API version is not the supported one."""
        if self.api_version != API_VERSION:
            raise ManifestValidationError(
                f"apiVersion must be {API_VERSION}, got {self.api_version}"
            )

    def validate_kind(self) -> None:
        """Raise if the kind field does not match the resource type."""
        if self.kind != self.KIND:
            raise ManifestValidationError(f"kind must be {self.KIND}, got {self.kind}")

    @staticmethod
    def _header(data: Any) -> tuple[Mapping[str, Any], dict[str, Any]]:
        raw = _as_mapping(data, "resource")
        return raw, {
            "api_version": _as_str(raw.get("apiVersion"), "apiVersion"),
            "kind": _as_str(raw.get("kind"), "kind"),
            "metadata": Metadata._from_dict(raw.get("metadata")),
        }


@dataclass
class Step(_Resource):
    """A reusable shell snippet referenced from workflows."""

    KIND: ClassVar[str] = "Step"

    spec: StepSpec = field(default_factory=StepSpec)

    @classmethod
    def from_dict(cls, data: Any) -> "Step":
        """Build a Step from a decoded YAML mapping."""
        raw, header = cls._header(data)
        return cls(**header, spec=StepSpec._from_dict(raw.get("spec")))

    def identity(self) -> ResourceIdentity:
        return super().identity()

    def validate(self) -> None:
        """Raise ManifestValidationError if the Step is invalid."""
        self.validate_api_version()
        self.validate_kind()
        validate_name(self.metadata.name)
        if not self.spec.run:
            raise ManifestValidationError("spec.run is required for Step resources")

    def validate_api_version(self) -> None:
        super().validate_api_version()

    def validate_kind(self) -> None:
        super().validate_kind()


@dataclass
class Cmd(_Resource):
    """A shell function without orchestration."""

    KIND: ClassVar[str] = "Cmd"

    spec: CmdSpec = field(default_factory=CmdSpec)

    @classmethod
    def from_dict(cls, data: Any) -> "Cmd":
        """Build a Cmd from a decoded YAML mapping."""
        raw, header = cls._header(data)
        return cls(**header, spec=CmdSpec._from_dict(raw.get("spec")))

    def identity(self) -> ResourceIdentity:
        return super().identity()

    def validate(self) -> None:
        """Raise ManifestValidationError if the Cmd is invalid."""
        self.validate_api_version()
        self.validate_kind()
        validate_name(self.metadata.name)
        validate_command_name(self.metadata.command_name)
        if not self.spec.run:
            raise ManifestValidationError("spec.run is required for Cmd resources")

    def validate_api_version(self) -> None:
        super().validate_api_version()

    def validate_kind(self) -> None:
        super().validate_kind()


@dataclass
class CmdWorkflow(_Resource):
    """Orchestration of Cmds with global before/after steps."""

    KIND: ClassVar[str] = "CmdWorkflow"

    spec: CmdWorkflowSpec = field(default_factory=CmdWorkflowSpec)

    @classmethod
    def from_dict(cls, data: Any) -> "CmdWorkflow":
        """Build a CmdWorkflow from a decoded YAML mapping."""
        raw, header = cls._header(data)
        return cls(**header, spec=CmdWorkflowSpec._from_dict(raw.get("spec")))

    def identity(self) -> ResourceIdentity:
        return super().identity()

    def validate(self) -> None:
        """Raise ManifestValidationError if the CmdWorkflow is invalid."""
        self.validate_api_version()
        self.validate_kind()
        validate_name(self.metadata.name)
        validate_shell(self.metadata.shell)
        if not (self.spec.cmds or self.spec.before or self.spec.after):
            raise ManifestValidationError(
                "spec must have at least one of: cmds, before, after for CmdWorkflow resources"
            )

    def validate_api_version(self) -> None:
        super().validate_api_version()

    def validate_kind(self) -> None:
        super().validate_kind()


# ---------------------------------------------------------------------------
# Validation functions
# ---------------------------------------------------------------------------


def _is_valid_namespace_name(name: str) -> bool:
    return bool(name) and name[0] not in _DIGITS and all(c in _NAMESPACE_CHARS for c in name)


def _is_valid_bash_identifier(name: str) -> bool:
    return bool(name) and name[0] in _BASH_FIRST and all(c in _BASH_CHARS for c in name)


def validate_name(name: str) -> None:
    """Raise if ``name`` is not a valid namespace-style resource name."""
    if not name:
        raise ManifestValidationError("metadata.name is required")
    if not _is_valid_namespace_name(name):
        raise ManifestValidationError(
            f"metadata.name '{name}' is not a valid namespace identifier "
            "(must contain only lowercase alphanumeric, hyphens, and dots, "
            "and not start with a digit)"
        )


def validate_command_name(command_name: str) -> None:
    """Raise if ``command_name`` is not a valid bash function name."""
    if not command_name:
        raise ManifestValidationError("metadata.commandName is required for Cmd resources")
    if not _is_valid_bash_identifier(command_name):
        raise ManifestValidationError(
            f"metadata.commandName '{command_name}' is not a valid bash identifier "
            "(must start with letter or underscore, contain only alphanumeric, "
            "underscores, and hyphens)"
        )


def validate_shell(shell: str) -> None:
    """Raise if ``shell`` is set and not a supported shell."""
    if not shell or shell in VALID_SHELLS:
        return
    raise ManifestValidationError(
        f"metadata.shell '{shell}' is not valid (must be one of: bash, zsh, fish, sh)"
    )