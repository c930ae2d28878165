"""Resolution of workflows, cmds and steps into a form ready for shell generation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping, Sequence

from kfg.manifest import Cmd, CmdWorkflow, Step, StepReference, WhenClause
from kfg.manifest_parser import ParsedResource

DEFAULT_SHELL = "bash"
DEFAULT_FAILURE_POLICY = "Fail"


class ResolutionError(Exception):
    """A referenced resource could not be resolved."""

    def __init__(self, resource_kind: str, resource_name: str, message: str) -> None:
        self.resource_kind = resource_kind
        self.resource_name = resource_name
        self.message = message
        super().__init__(str(self))

    def __str__(self) -> str:
        return f"{self.resource_kind}/{self.resource_name}: {self.message}"


def merge_env(
    base: Mapping[str, str] | None, override: Mapping[str, str] | None
) -> dict[str, str] | None:
    """Shallow-merge two env maps, the override winning; None if both are empty."""
    if not base and not override:
        return None
    return {**(base or {}), **(override or {})}


class Index:
    """Indexes Step, Cmd and CmdWorkflow resources by name."""

    def __init__(self, resources: Iterable[ParsedResource]) -> None:
        self._steps: dict[str, Step] = {}
        self._cmds: dict[str, Cmd] = {}
        self._cmd_workflows: dict[str, CmdWorkflow] = {}
        for res in resources:
            if res.step is not None:
                self._steps[res.step.metadata.name] = res.step
            elif res.cmd is not None:
                self._cmds[res.cmd.metadata.name] = res.cmd
            elif res.cmd_workflow is not None:
                self._cmd_workflows[res.cmd_workflow.metadata.name] = res.cmd_workflow

    def get_step(self, name: str) -> Step | None:
        """Return the Step with this name, or None."""
        return self._steps.get(name)

    def get_cmd(self, name: str) -> Cmd | None:
        """Return the Cmd with this name, or None."""
        return self._cmds.get(name)

    def get_cmd_workflow(self, name: str) -> CmdWorkflow | None:
        """Return the CmdWorkflow with this name, or None."""
        return self._cmd_workflows.get(name)

    def all_steps(self) -> list[Step]:
        """Return every indexed Step."""
        return list(self._steps.values())

    def all_cmds(self) -> list[Cmd]:
        """Return every indexed Cmd."""
        return list(self._cmds.values())

    def all_cmd_workflows(self) -> list[CmdWorkflow]:
        """Return every indexed CmdWorkflow."""
        return list(self._cmd_workflows.values())


@dataclass
class ResolvedStep:
    """A step reference bound to its Step, with defaults applied."""

    step: Step
    when: WhenClause | None = None
    failure_policy: str = DEFAULT_FAILURE_POLICY
    env: dict[str, str] | None = None


@dataclass
class ResolvedCmd:
    """A resolved Cmd."""

    cmd: Cmd

    def function_name(self) -> str:
        """Return the shell function name of the Cmd."""
        return self.cmd.metadata.command_name


@dataclass
class ResolvedCmdEntry:
    """A Cmd together with its per-cmd steps."""

    cmd: Cmd
    before_steps: list[ResolvedStep] = field(default_factory=list)
    after_steps: list[ResolvedStep] = field(default_factory=list)


@dataclass
class ResolvedCmdWorkflow:
    """A fully resolved CmdWorkflow; global steps apply to all its cmds."""

    workflow: CmdWorkflow
    cmds: dict[str, ResolvedCmdEntry] = field(default_factory=dict)
    before_steps: list[ResolvedStep] = field(default_factory=list)
    after_steps: list[ResolvedStep] = field(default_factory=list)
    shell: str = DEFAULT_SHELL

    def all_cmd_names(self) -> list[str]:
        """Return the sorted names of all cmds in the workflow."""
        return sorted(self.cmds)

    def all_step_names(self) -> list[str]:
        """Return the sorted names of all steps used by the workflow."""
        names = [s.step.metadata.name for s in self.before_steps]
        for entry in self.cmds.values():
            names.extend(s.step.metadata.name for s in entry.before_steps)
            names.extend(s.step.metadata.name for s in entry.after_steps)
        names.extend(s.step.metadata.name for s in self.after_steps)
        return sorted(names)


@dataclass
class ResolvedKustomization:
    """The resolved output used for shell generation."""

    name: str
    shell: str
    workflow: ResolvedCmdWorkflow
    steps: dict[str, Step] = field(default_factory=dict)
    cmds: dict[str, Cmd] = field(default_factory=dict)


class Resolver:
    """Resolves references between indexed resources."""

    def __init__(self, index: Index) -> None:
        self.index = index

    def _workflow_names(self) -> list[str]:
        return [w.metadata.name for w in self.index.all_cmd_workflows()]

    def resolve_kustomization(
        self, workflow_name: str = "", cmd_filter: Sequence[str] | None = None
    ) -> ResolvedKustomization:
        """Resolve the named workflow, or the only one, with an optional cmd filter."""
        if workflow_name:
            workflow = self.index.get_cmd_workflow(workflow_name)
            if workflow is None:
                raise ResolutionError("CmdWorkflow", workflow_name, "CmdWorkflow not found")
        else:
            workflows = self.index.all_cmd_workflows()
            if not workflows:
                raise ResolutionError(
                    "CmdWorkflow", "", "no CmdWorkflow found in kustomization"
                )
            if len(workflows) > 1:
                raise ResolutionError(
                    "CmdWorkflow",
                    "",
                    "multiple CmdWorkflows found, specify one: "
                    + ", ".join(self._workflow_names()),
                )
            workflow = workflows[0]

        resolved = self.resolve_cmd_workflow(workflow.metadata.name, cmd_filter)
        return ResolvedKustomization(
            name=workflow.metadata.name,
            shell=resolved.shell,
            workflow=resolved,
            steps={s.metadata.name: s for s in self.index.all_steps()},
            cmds={c.metadata.name: c for c in self.index.all_cmds()},
        )

    def resolve_cmd_workflow(
        self, name: str, cmd_filter: Sequence[str] | None = None
    ) -> ResolvedCmdWorkflow:
        """Resolve one CmdWorkflow, optionally keeping only some of its cmds."""
        workflow = self.index.get_cmd_workflow(name)
        if workflow is None:
            raise ResolutionError("CmdWorkflow", name, "CmdWorkflow not found")

        shell = workflow.metadata.shell or DEFAULT_SHELL
        before = self.resolve_step_references(workflow.spec.before)
        after = self.resolve_step_references(workflow.spec.after)

        cmds_to_include: Sequence[str] = workflow.spec.cmds
        if cmd_filter:
            for wanted in cmd_filter:
                if wanted not in workflow.spec.cmds:
                    raise ResolutionError(
                        "Cmd",
                        wanted,
                        "Cmd not in workflow. Available cmds: "
                        + ", ".join(workflow.spec.cmds),
                    )
            cmds_to_include = cmd_filter

        entries: dict[str, ResolvedCmdEntry] = {}
        for cmd_name in cmds_to_include:
            cmd = self.index.get_cmd(cmd_name)
            if cmd is None:
                raise ResolutionError("Cmd", cmd_name, "Cmd not found")
            entries[cmd_name] = ResolvedCmdEntry(cmd=cmd)

        return ResolvedCmdWorkflow(
            workflow=workflow,
            cmds=entries,
            before_steps=before,
            after_steps=after,
            shell=shell,
        )

    def resolve_step_references(self, refs: Iterable[StepReference]) -> list[ResolvedStep]:
        """Resolve step references in their given order."""
        resolved: list[ResolvedStep] = []
        for ref in refs:
            step = self.index.get_step(ref.step)
            if step is None:
                raise ResolutionError("Step", ref.step, "Step not found")
            resolved.append(
                ResolvedStep(
                    step=step,
                    when=ref.when,
                    failure_policy=ref.failure_policy or DEFAULT_FAILURE_POLICY,
                    env=merge_env(step.spec.env, ref.env),
                )
            )
        return resolved

    def resolve_cmd(self, name: str) -> ResolvedCmd:
        """Resolve a single Cmd by name."""
        cmd = self.index.get_cmd(name)
        if cmd is None:
            raise ResolutionError("Cmd", name, "Cmd not found")
        return ResolvedCmd(cmd=cmd)

    def resolve_all_workflows(self) -> list[ResolvedCmdWorkflow]:
        """Resolve every CmdWorkflow; raise if there are none."""
        workflows = self.index.all_cmd_workflows()
        if not workflows:
            raise ResolutionError("CmdWorkflow", "", "no CmdWorkflow found in kustomization")
        return [self.resolve_cmd_workflow(w.metadata.name) for w in workflows]

    def resolve_workflows_by_name(self, names: Sequence[str]) -> list[ResolvedCmdWorkflow]:
        """Resolve the named workflows; an empty list resolves them all."""
        if not names:
            return self.resolve_all_workflows()
        results: list[ResolvedCmdWorkflow] = []
        for name in names:
            try:
                results.append(self.resolve_cmd_workflow(name))
            except ResolutionError as exc:
                raise ResolutionError(
                    "CmdWorkflow",
                    name,
                    "CmdWorkflow not found. Available: " + ", ".join(self._workflow_names()),
                ) from exc
        return results