import pytest

from kfg.manifest import (
    API_VERSION,
    Cmd,
    CmdSpec,
    CmdWorkflow,
    CmdWorkflowSpec,
    ManifestParseError,
    ManifestValidationError,
    Metadata,
    ResourceIdentity,
    Step,
    StepReference,
    StepSpec,
    ValidationError,
    validate_command_name,
    validate_name,
    validate_shell,
)


def make_step(**overrides):
    step = Step(
        api_version="kfg.dev/v1alpha1",
        kind="Step",
        metadata=Metadata(name="test-step"),
        spec=StepSpec(run="echo test"),
    )
    for key, value in overrides.items():
        setattr(step, key, value)
    return step


def make_cmd(command_name="testcmd", run="echo test"):
    return Cmd(
        api_version="kfg.dev/v1alpha1",
        kind="Cmd",
        metadata=Metadata(name="test-cmd", command_name=command_name),
        spec=CmdSpec(run=run),
    )


def make_workflow(shell="", cmds=("test-cmd",)):
    return CmdWorkflow(
        api_version="kfg.dev/v1alpha1",
        kind="CmdWorkflow",
        metadata=Metadata(name="test-workflow", shell=shell),
        spec=CmdWorkflowSpec(cmds=list(cmds)),
    )


def test_api_version_constant_is_accepted():
    step = Step.from_dict(
        {
            "apiVersion": API_VERSION,
            "kind": "Step",
            "metadata": {"name": "s"},
            "spec": {"run": "true"},
        }
    )
    assert step.identity().api_version == "kfg.dev/v1alpha1"
    assert step.validate_api_version() is None


@pytest.mark.parametrize("name", ["test-step", "a.b-c", "step1", "x"])
def test_validate_name_accepts(name):
    assert validate_name(name) is None


@pytest.mark.parametrize("name", ["Upper", "1step", "has space", "under_score"])
def test_validate_name_rejects(name):
    with pytest.raises(ManifestValidationError, match="not a valid namespace identifier"):
        validate_name(name)


def test_validate_name_required():
    with pytest.raises(ManifestValidationError, match="metadata.name is required"):
        validate_name("")


@pytest.mark.parametrize("name", ["testcmd", "_private", "myCmd", "build-all", "cmd2"])
def test_validate_command_name_accepts(name):
    assert validate_command_name(name) is None


@pytest.mark.parametrize("name", ["2cmd", "-cmd", "a.b", "with space"])
def test_validate_command_name_rejects(name):
    with pytest.raises(ManifestValidationError, match="not a valid bash identifier"):
        validate_command_name(name)


def test_validate_command_name_required():
    with pytest.raises(ManifestValidationError, match="commandName is required"):
        validate_command_name("")


@pytest.mark.parametrize("shell", ["", "bash", "zsh", "fish", "sh"])
def test_validate_shell_accepts(shell):
    assert validate_shell(shell) is None


def test_validate_shell_rejects():
    with pytest.raises(ManifestValidationError, match="metadata.shell 'powershell' is not valid"):
        validate_shell("powershell")


def test_step_validate_ok_and_identity():
    step = make_step()
    assert step.validate() is None
    assert step.identity() == ResourceIdentity("kfg.dev/v1alpha1", "Step", "test-step")
    assert str(step.identity()) == "kfg.dev/v1alpha1/Step:test-step"


def test_step_wrong_api_version():
    step = make_step(api_version="v0")
    with pytest.raises(ManifestValidationError) as exc:
        step.validate()
    assert str(exc.value) == "apiVersion must be kfg.dev/v1alpha1, got v0"


def test_step_wrong_kind():
    step = make_step(kind="Cmd")
    with pytest.raises(ManifestValidationError) as exc:
        step.validate_kind()
    assert str(exc.value) == "kind must be Step, got Cmd"


def test_step_missing_run():
    step = make_step(spec=StepSpec())
    with pytest.raises(ManifestValidationError, match="spec.run is required for Step resources"):
        step.validate()


def test_cmd_validate_ok():
    assert make_cmd().validate() is None


def test_cmd_missing_command_name():
    with pytest.raises(ManifestValidationError, match="commandName is required"):
        make_cmd(command_name="").validate()


def test_cmd_missing_run():
    with pytest.raises(ManifestValidationError, match="spec.run is required for Cmd resources"):
        make_cmd(run="").validate()


def test_cmd_kind_mismatch():
    cmd = make_cmd()
    cmd.kind = "Step"
    with pytest.raises(ManifestValidationError, match="kind must be Cmd, got Step"):
        cmd.validate()


def test_workflow_validate_ok():
    assert make_workflow(shell="bash").validate() is None


def test_workflow_bad_shell():
    with pytest.raises(ManifestValidationError, match="is not valid"):
        make_workflow(shell="csh").validate()


def test_workflow_empty_spec():
    with pytest.raises(ManifestValidationError, match="at least one of: cmds, before, after"):
        make_workflow(cmds=()).validate()


def test_workflow_before_only_is_valid():
    wf = make_workflow(cmds=())
    wf.spec.before.append(StepReference(step="setup"))
    assert wf.validate() is None


def test_step_from_dict():
    step = Step.from_dict(
        {
            "apiVersion": "kfg.dev/v1alpha1",
            "kind": "Step",
            "metadata": {"name": "copy-step"},
            "spec": {
                "run": "cp $SRC $DEST",
                "env": {"SRC": "docs/AGENTS.md", "DEBUG": True},
                "artifacts": ["output.md"],
                "output": {"name": "result", "type": "string"},
            },
        }
    )
    assert step.metadata.name == "copy-step"
    assert step.spec.run == "cp $SRC $DEST"
    assert step.spec.env == {"SRC": "docs/AGENTS.md", "DEBUG": "true"}
    assert step.spec.artifacts == ["output.md"]
    assert step.spec.output.name == "result"
    step.validate()


def test_cmd_from_dict():
    cmd = Cmd.from_dict(
        {
            "apiVersion": "kfg.dev/v1alpha1",
            "kind": "Cmd",
            "metadata": {"name": "test-cmd", "commandName": "testcmd"},
            "spec": {"run": "echo 'hello'"},
        }
    )
    assert cmd.metadata.command_name == "testcmd"
    assert cmd.spec.run == "echo 'hello'"
    assert cmd.spec.env == {}


def test_workflow_from_dict_nested():
    wf = CmdWorkflow.from_dict(
        {
            "apiVersion": "kfg.dev/v1alpha1",
            "kind": "CmdWorkflow",
            "metadata": {"name": "test-workflow", "shell": "bash"},
            "spec": {
                "cmds": ["cmd1", "cmd2"],
                "before": [
                    {
                        "step": "setup-step",
                        "failurePolicy": "Ignore",
                        "env": {"DEST": "CLAUDE.md"},
                        "when": {
                            "anyOf": [{"output": {"step": "detect", "name": "mode", "in": ["a", "b"]}}],
                            "not": {"output": {"step": "detect", "name": "mode", "equals": "c"}},
                        },
                    }
                ],
            },
        }
    )
    assert wf.metadata.shell == "bash"
    assert wf.spec.cmds == ["cmd1", "cmd2"]
    assert wf.spec.after == []
    ref = wf.spec.before[0]
    assert ref.step == "setup-step"
    assert ref.failure_policy == "Ignore"
    assert ref.env == {"DEST": "CLAUDE.md"}
    assert ref.when.any_of[0].output.in_ == ["a", "b"]
    assert ref.when.not_.output.equals == "c"
    assert wf.validate() is None


def test_from_dict_rejects_mapping_for_string():
    with pytest.raises(TypeError):
        Step.from_dict({"kind": "Step", "spec": {"run": {"nested": 1}}})


def test_from_dict_empty_gives_defaults():
    step = Step.from_dict(None)
    assert step.identity() == ResourceIdentity()
    with pytest.raises(ManifestValidationError):
        step.validate()


def test_parse_error_format():
    assert str(ManifestParseError("test.yaml", "bad", line=3)) == "test.yaml:3: bad"
    assert str(ManifestParseError("test.yaml", "bad")) == "test.yaml: bad"


def test_validation_error_format():
    identity = ResourceIdentity("kfg.dev/v1alpha1", "Step", "s")
    err = ValidationError(identity, "broken", file="f.yaml", hint="fix it")
    assert str(err) == "kfg.dev/v1alpha1/Step:s: broken (File: f.yaml)\nHint: fix it"
    assert str(ValidationError(identity, "broken")) == "kfg.dev/v1alpha1/Step:s: broken"
    assert isinstance(err, ManifestValidationError)