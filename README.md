# kfg

Python library for declarative shell workflow manifests. It reads YAML
resources of kinds `Step`, `Cmd` and `CmdWorkflow`, validates them, resolves a
workflow into the commands and steps a shell generator needs, and parses
Imagefile manifests (a Dockerfile-like format for composing configuration
images).

## Installation

```
pip install .
```

For running the test suite:

```
pip install ".[test]"
pytest
```

## Manifests

All resources use `apiVersion: kfg.dev/v1alpha1`.

```yaml
apiVersion: kfg.dev/v1alpha1
kind: Step
metadata:
  name: setup
spec:
  run: echo setup
  env:
    MODE: normal
---
apiVersion: kfg.dev/v1alpha1
kind: Cmd
metadata:
  name: build
  commandName: build
spec:
  run: echo build
---
apiVersion: kfg.dev/v1alpha1
kind: CmdWorkflow
metadata:
  name: dev
  shell: bash
spec:
  cmds:
    - build
  before:
    - step: setup
      env:
        MODE: fast
```

The resource classes (`Step`, `Cmd`, `CmdWorkflow` and their spec types) live
in `kfg.manifest`. Each has `from_dict`, `identity()` and `validate()`;
validation failures raise `kfg.manifest.ManifestValidationError`. The rules:

- `metadata.name` is required and may contain only lowercase letters, digits,
  `-` and `.`, and may not start with a digit (`validate_name`).
- A `Cmd` needs `metadata.commandName`, a bash identifier: a letter or `_`
  first, then letters, digits, `_` or `-` (`validate_command_name`).
- A `CmdWorkflow`'s optional `metadata.shell` must be one of `bash`, `zsh`,
  `fish`, `sh` (`validate_shell`), and its spec needs at least one of `cmds`,
  `before`, `after`.
- `Step` and `Cmd` need a non-empty `spec.run`.

### Parsing

```python
from kfg.manifest_parser import ManifestParser

parser = ManifestParser()
resources = parser.parse_file("workflow.yaml")
for res in resources:
    print(res.kind(), res.name())
    res.validate()
```

Each `ParsedResource` holds exactly one of `step`, `cmd` or `cmd_workflow`.
Empty YAML documents are skipped. Unreadable files, malformed YAML and
unsupported kinds raise `kfg.manifest.ManifestParseError`, whose message
carries the file name and, where known, the line.

`ManifestParser.parse_directory` loads every `.yaml`/`.yml` file below a
directory in lexicographic order; a missing directory yields an empty list.
`ManifestParser.parse_path` accepts a colon-separated list of directories,
expanding `~`, `$VAR` and `${VAR:-default}` (see `expand_path` and
`expand_env_vars`), and returns one list of resources per directory.

### Resolving a workflow

```python
from kfg.resolve import Index, Resolver

resolver = Resolver(Index(resources))
resolved = resolver.resolve_kustomization("dev", None)
print(resolved.shell)                        # "bash"
print(resolved.workflow.all_cmd_names())     # ["build"]
print(resolved.workflow.before_steps[0].env) # {"MODE": "fast"}
```

With an empty workflow name, `resolve_kustomization` picks the only
`CmdWorkflow` and fails if there are none or several. A cmd filter keeps only
the named cmds, each of which must belong to the workflow.
`resolve_all_workflows` and `resolve_workflows_by_name` resolve several
workflows at once.

Step environments are merged with `merge_env`: the step's own `env` first,
then the reference's `env` on top; if both are empty the result is `None`. A
missing `failurePolicy` becomes `"Fail"` and a missing shell becomes `"bash"`.
Errors are raised as `kfg.resolve.ResolutionError`.

## Imagefile

```python
from kfg.imagefile import parse_imagefile

ast = parse_imagefile("""
FROM claude-base:v2 AS base
COPY docs/AGENTS.md AGENTS.md
FROM scratch
COPY --from=base AGENTS.md AGENTS.md
ENV MODE=production
RUN echo "Building image"
TAG my-config:v1.0
""")
print([stage.name for stage in ast.stages])  # ["base", "stage1"]
```

Supported instructions are `FROM`, `COPY`, `ENV`, `RUN`, `WORKDIR` and `TAG`
(case-insensitive), with `#` comments and backslash line continuations.
Stages without an `AS` name are called `stage0`, `stage1`, and so on. `TAG`
may only appear in the final stage. `ImagefileParser` reads from any text
stream or iterable of lines. Malformed input raises
`kfg.imagefile.ImagefileParseError` carrying the line number.

## What this package does not do

It has no command-line tool and does not generate shell code itself; it
stops at resolved workflows. It does not apply kustomization overlays or
patches: resources are read from plain YAML files and directories only. It
does not write log files; errors are reported by raising exceptions.