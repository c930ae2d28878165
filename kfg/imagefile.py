"""Parser for Imagefile manifests: a Dockerfile-like format for composing configuration images."""

from __future__ import annotations

import io
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Union

VALID_INSTRUCTIONS = ("FROM", "COPY", "ENV", "RUN", "WORKDIR", "TAG")


class ImagefileParseError(Exception):
    """A parse or validation error, with the line it refers to (0 for the whole file)."""

    def __init__(self, line: int, message: str) -> None:
        self.line = line
        self.message = message
        super().__init__(str(self))

    def __str__(self) -> str:
        return f"line {self.line}: {self.message}"


@dataclass
class FromInstruction:
    """``FROM <image> [AS <stage>]``."""

    image_ref: str
    stage_name: str = ""
    line: int = 0


@dataclass
class CopyInstruction:
    """``COPY [--from=<stage>] <src>... <dest>``."""

    sources: list[str]
    dest: str
    from_stage: str = ""
    line: int = 0


@dataclass
class EnvInstruction:
    """``ENV KEY=value [KEY="value with spaces"]...``."""

    vars: dict[str, str] = field(default_factory=dict)
    line: int = 0


@dataclass
class RunInstruction:
    """``RUN <shell command>``."""

    command: str
    line: int = 0


@dataclass
class WorkdirInstruction:
    """``WORKDIR <path>``."""

    path: str
    line: int = 0


@dataclass
class TagInstruction:
    """``TAG <name>:<tag>``."""

    name: str
    tag: str
    line: int = 0


Instruction = Union[
    FromInstruction,
    CopyInstruction,
    EnvInstruction,
    RunInstruction,
    WorkdirInstruction,
    TagInstruction,
]


@dataclass
class Stage:
    """A build stage: its FROM, its body instructions and an optional TAG."""

    name: str
    from_: FromInstruction
    instructions: list[Instruction] = field(default_factory=list)
    tag: TagInstruction | None = None


@dataclass
class ImageAST:
    """The parsed Imagefile."""

    stages: list[Stage] = field(default_factory=list)
    line_count: int = 0

    def validate(self) -> None:
        """Raise if a TAG appears in any stage but the last."""
        for stage in self.stages[:-1]:
            if stage.tag is not None:
                raise ImagefileParseError(
                    stage.tag.line, "TAG instruction can only appear in the final stage"
                )


class ImagefileParser:
    """Parses an Imagefile from a text stream or any iterable of lines."""

    def __init__(self, stream: Iterable[str]) -> None:
        self._lines: Iterator[str] = iter(stream)
        self._line_num = 0

    def _next_line(self) -> str | None:
        raw = next(self._lines, None)
        if raw is None:
            return None
        self._line_num += 1
        return raw.removesuffix("\n").removesuffix("\r")

    def _error(self, message: str) -> ImagefileParseError:
        return ImagefileParseError(self._line_num, message)

    def parse(self) -> ImageAST:
        """Parse the whole input and return the validated AST."""
        ast = ImageAST()
        current: Stage | None = None

        while (line := self._next_line()) is not None:
            stripped = line.strip()
            if not stripped or stripped.startswith("#"):
                continue

            instruction = self._parse_instruction(line)

            if isinstance(instruction, FromInstruction):
                name = instruction.stage_name or f"stage{len(ast.stages)}"
                current = Stage(name=name, from_=instruction)
                ast.stages.append(current)
            elif isinstance(instruction, TagInstruction):
                if current is None:
                    raise self._error("TAG instruction requires a FROM instruction first")
                current.tag = instruction
            else:
                if current is None:
                    raise self._error("instruction requires a FROM instruction first")
                current.instructions.append(instruction)

        if not ast.stages:
            raise ImagefileParseError(
                0, "Imagefile is empty or contains no FROM instructions"
            )

        ast.line_count = self._line_num
        ast.validate()
        return ast

    def _parse_instruction(self, line: str) -> Instruction:
        full_line = self._join_continuations(line)
        parts = full_line.split()
        if not parts:
            raise self._error("empty instruction")

        keyword = parts[0].upper()
        args = parts[1:]
        if keyword == "FROM":
            return self._parse_from(args)
        if keyword == "COPY":
            return self._parse_copy(args)
        if keyword == "ENV":
            return self._parse_env(full_line)
        if keyword == "RUN":
            return self._parse_run(full_line)
        if keyword == "WORKDIR":
            return self._parse_workdir(args)
        if keyword == "TAG":
            return self._parse_tag(args)
        raise self._error(
            f"unknown instruction: {parts[0]} "
            f"(valid instructions: {', '.join(VALID_INSTRUCTIONS)})"
        )

    def _join_continuations(self, line: str) -> str:
        result = line
        while line.strip().endswith("\\"):
            next_line = self._next_line()
            if next_line is None:
                raise self._error("unexpected end of file in line continuation")
            line = next_line
            result = result.removesuffix("\\") + line
        return result

    def _parse_from(self, args: list[str]) -> FromInstruction:
        if not args:
            raise self._error("FROM requires an image reference")
        instr = FromInstruction(image_ref=args[0], line=self._line_num)
        rest = args[1:]
        for pos, word in enumerate(rest):
            if word.upper() == "AS":
                if pos + 1 >= len(rest):
                    raise self._error("AS requires a stage name")
                instr.stage_name = rest[pos + 1]
                break
        return instr

    def _parse_copy(self, args: list[str]) -> CopyInstruction:
        from_stage = ""
        remaining = list(args)
        while remaining and remaining[0].startswith("--from="):
            from_stage = remaining.pop(0).removeprefix("--from=")
        if len(remaining) < 2:
            raise self._error("COPY requires at least one source and a destination")
        return CopyInstruction(
            sources=remaining[:-1],
            dest=remaining[-1],
            from_stage=from_stage,
            line=self._line_num,
        )

    def _text_after_keyword(self, full_line: str, keyword: str) -> str:
        marker = f"{keyword} "
        idx = full_line.upper().find(marker)
        if idx == -1:
            raise self._error(f"{keyword} instruction malformed")
        return full_line[idx + len(marker):].strip()

    def _parse_env(self, full_line: str) -> EnvInstruction:
        env_part = self._text_after_keyword(full_line, "ENV")
        return EnvInstruction(vars=self._parse_env_vars(env_part), line=self._line_num)

    def _parse_env_vars(self, s: str) -> dict[str, str]:
        blanks = " \t"
        variables: dict[str, str] = {}
        pos = 0
        end = len(s)
        while pos < end:
            while pos < end and s[pos] in blanks:
                pos += 1
            if pos >= end:
                break

            key_start = pos
            while pos < end and s[pos] != "=" and s[pos] not in blanks:
                pos += 1
            key = s[key_start:pos]
            if pos >= end or s[pos] != "=":
                raise self._error(f"ENV variable {key} missing '='")
            pos += 1

            if pos < end and s[pos] == '"':
                closing = s.find('"', pos + 1)
                if closing == -1:
                    raise self._error("unterminated quoted value in ENV")
                value = s[pos + 1:closing]
                pos = closing + 1
            else:
                value_start = pos
                while pos < end and s[pos] not in blanks:
                    pos += 1
                value = s[value_start:pos]

            variables[key] = value

        if not variables:
            raise self._error("ENV requires at least one variable assignment")
        return variables

    def _parse_run(self, full_line: str) -> RunInstruction:
        command = self._text_after_keyword(full_line, "RUN")
        if not command:
            raise self._error("RUN requires a command")
        return RunInstruction(command=command, line=self._line_num)

    def _parse_tag(self, args: list[str]) -> TagInstruction:
        if not args:
            raise self._error("TAG requires a name:tag reference")
        name, sep, tag = args[0].partition(":")
        if not sep:
            raise self._error("TAG requires name:tag format (e.g., my-image:v1.0)")
        return TagInstruction(name=name, tag=tag, line=self._line_num)

    def _parse_workdir(self, args: list[str]) -> WorkdirInstruction:
        if not args:
            raise self._error("WORKDIR requires a path")
        return WorkdirInstruction(path=args[0], line=self._line_num)


def parse_imagefile(text: str) -> ImageAST:
    """Parse Imagefile text and return its AST."""
    return ImagefileParser(io.StringIO(text)).parse()