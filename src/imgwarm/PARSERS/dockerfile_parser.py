"""
Parsers for Dockerfiles, extracting instructions and arguments.
"""
import re
import json
from typing import List, Optional, Tuple
from ..MODELS.dockerfile_ast import Instruction, Stage

_INSTRUCTION = re.compile(r'^\s*([A-Za-z]+)(?:\s+(.*))?$')
_FLAG = re.compile(r'^--([A-Za-z][A-Za-z0-9-]*)(?:=(\S*))?$')
_HEREDOC = re.compile(r'<<(-?)(["\']?)([A-Za-z_][A-Za-z0-9_]*)\2')
_HEREDOC_INSTRUCTIONS = {"RUN", "COPY", "ADD"}
_ARG_TOKEN = re.compile(r'(?:[^\s"\']+|"[^"]*"|\'[^\']*\')+')


class DockerfileParser:
    """
    Parser for Dockerfile instructions.
    """
    def parse(self, dockerfile_path: str) -> List[Instruction]:
        """
        Parses a Dockerfile from a file path.

        Args:
            dockerfile_path (str): Path to the Dockerfile.

        Returns:
            List[Instruction]: List of parsed instructions.
        """
        with open(dockerfile_path, 'r', encoding='utf-8') as f:
            content = f.read()
        return self.parse_from_string(content)

    def parse_from_string(self, content: str) -> List[Instruction]:
        """
        Parses a Dockerfile from a string content.

        Instruction keywords are case-insensitive and returned upper-cased.
        Lines that do not start with a keyword are ignored.

        Args:
            content (str): Content of the Dockerfile.

        Returns:
            List[Instruction]: List of parsed instructions.
        """
        instructions = []
        lines = content.splitlines()
        i = 0

        while i < len(lines):
            start = i + 1
            logical, i = self._read_logical_line(lines, i)
            if not logical.strip():
                continue

            match = _INSTRUCTION.match(logical)
            if not match:
                continue

            inst = match.group(1).upper()
            args_str = (match.group(2) or '').strip()

            if inst in _HEREDOC_INSTRUCTIONS:
                for heredoc in _HEREDOC.finditer(args_str):
                    i = self._skip_heredoc(lines, i, heredoc.group(3), bool(heredoc.group(1)))

            flags, args_str = self._split_flags(args_str)
            instructions.append(Instruction(
                instruction=inst,
                arguments=self._split_arguments(inst, args_str),
                raw=logical.strip(),
                line=start,
                flags=flags,
            ))

        return instructions

    @staticmethod
    def stage_from(inst: Instruction) -> Stage:
        """
        Builds a stage from a FROM instruction: base name, optional AS alias
        and optional --platform flag.
        """
        args = inst.arguments
        base_name = args[0] if args else ""
        alias = None
        if len(args) >= 3 and args[1].upper() == "AS":
            alias = args[2]
        return Stage(
            base_name=base_name,
            alias=alias,
            platform=inst.flags.get("platform"),
            line=inst.line,
        )

    @staticmethod
    def _read_logical_line(lines: List[str], i: int) -> Tuple[str, int]:
        """
        Joins backslash continuations, dropping comment lines in between.
        """
        parts = []
        while i < len(lines):
            line = lines[i]
            i += 1
            stripped = line.strip()
            if stripped.startswith('#'):
                if parts:
                    continue
                return '', i
            if stripped.endswith('\\'):
                parts.append(stripped[:-1])
                continue
            parts.append(line)
            break
        return ' '.join(p.strip() for p in parts), i

    @staticmethod
    def _skip_heredoc(lines: List[str], i: int, terminator: str, strip_tabs: bool) -> int:
        while i < len(lines):
            line = lines[i]
            i += 1
            candidate = line.lstrip('\t') if strip_tabs else line
            if candidate.rstrip() == terminator:
                break
        return i

    @staticmethod
    def _split_flags(args_str: str) -> Tuple[dict, str]:
        flags = {}
        rest = args_str
        while rest.startswith('--'):
            token, _, remainder = rest.partition(' ')
            match = _FLAG.match(token)
            if not match:
                break
            flags[match.group(1).lower()] = match.group(2) or ''
            rest = remainder.lstrip()
        return flags, rest

    @staticmethod
    def _split_arguments(inst: str, args_str: str) -> List[str]:
        # Handle JSON/Exec form vs Shell form
        if args_str.startswith('[') and args_str.endswith(']'):
            try:
                args = json.loads(args_str)
                if isinstance(args, list) and all(isinstance(a, str) for a in args):
                    return args
            except json.JSONDecodeError:
                pass
            return [args_str]

        if inst == "FROM":
            return args_str.split()
        if inst == "ARG":
            return _ARG_TOKEN.findall(args_str)
        if inst == "ENV":
            if '=' in args_str:
                return re.findall(r'(\S+=\S+)', args_str)
            return args_str.split(None, 1)
        return [args_str] if args_str else []


def split_arg(argument: str) -> Tuple[str, Optional[str]]:
    """
    Splits an ARG argument into its name and optional default, unquoting the default.
    """
    if '=' not in argument:
        return argument, None
    name, default = argument.split('=', 1)
    if len(default) >= 2 and default[0] == default[-1] and default[0] in ('"', "'"):
        default = default[1:-1]
    return name, default
