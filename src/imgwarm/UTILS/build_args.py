"""
Build argument environment: ARG defaults merged with caller overrides.
"""
from typing import Dict, Iterable, List, Optional

from .string_interpolation import ArgInterpolator, UnresolvedVariableError


def parse_build_args(build_args: Iterable[str]) -> Dict[str, Optional[str]]:
    """
    Parses 'name=value' overrides. Later entries win; a bare 'name'
    declares the argument without a value.
    """
    overrides: Dict[str, Optional[str]] = {}
    for arg in build_args:
        if '=' in arg:
            key, value = arg.split('=', 1)
            overrides[key.strip()] = value
        elif arg.strip():
            overrides[arg.strip()] = None
    return overrides


class BuildArgEnvironment:
    """
    Name to value mapping for one Dockerfile resolution.

    Caller overrides always take precedence over ARG defaults, which take
    precedence over builtins. Names without a default, an override or a
    builtin stay unresolved.
    """
    def __init__(self, build_args: Optional[List[str]] = None,
                 builtins: Optional[Dict[str, str]] = None):
        self.overrides = parse_build_args(build_args or [])
        self.builtins = dict(builtins or {})
        self.declared: Dict[str, Optional[str]] = {}

    def declare(self, name: str, default: Optional[str] = None) -> None:
        """
        Records an ARG instruction. The default may reference earlier arguments.
        """
        if default is None:
            self.declared.setdefault(name, None)
            return
        try:
            self.declared[name] = ArgInterpolator.interpolate(default, self.values())
        except UnresolvedVariableError:
            self.declared[name] = None

    def values(self) -> Dict[str, Optional[str]]:
        merged: Dict[str, Optional[str]] = dict(self.builtins)
        for key, value in self.declared.items():
            # A bare ARG of an automatic argument keeps its automatic value.
            if value is not None:
                merged[key] = value
            else:
                merged.setdefault(key, None)
        for key, value in self.overrides.items():
            if value is not None:
                merged[key] = value
            else:
                merged.setdefault(key, None)
        return merged

    def substitute(self, text: str) -> str:
        """
        :raises UnresolvedVariableError: If text uses an argument with no value.
        """
        return ArgInterpolator.interpolate(text, self.values())
