"""
Utilities for substituting build arguments into Dockerfile strings.
"""
import re
from typing import Dict, Optional


class UnresolvedVariableError(KeyError):
    """
    Raised when a variable has no binding and no default.
    """
    def __init__(self, name: str):
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"Variable {self.name} not found in context"


class ArgInterpolator:
    """
    Utility for interpolating build arguments in strings.
    Supports $VAR, ${VAR}, ${VAR:-default}, ${VAR:+value} and \\$ escapes.
    """
    # Group 1: escaped dollar
    # Group 2: braced VAR name, group 3: - or +, group 4: default or value
    # Group 5: bare VAR name
    PATTERN = re.compile(
        r'(\\\$)'
        r'|\$\{([A-Za-z_][A-Za-z0-9_]*)(?::(-|\+)([^}]*))?\}'
        r'|\$([A-Za-z_][A-Za-z0-9_]*)'
    )

    @classmethod
    def interpolate(cls, template: str, context: Dict[str, Optional[str]]) -> str:
        """
        Interpolates build arguments in the template string using the provided context.

        A name mapped to None is declared but unset.

        :param template: The string containing $VAR or ${VAR} placeholders.
        :param context: The build argument context.
        :return: The interpolated string.
        :raises UnresolvedVariableError: If a variable is unset and no default is provided.
        """
        def replace(match):
            if match.group(1):
                return '$'

            var_name = match.group(2) or match.group(5)
            modifier = match.group(3)
            alt_value = match.group(4) or ''

            value = context.get(var_name)

            if modifier == '-':
                return value if value else cls.interpolate(alt_value, context)
            elif modifier == '+':
                return cls.interpolate(alt_value, context) if value else ''
            if value is None:
                raise UnresolvedVariableError(var_name)
            return value

        return cls.PATTERN.sub(replace, template)
