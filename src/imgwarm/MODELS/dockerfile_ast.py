"""
Models for the Dockerfile Abstract Syntax Tree.
"""
from typing import List, Dict, Optional
from pydantic import BaseModel

class Instruction(BaseModel):
    """
    Represents a single instruction in a Dockerfile.
    """
    instruction: str
    arguments: List[str]
    raw: str
    line: int = 0
    flags: Dict[str, str] = {}

class Stage(BaseModel):
    """
    One FROM block of a multi-stage Dockerfile, before argument substitution.
    """
    base_name: str
    alias: Optional[str] = None
    platform: Optional[str] = None
    line: int = 0
