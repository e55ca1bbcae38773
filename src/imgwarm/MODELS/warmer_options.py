"""
Configuration models for a warming run.
"""
import re
from datetime import timedelta
from typing import List, Any
from pydantic import BaseModel, ConfigDict, Field, field_validator

_DURATION_PART = re.compile(r'(\d+(?:\.\d+)?)(ms|s|m|h|d)')
_DURATION_UNITS = {
    "ms": "milliseconds",
    "s": "seconds",
    "m": "minutes",
    "h": "hours",
    "d": "days",
}


def parse_duration(value: str) -> timedelta:
    """
    Parses a duration such as '336h', '1h30m' or '90s'.

    :raises ValueError: If the string is not a valid duration.
    """
    text = value.strip()
    if not text:
        raise ValueError("Empty duration")
    if text.isdigit():
        return timedelta(seconds=int(text))

    pos = 0
    total = timedelta()
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        amount, unit = match.groups()
        total += timedelta(**{_DURATION_UNITS[unit]: float(amount)})
        pos = match.end()
    if pos != len(text):
        raise ValueError(f"Invalid duration: {value!r}")
    return total


class CacheOptions(BaseModel):
    """
    Where the local cache lives and how long entries stay fresh.
    """
    model_config = ConfigDict(frozen=True)

    cache_dir: str = "/cache"
    cache_ttl: timedelta = timedelta(weeks=2)

    @field_validator("cache_ttl", mode="before")
    @classmethod
    def _parse_ttl(cls, value: Any) -> Any:
        if isinstance(value, str):
            return parse_duration(value)
        return value


class RegistryOptions(BaseModel):
    """
    Registry access policy handed to the remote fetcher.
    """
    model_config = ConfigDict(frozen=True)

    registry_mirrors: List[str] = []
    skip_default_registry_fallback: bool = False
    insecure_registries: List[str] = []
    skip_tls_verify_registries: List[str] = []
    insecure_pull: bool = False
    skip_tls_verify_pull: bool = False
    retries: int = Field(default=0, ge=0)
    username: str = ""
    password: str = ""

    def is_insecure(self, registry: str) -> bool:
        return self.insecure_pull or registry in self.insecure_registries

    def skips_tls_verify(self, registry: str) -> bool:
        return self.skip_tls_verify_pull or registry in self.skip_tls_verify_registries


class WarmerOptions(BaseModel):
    """
    Complete configuration for one warming run.
    """
    model_config = ConfigDict(frozen=True)

    dockerfile_path: str = ""
    build_args: List[str] = []
    images: List[str] = []

    cache: CacheOptions = Field(default_factory=CacheOptions)
    registry: RegistryOptions = Field(default_factory=RegistryOptions)

    force: bool = False
    custom_platform: str = ""
    default_platform: str = ""
    max_workers: int = Field(default=1, ge=1)

    @property
    def platform(self) -> str:
        """The platform to warm for: the custom platform, else the host default."""
        return self.custom_platform or self.default_platform
