"""
Platform strings ('os/arch[/variant]') and the default platform of this host.
"""
import platform as _host
from typing import Dict, NamedTuple

_ARCH_ALIASES = {
    "x86_64": "amd64",
    "x86-64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv8l": "arm",
    "armv7l": "arm",
    "armv7": "arm",
    "armv6l": "arm",
    "armhf": "arm",
    "i386": "386",
    "i686": "386",
    "x86": "386",
}

_ARM_VARIANTS = {
    "armv8l": "v8",
    "armv7l": "v7",
    "armv7": "v7",
    "armv6l": "v6",
    "armhf": "v7",
}


class Platform(NamedTuple):
    os: str
    architecture: str
    variant: str = ""

    def __str__(self) -> str:
        parts = [self.os, self.architecture]
        if self.variant:
            parts.append(self.variant)
        return "/".join(parts)


def normalize(os_name: str, arch: str, variant: str = "") -> Platform:
    """
    Normalizes an os/arch/variant triple the way registries label manifests.
    """
    raw_arch = arch.lower()
    os_name = os_name.lower()
    arch = _ARCH_ALIASES.get(raw_arch, raw_arch)
    variant = variant.lower() or _ARM_VARIANTS.get(raw_arch, "")

    if arch == "arm64" and variant in ("8", "v8"):
        variant = ""
    elif arch == "arm" and variant in ("", "7"):
        variant = "v7"
    elif arch == "arm" and variant in ("5", "6", "8"):
        variant = f"v{variant}"
    return Platform(os_name, arch, variant)


def parse_platform(value: str) -> Platform:
    """
    Parses 'os/arch[/variant]'.

    :raises ValueError: If the string has fewer than two or more than three parts.
    """
    parts = value.strip().split("/")
    if len(parts) not in (2, 3) or not all(parts):
        raise ValueError(f"Invalid platform: {value!r}")
    return normalize(*parts)


def detect_default_platform() -> str:
    """
    Computes the platform of the running host. 32-bit arm kernels on v8
    cores run v7 userlands, so arm/v8 is reported as arm/v7.
    """
    plat = normalize(_host.system() or "linux", _host.machine() or "amd64")
    if plat.architecture == "arm" and plat.variant == "v8":
        plat = plat._replace(variant="v7")
    return str(plat)


def platform_args(value: str, prefix: str) -> Dict[str, str]:
    """
    Automatic build arguments for a platform, e.g. TARGETOS and TARGETARCH.
    """
    plat = parse_platform(value)
    return {
        f"{prefix}PLATFORM": str(plat),
        f"{prefix}OS": plat.os,
        f"{prefix}ARCH": plat.architecture,
        f"{prefix}VARIANT": plat.variant,
    }

