# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Image reference parsing and handling.
Parses references like 'alpine:latest', 'golang:1.20' or
'gcr.io/project/image@sha256:...' and derives cache keys from them.
"""

import re
import hashlib
from typing import Optional
from dataclasses import dataclass, replace

_REPOSITORY_COMPONENT = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
_TAG = re.compile(r"^[\w][\w.-]{0,127}$")
_DIGEST = re.compile(r"^[A-Za-z][A-Za-z0-9]*(?:[-_+.][A-Za-z][A-Za-z0-9]*)*:[0-9a-fA-F]{32,}$")


@dataclass(frozen=True)
class ImageReference:
    """
    Parsed registry image reference.

    Examples:
        - alpine -> docker.io/library/alpine:latest
        - golang:1.20 -> docker.io/library/golang:1.20
        - myuser/myimage:v1 -> docker.io/myuser/myimage:v1
        - localhost:5000/image@sha256:abc... -> localhost:5000/image@sha256:abc...
    """

    registry: str
    repository: str
    tag: Optional[str] = None
    digest: Optional[str] = None

    DEFAULT_REGISTRY = "docker.io"
    DEFAULT_TAG = "latest"

    @classmethod
    def parse(cls, reference: str) -> "ImageReference":
        """
        Parse and validate an image reference string.

        Args:
            reference: Image reference string (e.g., 'alpine:latest', 'myuser/myimage:v1')

        Returns:
            Parsed ImageReference object.

        Raises:
            ValueError: If the reference is empty or malformed.
        """
        if not reference or not reference.strip():
            raise ValueError("Empty image reference")
        if any(c.isspace() for c in reference) or "$" in reference:
            raise ValueError(f"Invalid image reference: {reference!r}")

        original = reference
        digest = None
        if "@" in reference:
            reference, digest = reference.rsplit("@", 1)
            if not _DIGEST.match(digest):
                raise ValueError(f"Invalid digest in image reference: {original!r}")

        tag = None
        last_colon = reference.rfind(":")
        if last_colon != -1 and "/" not in reference[last_colon + 1:]:
            tag = reference[last_colon + 1:]
            reference = reference[:last_colon]
            if not _TAG.match(tag):
                raise ValueError(f"Invalid tag in image reference: {original!r}")

        parts = reference.split("/")
        first = parts[0]
        if len(parts) > 1 and ("." in first or ":" in first or first == "localhost"):
            registry = first
            path = parts[1:]
        else:
            registry = cls.DEFAULT_REGISTRY
            path = parts

        if registry == "index.docker.io":
            registry = cls.DEFAULT_REGISTRY
        if registry == cls.DEFAULT_REGISTRY and len(path) == 1:
            path = ["library"] + path

        for component in path:
            if not _REPOSITORY_COMPONENT.match(component):
                raise ValueError(f"Invalid repository in image reference: {original!r}")

        if not tag and not digest:
            tag = cls.DEFAULT_TAG

        return cls(registry=registry, repository="/".join(path), tag=tag, digest=digest)

    @property
    def full_name(self) -> str:
        """Get full image name with registry."""
        name = f"{self.registry}/{self.repository}"
        if self.digest:
            return f"{name}@{self.digest}"
        if self.tag:
            return f"{name}:{self.tag}"
        return name

    @property
    def short_name(self) -> str:
        """Get short image name (without registry if default)."""
        if self.registry != self.DEFAULT_REGISTRY:
            return self.full_name
        repo = self.repository
        if repo.startswith("library/"):
            repo = repo[len("library/"):]
        if self.digest:
            return f"{repo}@{self.digest}"
        return f"{repo}:{self.tag}" if self.tag else repo

    @property
    def identifier(self) -> str:
        """The tag or digest used in manifest URLs."""
        return self.digest or self.tag or self.DEFAULT_TAG

    def with_registry(self, registry: str) -> "ImageReference":
        """Same repository and tag, served from another registry (e.g. a mirror)."""
        return replace(self, registry=registry)

    def with_digest(self, digest: str) -> "ImageReference":
        return replace(self, tag=None, digest=digest)

    def registry_url(self, insecure: bool = False) -> str:
        """Get the registry base URL for API calls."""
        if "://" in self.registry:
            return self.registry
        if self.registry == self.DEFAULT_REGISTRY:
            return "https://registry-1.docker.io"
        scheme = "http" if insecure else "https"
        return f"{scheme}://{self.registry}"

    def cache_key(self, platform: str = "") -> str:
        """Deterministic, filesystem-safe key for this reference and platform."""
        material = f"{self.full_name}|{platform}"
        return hashlib.sha256(material.encode()).hexdigest()

    def __str__(self) -> str:
        return self.short_name

    def __repr__(self) -> str:
        return f"ImageReference({self.full_name})"
