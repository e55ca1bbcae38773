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
Error taxonomy for resolving and warming base images.

Cache-state signals (NotFoundError, ExpiredError) are consumed by the
warmer; everything else is surfaced to the caller.
"""
from typing import Optional, Any


class WarmerError(Exception):
    """Base class for all imgwarm errors."""


class DockerfileNotFoundError(WarmerError, FileNotFoundError):
    """The Dockerfile does not exist or cannot be read."""

    def __init__(self, path: str, reason: str = "no such file"):
        self.path = path
        super().__init__(f"Dockerfile {path}: {reason}")


class DockerfileParseError(WarmerError):
    """The Dockerfile holds no usable FROM instruction or cannot be resolved."""

    def __init__(self, message: str, line: Optional[int] = None):
        self.line = line
        if line is not None:
            message = f"line {line}: {message}"
        super().__init__(message)


class NotFoundError(WarmerError):
    """No local cache entry exists for a key."""

    def __init__(self, key: str = ""):
        self.key = key
        super().__init__(f"Layer with cache key {key} not found" if key else "not found")


class ExpiredError(WarmerError):
    """A local cache entry exists but is older than the cache TTL."""

    def __init__(self, key: str = "", image: Any = None):
        self.key = key
        self.image = image
        super().__init__(f"Cached layer {key} is expired" if key else "expired")


class AlreadyCachedError(WarmerError):
    """Raised by the warmer when an image needs no fetch."""

    def __init__(self, key: str = "", stale: bool = False):
        self.key = key
        self.stale = stale
        super().__init__("Image already cached" + (f": {key}" if key else ""))


class FetchError(WarmerError):
    """The registry could not deliver an image."""


class StoreError(WarmerError):
    """A fetched image could not be serialized into the cache sinks."""


def is_already_cached(err: Optional[BaseException]) -> bool:
    """
    Returns True if err reports an image that is present in the cache,
    whether its entry is fresh or stale.
    """
    return isinstance(err, AlreadyCachedError)


class ConfigError(WarmerError):
    """Warmer configuration is invalid."""
