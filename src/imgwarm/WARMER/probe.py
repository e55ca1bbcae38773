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
Tri-state probe of the local cache store.
"""
import logging
from enum import Enum
from typing import Callable, Optional
from dataclasses import dataclass

from ..MODELS.image import CachedImage
from ..MODELS.warmer_options import CacheOptions
from .errors import NotFoundError, ExpiredError

logger = logging.getLogger(__name__)


class ProbeOutcome(str, Enum):
    """State of a cache entry."""

    ABSENT = "absent"
    VALID = "valid"
    STALE = "stale"


@dataclass
class CacheLookup:
    """Probe outcome and, unless absent, the cached image."""

    outcome: ProbeOutcome
    image: Optional[CachedImage] = None

    @property
    def present(self) -> bool:
        return self.outcome is not ProbeOutcome.ABSENT


# (cache options, cache key) -> CacheLookup
LocalLookup = Callable[[CacheOptions, str], CacheLookup]


class CacheProbe:
    """
    Wraps a local lookup and always answers with a CacheLookup.

    Lookups may also report state through NotFoundError and ExpiredError;
    those are translated. Any other exception propagates unchanged.
    """

    def __init__(self, lookup: LocalLookup):
        self.lookup = lookup

    def __call__(self, options: CacheOptions, key: str) -> CacheLookup:
        try:
            result = self.lookup(options, key)
        except NotFoundError:
            result = CacheLookup(ProbeOutcome.ABSENT)
        except ExpiredError as e:
            result = CacheLookup(ProbeOutcome.STALE, e.image)

        if result is None:
            result = CacheLookup(ProbeOutcome.ABSENT)
        logger.debug("Cache probe for %s: %s", key, result.outcome.value)
        return result
