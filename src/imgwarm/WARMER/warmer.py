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
Cache warmer: probes the local cache for each base image and pulls the
images that are missing into the cache store.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import BinaryIO, Callable, Dict, List, Optional, Tuple

from ..MODELS.image import FetchedImage, Image, ManifestRecord
from ..MODELS.warmer_options import RegistryOptions, WarmerOptions
from ..REGISTRY.image_cache import ImageCache, local_source
from ..REGISTRY.image_reference import ImageReference
from ..REGISTRY.registry_client import RegistryClient
from ..RESOLVERS.base_image_resolver import parse_dockerfile
from .errors import AlreadyCachedError, is_already_cached
from .probe import CacheProbe, LocalLookup, ProbeOutcome
from .store_writer import CacheStoreWriter

logger = logging.getLogger(__name__)

# (reference, registry options, platform) -> FetchedImage
RemoteFetcher = Callable[[str, RegistryOptions, str], FetchedImage]

SCRATCH = "scratch"


def cache_key(image: Image) -> str:
    """
    Cache key of an image, derived from its normalized reference and platform.

    :raises ValueError: If the reference is malformed.
    """
    return ImageReference.parse(image.reference).cache_key(image.platform)


class Warmer:
    """
    Warms a single image into a pair of sinks.
    """

    def __init__(self,
                 remote: RemoteFetcher,
                 local: LocalLookup,
                 tar_sink: BinaryIO,
                 manifest_sink: BinaryIO):
        """
        :param remote: Fetches an image from its registry.
        :param local: Looks up a cache key in the local store.
        :param tar_sink: Receives the layer archive.
        :param manifest_sink: Receives the manifest record.
        """
        self.remote = remote
        self.probe = CacheProbe(local)
        self.tar_sink = tar_sink
        self.manifest_sink = manifest_sink

    def warm(self, image: Image, options: WarmerOptions) -> ManifestRecord:
        """
        Ensures image is cached.

        A missing image is fetched and written to both sinks. A cached
        image, fresh or stale, is neither fetched nor written.

        :return: The manifest record written to the manifest sink.
        :raises AlreadyCachedError: If the cache holds an entry for the image.
        """
        key = cache_key(image)

        if not options.force:
            lookup = self.probe(options.cache, key)
            if lookup.present:
                if lookup.outcome is ProbeOutcome.STALE:
                    logger.debug("Cache entry for %s is stale, keeping it", image)
                raise AlreadyCachedError(key, stale=lookup.outcome is ProbeOutcome.STALE)

        logger.info("Retrieving image %s from registry", image)
        fetched = self.remote(image.reference, options.registry, image.platform)

        writer = CacheStoreWriter(self.tar_sink, self.manifest_sink)
        record = writer.write(image, fetched, key)
        logger.info("Cached %s as %s (%s)", image, key, record.digest)
        return record


@dataclass
class WarmReport:
    """Outcome of a warming run."""

    warmed: List[Image] = field(default_factory=list)
    cached: List[Image] = field(default_factory=list)
    skipped: List[Image] = field(default_factory=list)
    failed: List[Tuple[Image, BaseException]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


class _KeyLocks:
    """One lock per cache key, so a key has at most one writer in this process."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def get(self, key: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(key, threading.Lock())


def images_to_warm(options: WarmerOptions) -> List[Image]:
    """
    Explicit images first, then the base images of the Dockerfile. Images
    without a platform get the custom platform, if one is set.
    """
    images = [Image(reference=ref) for ref in options.images]
    if options.dockerfile_path:
        images.extend(parse_dockerfile(options))
    if options.custom_platform:
        images = [
            img if img.platform else img.model_copy(update={"platform": options.custom_platform})
            for img in images
        ]
    return images


def warm_cache(options: WarmerOptions,
               remote: Optional[RemoteFetcher] = None,
               local: Optional[LocalLookup] = None) -> WarmReport:
    """
    Warms every image of a run into options.cache.cache_dir.

    Resolution errors abort the run. Errors for a single image are logged
    and recorded, and the remaining images are still warmed.
    """
    if remote is None:
        remote = RegistryClient(default_platform=options.default_platform or None).retrieve_remote_image
    if local is None:
        local = local_source

    images = images_to_warm(options)
    if not images:
        logger.warning("No images to warm")

    store = ImageCache(options.cache.cache_dir)
    locks = _KeyLocks()

    def warm_one(image: Image) -> Tuple[str, Optional[BaseException]]:
        if image.reference == SCRATCH:
            logger.info("Skipping %s, it is not a registry image", image)
            return "skipped", None
        try:
            key = cache_key(image)
            with locks.get(key), store.staged_entry(key) as (tar_sink, manifest_sink):
                Warmer(remote, local, tar_sink, manifest_sink).warm(image, options)
        except Exception as e:
            if is_already_cached(e):
                logger.info("Image already in cache: %s", image)
                return "cached", None
            logger.error("Failed to warm %s: %s", image, e)
            return "failed", e
        return "warmed", None

    if options.max_workers > 1 and len(images) > 1:
        with ThreadPoolExecutor(max_workers=options.max_workers) as executor:
            results = list(executor.map(warm_one, images))
    else:
        results = [warm_one(image) for image in images]

    report = WarmReport()
    for image, (status, error) in zip(images, results):
        if status == "failed":
            report.failed.append((image, error))
        else:
            getattr(report, status).append(image)

    logger.info("Warmed %d, already cached %d, skipped %d, failed %d",
                len(report.warmed), len(report.cached), len(report.skipped), len(report.failed))
    return report
