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
Local image cache store.
Each entry is a layer archive named by its cache key plus a '<key>.json'
manifest record next to it.
"""

import os
import json
import logging
import tempfile
from contextlib import contextmanager
from typing import BinaryIO, Iterator, Optional, Tuple
from pathlib import Path
from datetime import datetime, timedelta, timezone

from pydantic import ValidationError

from ..MODELS.image import CachedImage, ManifestRecord
from ..MODELS.warmer_options import CacheOptions
from ..WARMER.errors import StoreError
from ..WARMER.probe import CacheLookup, ProbeOutcome

logger = logging.getLogger(__name__)


class ImageCache:
    """
    Manages a directory of cached base images keyed by cache key.
    """

    def __init__(self, cache_dir: str):
        """
        Initialize the image cache.

        Args:
            cache_dir: Directory for cache storage.
        """
        self.cache_dir = Path(cache_dir)

    def archive_path(self, key: str) -> Path:
        return self.cache_dir / key

    def manifest_path(self, key: str) -> Path:
        return self.cache_dir / f"{key}.json"

    def read_record(self, key: str) -> ManifestRecord:
        """
        Read the manifest record of an entry.

        Raises:
            OSError: If the record cannot be read.
            StoreError: If the record is not valid JSON for a ManifestRecord.
        """
        path = self.manifest_path(key)
        with open(path, "r", encoding="utf-8") as f:
            content = f.read()
        try:
            return ManifestRecord.model_validate(json.loads(content))
        except (json.JSONDecodeError, ValidationError) as e:
            raise StoreError(f"Corrupt cache manifest {path}: {e}") from e

    def lookup(self, key: str, ttl: timedelta) -> CacheLookup:
        """
        Probe the entry for a key.

        Args:
            key: Cache key
            ttl: How long an entry stays valid after it was written

        Returns:
            CacheLookup with ABSENT, VALID or STALE
        """
        archive = self.archive_path(key)
        try:
            stat = archive.stat()
        except FileNotFoundError:
            return CacheLookup(ProbeOutcome.ABSENT)

        written = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
        if written + ttl < datetime.now(timezone.utc):
            logger.debug("Cache entry %s expired at %s", key, written + ttl)
            return CacheLookup(ProbeOutcome.STALE, self._stale_image(key))

        record = self.read_record(key)
        if record.archive_size and record.archive_size != stat.st_size:
            # New record next to the old archive while an entry is replaced.
            logger.debug("Cache entry %s is being replaced", key)
            return CacheLookup(ProbeOutcome.ABSENT)
        return CacheLookup(
            ProbeOutcome.VALID,
            CachedImage(record=record, archive_path=str(archive)),
        )

    def _stale_image(self, key: str) -> Optional[CachedImage]:
        try:
            record = self.read_record(key)
        except (OSError, StoreError) as e:
            logger.debug("Stale cache entry %s has no usable manifest: %s", key, e)
            return None
        return CachedImage(record=record, archive_path=str(self.archive_path(key)))

    @contextmanager
    def staged_entry(self, key: str) -> Iterator[Tuple[BinaryIO, BinaryIO]]:
        """
        Yield temporary (archive, manifest) files for a key.

        They are renamed into place only if the block exits normally; on
        any exception both are removed and the existing entry is untouched.

        The two renames are not one atomic step. When an existing entry is
        overwritten, a reader between them sees the new record next to the
        old archive; lookup() detects that through the record's archive_size
        and reports the entry as absent.
        """
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        archive_tmp = tempfile.NamedTemporaryFile(
            dir=self.cache_dir, prefix=f".{key}.", suffix=".tar.part", delete=False)
        manifest_tmp = tempfile.NamedTemporaryFile(
            dir=self.cache_dir, prefix=f".{key}.", suffix=".json.part", delete=False)
        committed = False
        try:
            yield archive_tmp, manifest_tmp
            archive_tmp.close()
            manifest_tmp.close()
            # Manifest first: a visible archive always has its record.
            os.replace(manifest_tmp.name, self.manifest_path(key))
            os.replace(archive_tmp.name, self.archive_path(key))
            committed = True
        finally:
            archive_tmp.close()
            manifest_tmp.close()
            if not committed:
                for path in (archive_tmp.name, manifest_tmp.name):
                    Path(path).unlink(missing_ok=True)


def local_source(options: CacheOptions, key: str) -> CacheLookup:
    """
    Production local lookup: probes the cache directory from the options.
    An unset cache directory behaves like an empty cache.
    """
    if not options.cache_dir:
        return CacheLookup(ProbeOutcome.ABSENT)
    return ImageCache(options.cache_dir).lookup(key, options.cache_ttl)
