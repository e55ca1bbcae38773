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
Serializes a fetched image into the layer-archive and manifest sinks.
"""
import io
import json
import tarfile
import hashlib
import logging
from datetime import datetime, timezone
from typing import BinaryIO, List

from ..MODELS.image import FetchedImage, Image, ManifestRecord
from .errors import StoreError

logger = logging.getLogger(__name__)


def _hex(digest: str) -> str:
    return digest.split(":", 1)[-1]


class CacheStoreWriter:
    """
    Writes one cache entry: a combined tar of config and layers to the
    archive sink, and a ManifestRecord as JSON to the manifest sink.

    Both payloads are built in memory before either sink is touched, so a
    serialization failure leaves both sinks empty.
    """

    def __init__(self, tar_sink: BinaryIO, manifest_sink: BinaryIO):
        self.tar_sink = tar_sink
        self.manifest_sink = manifest_sink

    def write(self, image: Image, fetched: FetchedImage, cache_key: str) -> ManifestRecord:
        try:
            archive = self.build_archive(image, fetched)
            record = self.build_record(image, fetched, cache_key, len(archive))
            payload = record.model_dump_json(indent=2).encode()
        except (ValueError, KeyError, tarfile.TarError) as e:
            raise StoreError(f"Failed to serialize {image.reference}: {e}") from e

        self.tar_sink.write(archive)
        self.manifest_sink.write(payload)
        logger.debug("Wrote %d archive bytes for %s", len(archive), image.reference)
        return record

    @staticmethod
    def build_archive(image: Image, fetched: FetchedImage) -> bytes:
        """
        Builds a 'docker save' style tarball holding manifest.json, the
        config blob and every layer blob.
        """
        buffer = io.BytesIO()
        config_name = f"{hashlib.sha256(fetched.raw_config).hexdigest()}.json"
        layer_names: List[str] = []

        with tarfile.open(fileobj=buffer, mode="w") as tar:
            _add_file(tar, config_name, fetched.raw_config)
            for layer in fetched.layers:
                if not layer.digest:
                    raise StoreError(f"Layer without digest in {image.reference}")
                name = f"{_hex(layer.digest)}/layer.tar"
                _add_file(tar, name, layer.data)
                layer_names.append(name)

            manifest = [{
                "Config": config_name,
                "RepoTags": [image.reference],
                "Layers": layer_names,
            }]
            _add_file(tar, "manifest.json", json.dumps(manifest).encode())

        return buffer.getvalue()

    @staticmethod
    def build_record(image: Image, fetched: FetchedImage, cache_key: str,
                     archive_size: int = 0) -> ManifestRecord:
        created = fetched.config.get("created") or \
            datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        return ManifestRecord(
            reference=image.reference,
            platform=image.platform,
            cache_key=cache_key,
            digest=fetched.digest,
            created=created,
            layers=[layer.digest for layer in fetched.layers],
            manifest=fetched.manifest,
            archive_size=archive_size,
        )


def _add_file(tar: tarfile.TarFile, name: str, data: bytes) -> None:
    info = tarfile.TarInfo(name=name)
    info.size = len(data)
    info.mode = 0o644
    tar.addfile(info, io.BytesIO(data))
