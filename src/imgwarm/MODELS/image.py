"""
Models for base images, fetched registry content and cache manifest records.
"""
import json
from typing import List, Dict, Any, Optional
from pydantic import BaseModel, ConfigDict


class Image(BaseModel):
    """
    A single base image to warm: a registry reference plus the platform
    to pull it for. An empty platform means the default platform.
    """
    model_config = ConfigDict(frozen=True)

    reference: str
    platform: str = ""

    def __str__(self) -> str:
        if self.platform:
            return f"{self.reference} ({self.platform})"
        return self.reference


class Layer(BaseModel):
    """
    A compressed layer blob as served by the registry.
    """
    digest: str
    media_type: str = "application/vnd.docker.image.rootfs.diff.tar.gzip"
    data: bytes


class FetchedImage(BaseModel):
    """
    A complete image retrieved from a registry: manifest, config and layers.
    """
    reference: str
    platform: str = ""
    digest: str
    raw_manifest: bytes
    raw_config: bytes = b"{}"
    layers: List[Layer] = []

    @property
    def manifest(self) -> Dict[str, Any]:
        return json.loads(self.raw_manifest.decode())

    @property
    def config(self) -> Dict[str, Any]:
        return json.loads(self.raw_config.decode())


class ManifestRecord(BaseModel):
    """
    Metadata persisted next to a cached layer archive.
    """
    reference: str
    platform: str = ""
    cache_key: str
    digest: str
    created: str
    layers: List[str] = []
    manifest: Dict[str, Any] = {}
    # Byte size of the archive written with this record; 0 when unknown.
    archive_size: int = 0


class CachedImage(BaseModel):
    """
    An image found in the local cache store.
    """
    record: ManifestRecord
    archive_path: Optional[str] = None
