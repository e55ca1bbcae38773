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
Docker registry client for retrieving base images.
Implements the pull side of the Docker Registry HTTP API V2.
"""

import re
import ssl
import json
import base64
import hashlib
import logging
from typing import Optional, Dict, List, Any, Tuple
from dataclasses import dataclass
from email.message import Message
from urllib.request import urlopen, Request
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..CONFIG.platform import detect_default_platform, parse_platform
from ..MODELS.image import FetchedImage, Layer
from ..MODELS.warmer_options import RegistryOptions
from ..WARMER.errors import FetchError
from .image_reference import ImageReference

logger = logging.getLogger(__name__)

MANIFEST_LIST_TYPES = (
    "application/vnd.docker.distribution.manifest.list.v2+json",
    "application/vnd.oci.image.index.v1+json",
)
MANIFEST_TYPES = (
    "application/vnd.docker.distribution.manifest.v2+json",
    "application/vnd.oci.image.manifest.v1+json",
)

_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')


@dataclass
class RegistryAuth:
    """Authentication credentials for a registry."""

    username: Optional[str] = None
    password: Optional[str] = None

    @property
    def basic(self) -> str:
        auth = base64.b64encode(f"{self.username}:{self.password}".encode()).decode()
        return f"Basic {auth}"


def _is_transient(error: BaseException) -> bool:
    if isinstance(error, HTTPError):
        return error.code == 429 or error.code >= 500
    return isinstance(error, (URLError, TimeoutError, ConnectionError))


def _sha256(data: bytes) -> str:
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


class RegistryClient:
    """
    Client for pulling images from Docker Hub and OCI-compatible registries.
    """

    def __init__(self, default_platform: Optional[str] = None, timeout: int = 60):
        """
        Initialize the registry client.

        Args:
            default_platform: Platform used when a request names none.
                Detected from the host when not given.
            timeout: Socket timeout in seconds for each request.
        """
        self.default_platform = default_platform or detect_default_platform()
        self.timeout = timeout
        self._auth_tokens: Dict[str, str] = {}
        self._credentials: Dict[str, RegistryAuth] = {}

    def set_credentials(self, registry: str, username: str, password: str) -> None:
        """
        Set credentials for a registry.

        Args:
            registry: Registry hostname (e.g., 'docker.io')
            username: Username
            password: Password or access token
        """
        self._credentials[registry] = RegistryAuth(username=username, password=password)

    def retrieve_remote_image(self, reference: str, options: RegistryOptions,
                              platform: str = "") -> FetchedImage:
        """
        Retrieve a complete image (manifest, config and layers).

        Images on the default registry are tried on each configured mirror
        first, then on the default registry unless the fallback is disabled.

        Args:
            reference: Image reference (e.g., 'alpine:latest')
            options: Registry access options
            platform: 'os/arch[/variant]', empty for the default platform

        Returns:
            FetchedImage

        Raises:
            FetchError: If no registry could deliver the image.
        """
        try:
            ref = ImageReference.parse(reference)
        except ValueError as e:
            raise FetchError(str(e)) from e

        if options.username and options.password and ref.registry not in self._credentials:
            self.set_credentials(ref.registry, options.username, options.password)

        candidates: List[ImageReference] = []
        if ref.registry == ImageReference.DEFAULT_REGISTRY:
            candidates.extend(ref.with_registry(mirror.rstrip("/")) for mirror in options.registry_mirrors)
        if not candidates or not options.skip_default_registry_fallback:
            candidates.append(ref)

        last_error: Optional[Exception] = None
        for candidate in candidates:
            try:
                return self._pull(candidate, options, platform or self.default_platform, reference)
            except (FetchError, HTTPError, URLError, OSError, ValueError) as e:
                last_error = e
                if candidate is not ref:
                    logger.warning("Failed to pull %s from mirror %s: %s",
                                   reference, candidate.registry, e)

        if isinstance(last_error, FetchError):
            raise last_error
        raise FetchError(f"Failed to retrieve {reference}: {last_error}") from last_error

    def _pull(self, ref: ImageReference, options: RegistryOptions,
              platform: str, reference: str) -> FetchedImage:
        logger.debug("Pulling %s for %s", ref.full_name, platform)
        raw_manifest, manifest, digest = self.get_manifest(ref, options, platform)

        config_digest = manifest.get("config", {}).get("digest", "")
        if not config_digest:
            raise FetchError(f"No config digest in manifest of {ref.full_name}")
        raw_config = self.get_blob(ref, options, config_digest)

        layers = []
        descriptors = manifest.get("layers", [])
        for i, descriptor in enumerate(descriptors):
            layer_digest = descriptor.get("digest", "")
            if not layer_digest:
                raise FetchError(f"No digest in layer {i} of {ref.full_name}")
            logger.debug("Pulling layer %d/%d: %s", i + 1, len(descriptors), layer_digest[:19])
            layers.append(Layer(
                digest=layer_digest,
                media_type=descriptor.get("mediaType", Layer.model_fields["media_type"].default),
                data=self.get_blob(ref, options, layer_digest),
            ))

        return FetchedImage(
            reference=reference,
            platform=platform,
            digest=digest,
            raw_manifest=raw_manifest,
            raw_config=raw_config,
            layers=layers,
        )

    def get_manifest(self, ref: ImageReference, options: RegistryOptions,
                     platform: str) -> Tuple[bytes, Dict[str, Any], str]:
        """
        Get the image manifest, resolving manifest lists for the platform.

        Returns:
            (raw manifest bytes, parsed manifest, manifest digest)
        """
        url = f"{self._base_url(ref, options)}/v2/{ref.repository}/manifests/{ref.identifier}"
        accept = ", ".join(MANIFEST_TYPES + MANIFEST_LIST_TYPES)

        content, headers = self._request(url, ref, options, accept)
        digest = headers.get("Docker-Content-Digest") or _sha256(content)
        if ref.digest and _sha256(content) != ref.digest:
            raise FetchError(f"Manifest digest mismatch for {ref.full_name}")

        manifest = json.loads(content.decode())
        media_type = manifest.get("mediaType") or headers.get("Content-Type", "")
        if media_type in MANIFEST_LIST_TYPES or "manifests" in manifest:
            child = self._select_platform_manifest(ref, manifest, platform)
            return self.get_manifest(ref.with_digest(child), options, platform)

        return content, manifest, digest

    @staticmethod
    def _select_platform_manifest(ref: ImageReference, manifest_list: Dict[str, Any],
                                  platform: str) -> str:
        """Select the digest of the manifest matching the platform."""
        wanted = parse_platform(platform)
        fallback = None

        for entry in manifest_list.get("manifests", []):
            info = entry.get("platform", {})
            if info.get("os") != wanted.os or info.get("architecture") != wanted.architecture:
                continue
            variant = parse_platform(
                f"{info['os']}/{info['architecture']}/{info.get('variant', '')}".rstrip("/")
            ).variant
            if variant == wanted.variant:
                return entry["digest"]
            if fallback is None and not wanted.variant:
                fallback = entry["digest"]

        if fallback:
            return fallback
        raise FetchError(f"No manifest for platform {platform} in {ref.full_name}")

    def get_blob(self, ref: ImageReference, options: RegistryOptions, digest: str) -> bytes:
        """
        Download a blob and verify its digest.
        """
        url = f"{self._base_url(ref, options)}/v2/{ref.repository}/blobs/{digest}"
        content, _ = self._request(url, ref, options)
        if digest.startswith("sha256:") and _sha256(content) != digest:
            raise FetchError(f"Blob digest mismatch: expected {digest}, got {_sha256(content)}")
        return content

    def _base_url(self, ref: ImageReference, options: RegistryOptions) -> str:
        return ref.registry_url(insecure=options.is_insecure(ref.registry))

    def _request(self, url: str, ref: ImageReference, options: RegistryOptions,
                 accept: Optional[str] = None) -> Tuple[bytes, Message]:
        """Make a request, retrying transient failures."""
        retrying = Retrying(
            stop=stop_after_attempt(options.retries + 1),
            wait=wait_exponential(multiplier=0.5, max=10),
            retry=retry_if_exception(_is_transient),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return retrying(self._make_request, url, ref, options, accept)

    def _make_request(self, url: str, ref: ImageReference, options: RegistryOptions,
                      accept: Optional[str] = None, retried: bool = False) -> Tuple[bytes, Message]:
        """Make an authenticated request to the registry."""
        request = Request(url)

        token = self._auth_tokens.get(self._scope_key(ref))
        if token is None:
            creds = self._credentials.get(ref.registry)
            if creds and creds.username and creds.password:
                token = creds.basic
        if token:
            request.add_header("Authorization", token)
        if accept:
            request.add_header("Accept", accept)

        context = self._ssl_context(ref, options)

        try:
            with urlopen(request, timeout=self.timeout, context=context) as response:
                return response.read(), response.headers
        except HTTPError as e:
            if e.code == 401 and not retried:
                challenge = e.headers.get("WWW-Authenticate", "") if e.headers else ""
                if self._authenticate(ref, options, challenge):
                    return self._make_request(url, ref, options, accept, retried=True)
            raise

    def _authenticate(self, ref: ImageReference, options: RegistryOptions, challenge: str) -> bool:
        """
        Answer a Bearer challenge with a token from the realm.

        Returns:
            True if a new token was obtained
        """
        if not challenge.lower().startswith("bearer"):
            return False
        params = dict(_CHALLENGE_PARAM.findall(challenge))
        realm = params.pop("realm", "")
        if not realm:
            return False
        params.setdefault("scope", f"repository:{ref.repository}:pull")

        request = Request(f"{realm}?{urlencode(params)}")
        creds = self._credentials.get(ref.registry)
        if creds and creds.username and creds.password:
            request.add_header("Authorization", creds.basic)

        context = self._ssl_context(ref, options)

        with urlopen(request, timeout=self.timeout, context=context) as response:
            data = json.loads(response.read().decode())
        token = data.get("token") or data.get("access_token")
        if not token:
            return False
        self._auth_tokens[self._scope_key(ref)] = f"Bearer {token}"
        return True

    @staticmethod
    def _ssl_context(ref: ImageReference, options: RegistryOptions) -> Optional[ssl.SSLContext]:
        if not options.skips_tls_verify(ref.registry):
            return None
        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        return context

    @staticmethod
    def _scope_key(ref: ImageReference) -> str:
        return f"{ref.registry}/{ref.repository}"
