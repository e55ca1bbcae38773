"""
Unit tests for the cache warmer.
"""
import io
import json
import tarfile

import pytest

from imgwarm.MODELS.image import Image, Layer, ManifestRecord
from imgwarm.MODELS.warmer_options import WarmerOptions
from imgwarm.WARMER.errors import (
    AlreadyCachedError,
    ExpiredError,
    FetchError,
    NotFoundError,
    StoreError,
    is_already_cached,
)
from imgwarm.WARMER.probe import ProbeOutcome
from imgwarm.WARMER.warmer import Warmer, cache_key

from fakes import FakeLocal, FakeRemote, fake_image

IMAGE = Image(reference="foo:latest", platform="")


@pytest.fixture
def sinks():
    return io.BytesIO(), io.BytesIO()


def make_warmer(sinks, remote=None, local=None):
    tar_buf, manifest_buf = sinks
    return Warmer(
        remote=remote or FakeRemote(),
        local=local or FakeLocal(),
        tar_sink=tar_buf,
        manifest_sink=manifest_buf,
    )


class TestWarm:

    def test_not_in_cache(self, sinks):
        remote = FakeRemote()
        cw = make_warmer(sinks, remote, FakeLocal(error=NotFoundError()))

        cw.warm(IMAGE, WarmerOptions())

        tar_buf, manifest_buf = sinks
        assert len(tar_buf.getvalue()) > 0
        assert len(manifest_buf.getvalue()) > 0
        assert remote.calls == [("foo:latest", "")]

    def test_absent_lookup_fetches_once(self, sinks):
        remote = FakeRemote()
        cw = make_warmer(sinks, remote, FakeLocal(ProbeOutcome.ABSENT))
        record = cw.warm(IMAGE, WarmerOptions())
        assert len(remote.calls) == 1
        assert record.reference == "foo:latest"

    def test_in_cache_not_expired(self, sinks):
        remote = FakeRemote()
        cw = make_warmer(sinks, remote, FakeLocal(ProbeOutcome.VALID))

        with pytest.raises(AlreadyCachedError) as excinfo:
            cw.warm(IMAGE, WarmerOptions())

        assert is_already_cached(excinfo.value)
        assert not excinfo.value.stale
        assert sinks[0].getvalue() == b""
        assert sinks[1].getvalue() == b""
        assert remote.calls == []

    def test_in_cache_expired(self, sinks):
        remote = FakeRemote()
        cw = make_warmer(sinks, remote, FakeLocal(error=ExpiredError("key")))

        with pytest.raises(AlreadyCachedError) as excinfo:
            cw.warm(IMAGE, WarmerOptions())

        assert is_already_cached(excinfo.value)
        assert excinfo.value.stale
        assert sinks[0].getvalue() == b""
        assert sinks[1].getvalue() == b""
        assert remote.calls == []

    def test_stale_lookup(self, sinks):
        cw = make_warmer(sinks, local=FakeLocal(ProbeOutcome.STALE))
        with pytest.raises(AlreadyCachedError):
            cw.warm(IMAGE, WarmerOptions())
        assert sinks[0].getvalue() == b""

    def test_force_skips_probe(self, sinks):
        local = FakeLocal(ProbeOutcome.VALID)
        remote = FakeRemote()
        cw = make_warmer(sinks, remote, local)

        cw.warm(IMAGE, WarmerOptions(force=True))

        assert local.keys == []
        assert len(remote.calls) == 1
        assert len(sinks[0].getvalue()) > 0

    def test_fetch_failure_writes_nothing(self, sinks):
        error = FetchError("registry unavailable")
        cw = make_warmer(sinks, FakeRemote(error=error))

        with pytest.raises(FetchError) as excinfo:
            cw.warm(IMAGE, WarmerOptions())

        assert excinfo.value is error
        assert not is_already_cached(excinfo.value)
        assert sinks[0].getvalue() == b""
        assert sinks[1].getvalue() == b""

    def test_probe_failure_propagates(self, sinks):
        error = OSError("disk on fire")
        remote = FakeRemote()
        cw = make_warmer(sinks, remote, FakeLocal(error=error))

        with pytest.raises(OSError) as excinfo:
            cw.warm(IMAGE, WarmerOptions())

        assert excinfo.value is error
        assert remote.calls == []

    def test_store_failure_writes_nothing(self, sinks):
        broken = fake_image()
        broken.layers.append(Layer(digest="", data=b"x"))
        cw = make_warmer(sinks, FakeRemote(image=broken))

        with pytest.raises(StoreError):
            cw.warm(IMAGE, WarmerOptions())

        assert sinks[0].getvalue() == b""
        assert sinks[1].getvalue() == b""

    def test_probe_receives_cache_key(self, sinks):
        local = FakeLocal()
        image = Image(reference="alpine:3.19", platform="linux/arm64")
        remote = FakeRemote()
        make_warmer(sinks, remote, local).warm(image, WarmerOptions())

        assert local.keys == [cache_key(image)]
        assert remote.calls == [("alpine:3.19", "linux/arm64")]

    def test_written_archive_and_manifest(self, sinks):
        fetched = fake_image()
        make_warmer(sinks, FakeRemote(image=fetched)).warm(IMAGE, WarmerOptions())
        tar_buf, manifest_buf = sinks

        with tarfile.open(fileobj=io.BytesIO(tar_buf.getvalue())) as tar:
            names = tar.getnames()
            manifest = json.load(tar.extractfile("manifest.json"))
        config_name = f"{fetched.manifest['config']['digest'].split(':')[1]}.json"
        layer_name = f"{fetched.layers[0].digest.split(':')[1]}/layer.tar"
        assert config_name in names
        assert layer_name in names
        assert manifest[0]["Config"] == config_name
        assert manifest[0]["Layers"] == [layer_name]
        assert manifest[0]["RepoTags"] == ["foo:latest"]

        record = ManifestRecord.model_validate_json(manifest_buf.getvalue())
        assert record.reference == "foo:latest"
        assert record.cache_key == cache_key(IMAGE)
        assert record.digest == fetched.digest
        assert record.layers == [fetched.layers[0].digest]
        assert record.created == "2024-01-01T00:00:00Z"
        assert record.archive_size == len(tar_buf.getvalue())


class TestCacheKey:

    def test_normalized_references_share_a_key(self):
        assert cache_key(Image(reference="alpine")) == \
            cache_key(Image(reference="docker.io/library/alpine:latest"))

    def test_platform_changes_key(self):
        assert cache_key(Image(reference="alpine")) != \
            cache_key(Image(reference="alpine", platform="linux/arm64"))

    def test_key_is_deterministic(self):
        image = Image(reference="golang:1.20")
        assert cache_key(image) == cache_key(Image(reference="golang:1.20"))
        assert len(cache_key(image)) == 64


def test_is_already_cached():
    assert is_already_cached(AlreadyCachedError())
    assert is_already_cached(AlreadyCachedError(stale=True))
    assert not is_already_cached(None)
    assert not is_already_cached(NotFoundError())
    assert not is_already_cached(ExpiredError())
    assert not is_already_cached(ValueError("boom"))
