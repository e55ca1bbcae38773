"""
Unit tests for warming all images of a run into a cache directory.
"""
import os
import time
from datetime import timedelta

from imgwarm.MODELS.image import Image
from imgwarm.MODELS.warmer_options import CacheOptions, WarmerOptions
from imgwarm.REGISTRY.image_cache import local_source
from imgwarm.WARMER.errors import FetchError
from imgwarm.WARMER.warmer import cache_key, images_to_warm, warm_cache

from fakes import FakeRemote


def options_for(tmp_path, **kwargs):
    cache = kwargs.pop("cache", CacheOptions(cache_dir=str(tmp_path / "cache")))
    return WarmerOptions(cache=cache, default_platform="linux/amd64", **kwargs)


def cache_files(tmp_path):
    cache_dir = tmp_path / "cache"
    if not cache_dir.exists():
        return []
    return sorted(p.name for p in cache_dir.iterdir())


def test_warms_missing_image(tmp_path):
    remote = FakeRemote()
    report = warm_cache(options_for(tmp_path, images=["foo:latest"]), remote, local_source)

    assert report.ok
    assert report.warmed == [Image(reference="foo:latest")]
    key = cache_key(Image(reference="foo:latest"))
    assert cache_files(tmp_path) == [key, f"{key}.json"]


def test_second_run_is_already_cached(tmp_path):
    remote = FakeRemote()
    options = options_for(tmp_path, images=["foo:latest"])

    warm_cache(options, remote, local_source)
    report = warm_cache(options, remote, local_source)

    assert report.cached == [Image(reference="foo:latest")]
    assert report.warmed == []
    assert len(remote.calls) == 1


def test_stale_entry_is_not_refetched(tmp_path):
    remote = FakeRemote()
    options = options_for(tmp_path, images=["foo:latest"],
                          cache=CacheOptions(cache_dir=str(tmp_path / "cache"),
                                             cache_ttl=timedelta(hours=1)))
    warm_cache(options, remote, local_source)
    archive = tmp_path / "cache" / cache_key(Image(reference="foo:latest"))
    old = time.time() - 7200
    os.utime(archive, (old, old))

    report = warm_cache(options, remote, local_source)

    assert report.cached == [Image(reference="foo:latest")]
    assert len(remote.calls) == 1


def test_failure_leaves_no_files_and_continues(tmp_path):
    class FlakyRemote(FakeRemote):
        def __call__(self, reference, registry_options, platform):
            if reference == "broken:1":
                self.calls.append((reference, platform))
                raise FetchError("manifest unknown")
            return super().__call__(reference, registry_options, platform)

    remote = FlakyRemote()
    report = warm_cache(options_for(tmp_path, images=["broken:1", "foo:latest"]), remote, local_source)

    assert not report.ok
    assert [image for image, _ in report.failed] == [Image(reference="broken:1")]
    assert isinstance(report.failed[0][1], FetchError)
    assert report.warmed == [Image(reference="foo:latest")]
    key = cache_key(Image(reference="foo:latest"))
    assert cache_files(tmp_path) == [key, f"{key}.json"]


def test_dockerfile_images_after_explicit_images(tmp_path):
    dockerfile = tmp_path / "Dockerfile"
    dockerfile.write_text("FROM golang:1.20 AS builder\nFROM scratch\nCOPY --from=builder /app /app\n")
    options = options_for(tmp_path, images=["alpine:3.19"], dockerfile_path=str(dockerfile))

    assert images_to_warm(options) == [
        Image(reference="alpine:3.19"),
        Image(reference="golang:1.20"),
        Image(reference="scratch"),
    ]

    remote = FakeRemote()
    report = warm_cache(options, remote, local_source)

    assert report.warmed == [Image(reference="alpine:3.19"), Image(reference="golang:1.20")]
    assert report.skipped == [Image(reference="scratch")]
    assert [call[0] for call in remote.calls] == ["alpine:3.19", "golang:1.20"]


def test_custom_platform_applies_to_images_without_one(tmp_path):
    dockerfile = tmp_path / "Dockerfile"
    dockerfile.write_text("FROM --platform=linux/amd64 golang:1.20\nFROM alpine\n")
    options = options_for(tmp_path, images=["busybox"], dockerfile_path=str(dockerfile),
                          custom_platform="linux/arm64")

    remote = FakeRemote()
    warm_cache(options, remote, local_source)

    assert remote.calls == [
        ("busybox", "linux/arm64"),
        ("golang:1.20", "linux/amd64"),
        ("alpine", "linux/arm64"),
    ]


def test_parallel_warming(tmp_path):
    remote = FakeRemote()
    options = options_for(tmp_path, images=["a:1", "b:1", "c:1"], max_workers=3)

    report = warm_cache(options, remote, local_source)

    assert report.warmed == [Image(reference=r) for r in ("a:1", "b:1", "c:1")]
    assert len(cache_files(tmp_path)) == 6


def test_same_key_has_one_writer(tmp_path):
    remote = FakeRemote()
    options = options_for(tmp_path, images=["foo:latest", "foo:latest"], max_workers=2)

    report = warm_cache(options, remote, local_source)

    assert len(report.warmed) == 1
    assert len(report.cached) == 1
    assert len(remote.calls) == 1


def test_nothing_to_warm(tmp_path):
    report = warm_cache(options_for(tmp_path), FakeRemote(), local_source)
    assert report.ok
    assert report.warmed == report.cached == report.skipped == []
