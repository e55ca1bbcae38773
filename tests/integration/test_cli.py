import pytest
from click.testing import CliRunner

from imgwarm.CLI import main as cli_main
from imgwarm.CLI.main import cli
from imgwarm.MODELS.image import Image
from imgwarm.WARMER.errors import FetchError
from imgwarm.WARMER.warmer import WarmReport


@pytest.fixture
def recorded(monkeypatch):
    calls = []

    def fake_warm_cache(options):
        calls.append(options)
        return WarmReport(warmed=[Image(reference=ref) for ref in options.images])

    monkeypatch.setattr(cli_main, "warm_cache", fake_warm_cache)
    return calls


def test_cli_help():
    runner = CliRunner()
    result = runner.invoke(cli, ['--help'])
    assert result.exit_code == 0
    assert 'warm' in result.output
    assert 'resolve' in result.output


def test_resolve(tmp_path):
    dockerfile = tmp_path / "Dockerfile"
    dockerfile.write_text("ARG version=latest\nFROM golang:${version} AS build\n"
                          "FROM --platform=linux/arm64 alpine:3.19\n")
    runner = CliRunner()
    result = runner.invoke(cli, ['resolve', str(dockerfile), '--build-arg', 'version=1.20'])
    assert result.exit_code == 0
    assert result.output.splitlines() == ["golang:1.20", "alpine:3.19\tlinux/arm64"]


def test_resolve_missing_dockerfile(tmp_path):
    runner = CliRunner()
    result = runner.invoke(cli, ['resolve', str(tmp_path / "Dockerfile")])
    assert result.exit_code == 1
    assert 'Error:' in result.output


def test_warm_requires_images_or_dockerfile():
    runner = CliRunner()
    result = runner.invoke(cli, ['warm', '--cache-dir', '/tmp/cache'])
    assert result.exit_code == 2
    assert 'at least one image' in result.output


def test_warm_builds_options(recorded, tmp_path):
    runner = CliRunner()
    result = runner.invoke(cli, [
        'warm', '-i', 'alpine:3.19', '-i', 'busybox',
        '--cache-dir', str(tmp_path), '--cache-ttl', '24h',
        '--build-arg', 'version=1.20', '--retries', '2', '--jobs', '4',
        '--registry-mirror', 'mirror.gcr.io', '--force',
    ])
    assert result.exit_code == 0, result.output
    assert 'warmed: 2' in result.output

    options = recorded[0]
    assert options.images == ['alpine:3.19', 'busybox']
    assert options.cache.cache_dir == str(tmp_path)
    assert options.build_args == ['version=1.20']
    assert options.registry.retries == 2
    assert options.registry.registry_mirrors == ['mirror.gcr.io']
    assert options.max_workers == 4
    assert options.force is True
    assert options.default_platform


def test_warm_reads_config_file(recorded, tmp_path):
    config = tmp_path / "warmer.yaml"
    config.write_text("images: [alpine]\ncache:\n  cache_dir: /from-file\n")
    runner = CliRunner()
    result = runner.invoke(cli, ['--config', str(config), 'warm'])
    assert result.exit_code == 0, result.output
    assert recorded[0].images == ['alpine']
    assert recorded[0].cache.cache_dir == '/from-file'
    assert recorded[0].force is False


def test_warm_failure_exit_code(monkeypatch):
    def failing_warm_cache(options):
        return WarmReport(failed=[(Image(reference="alpine"), FetchError("manifest unknown"))])

    monkeypatch.setattr(cli_main, "warm_cache", failing_warm_cache)
    runner = CliRunner()
    result = runner.invoke(cli, ['warm', '-i', 'alpine'])
    assert result.exit_code == 1
    assert 'manifest unknown' in result.output


def test_warm_invalid_dockerfile(tmp_path):
    dockerfile = tmp_path / "Dockerfile"
    dockerfile.write_text("This is a invalid dockerfile")
    runner = CliRunner()
    result = runner.invoke(cli, ['warm', '-d', str(dockerfile), '-c', str(tmp_path / "cache")])
    assert result.exit_code == 1
    assert 'no FROM instruction' in result.output
