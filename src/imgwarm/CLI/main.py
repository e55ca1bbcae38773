"""
Command Line Interface for imgwarm.
"""
import logging
import sys
import click

from ..CONFIG.settings import load_options
from ..CONFIG.platform import detect_default_platform
from ..RESOLVERS.base_image_resolver import parse_dockerfile
from ..WARMER.errors import WarmerError
from ..WARMER.warmer import warm_cache

VERBOSITY_LEVELS = {
    "panic": logging.CRITICAL,
    "fatal": logging.CRITICAL,
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": logging.DEBUG,
}


def install_log_handler() -> None:
    """
    Replaces any root handlers with a single stderr handler.
    """
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(levelname)s[%(asctime)s] %(message)s", datefmt="%H:%M:%S"))
    root.addHandler(handler)


def configure_logging(verbosity: str) -> None:
    logging.getLogger().setLevel(VERBOSITY_LEVELS[verbosity])


@click.group()
@click.option('--config', 'config_path', type=click.Path(dir_okay=False),
              help='YAML file with warmer options')
@click.option('--env-file', type=click.Path(dir_okay=False),
              help='.env file with IMGWARM_* settings')
@click.option('--verbosity', '-v', type=click.Choice(list(VERBOSITY_LEVELS)),
              default='info', help='Log level')
@click.pass_context
def cli(ctx, config_path, env_file, verbosity):
    """
    imgwarm - pre-pull the base images of a Dockerfile build into a local cache.
    """
    configure_logging(verbosity)
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config_path
    ctx.obj['env_file'] = env_file
    ctx.obj['default_platform'] = detect_default_platform()


def _options(ctx, overrides):
    return load_options(
        config_path=ctx.obj.get('config_path'),
        env_file=ctx.obj.get('env_file'),
        overrides=overrides,
        default_platform=ctx.obj.get('default_platform'),
    )


@cli.command()
@click.option('--image', '-i', 'images', multiple=True, help='Image to cache (repeatable)')
@click.option('--dockerfile', '-d', help='Dockerfile whose base images are cached')
@click.option('--build-arg', 'build_args', multiple=True, help='name=value override (repeatable)')
@click.option('--cache-dir', '-c', help='Directory of the local image cache')
@click.option('--cache-ttl', help='Validity of cache entries, e.g. 336h')
@click.option('--force', '-f', is_flag=True, help='Pull images even if cached')
@click.option('--custom-platform', help='Platform to pull, e.g. linux/arm64')
@click.option('--registry-mirror', 'registry_mirrors', multiple=True, help='Mirror for docker.io images')
@click.option('--skip-default-registry-fallback', is_flag=True,
              help='Fail instead of falling back to docker.io when mirrors fail')
@click.option('--insecure-registry', 'insecure_registries', multiple=True,
              help='Registry to reach over plain HTTP')
@click.option('--skip-tls-verify-registry', 'skip_tls_verify_registries', multiple=True,
              help='Registry whose certificate is not verified')
@click.option('--insecure-pull', is_flag=True, help='Pull over plain HTTP')
@click.option('--skip-tls-verify-pull', is_flag=True, help='Skip TLS verification')
@click.option('--retries', type=int, help='Retries for transient registry errors')
@click.option('--jobs', '-j', 'max_workers', type=int, help='Images warmed in parallel')
@click.pass_context
def warm(ctx, images, dockerfile, build_args, cache_dir, cache_ttl, force, custom_platform,
         registry_mirrors, skip_default_registry_fallback, insecure_registries,
         skip_tls_verify_registries, insecure_pull, skip_tls_verify_pull, retries, max_workers):
    """Cache images and the base images of a Dockerfile."""
    overrides = {
        'images': list(images),
        'dockerfile_path': dockerfile,
        'build_args': list(build_args),
        'force': force or None,
        'custom_platform': custom_platform,
        'max_workers': max_workers,
        'cache': {'cache_dir': cache_dir, 'cache_ttl': cache_ttl},
        'registry': {
            'registry_mirrors': list(registry_mirrors),
            'skip_default_registry_fallback': skip_default_registry_fallback or None,
            'insecure_registries': list(insecure_registries),
            'skip_tls_verify_registries': list(skip_tls_verify_registries),
            'insecure_pull': insecure_pull or None,
            'skip_tls_verify_pull': skip_tls_verify_pull or None,
            'retries': retries,
        },
    }
    try:
        options = _options(ctx, _drop_unset(overrides))
        if not options.images and not options.dockerfile_path:
            raise click.UsageError("You must select at least one image to cache or a dockerfile to parse")
        report = warm_cache(options)
    except WarmerError as e:
        raise click.ClickException(str(e))

    click.echo(f"warmed: {len(report.warmed)}  cached: {len(report.cached)}  "
               f"skipped: {len(report.skipped)}  failed: {len(report.failed)}")
    for image, error in report.failed:
        click.echo(f"Error: {image}: {error}", err=True)
    if not report.ok:
        ctx.exit(1)


@cli.command()
@click.argument('dockerfile', type=click.Path(dir_okay=False))
@click.option('--build-arg', 'build_args', multiple=True, help='name=value override (repeatable)')
@click.option('--custom-platform', help='Platform for TARGET* build args')
@click.pass_context
def resolve(ctx, dockerfile, build_args, custom_platform):
    """List the base images a Dockerfile build needs."""
    overrides = _drop_unset({
        'dockerfile_path': dockerfile,
        'build_args': list(build_args),
        'custom_platform': custom_platform,
    })
    try:
        images = parse_dockerfile(_options(ctx, overrides))
    except WarmerError as e:
        raise click.ClickException(str(e))
    for image in images:
        click.echo(f"{image.reference}\t{image.platform}" if image.platform else image.reference)


def _drop_unset(values):
    """Removes options the user did not pass, so config files and env keep them."""
    cleaned = {}
    for key, value in values.items():
        if isinstance(value, dict):
            value = _drop_unset(value)
        if value is None or value == [] or value == {}:
            continue
        cleaned[key] = value
    return cleaned


def main():
    """
    Main entry point for the CLI.
    """
    install_log_handler()
    cli(obj={})

if __name__ == '__main__':
    main()
