"""
Resolves the ordered list of base images a Dockerfile build needs.
"""
import logging
from typing import Dict, List, Set

from ..CONFIG.platform import platform_args
from ..MODELS.image import Image
from ..MODELS.warmer_options import WarmerOptions
from ..PARSERS.dockerfile_parser import DockerfileParser, split_arg
from ..REGISTRY.image_reference import ImageReference
from ..UTILS.build_args import BuildArgEnvironment
from ..UTILS.string_interpolation import UnresolvedVariableError
from ..WARMER.errors import DockerfileNotFoundError, DockerfileParseError

logger = logging.getLogger(__name__)


def automatic_platform_args(options: WarmerOptions) -> Dict[str, str]:
    """
    TARGET* and BUILD* arguments derived from the configured platforms.
    """
    target = options.platform
    build = options.default_platform or target
    args: Dict[str, str] = {}
    try:
        if build:
            args.update(platform_args(build, "BUILD"))
        if target:
            args.update(platform_args(target, "TARGET"))
    except ValueError as e:
        logger.warning("Not providing automatic platform build args: %s", e)
    return args


def parse_dockerfile(options: WarmerOptions) -> List[Image]:
    """
    Returns one Image per stage whose FROM names a registry image, in file order.

    Stages built FROM an earlier stage's alias are skipped. Duplicates are kept.

    :param options: Options holding the Dockerfile path and build-arg overrides.
    :raises DockerfileNotFoundError: If the Dockerfile is missing or unreadable.
    :raises DockerfileParseError: If there is no usable FROM instruction or a
        FROM line cannot be resolved.
    """
    path = options.dockerfile_path
    parser = DockerfileParser()
    try:
        instructions = parser.parse(path)
    except UnicodeDecodeError as e:
        raise DockerfileParseError(f"{path} is not a text file: {e}") from e
    except FileNotFoundError as e:
        raise DockerfileNotFoundError(path) from e
    except OSError as e:
        raise DockerfileNotFoundError(path, e.strerror or str(e)) from e

    env = BuildArgEnvironment(options.build_args, automatic_platform_args(options))
    aliases: Set[str] = set()
    images: List[Image] = []
    stages = 0

    for inst in instructions:
        if inst.instruction == "ARG":
            for argument in inst.arguments:
                name, default = split_arg(argument)
                env.declare(name, default)
            continue
        if inst.instruction != "FROM":
            continue

        stages += 1
        stage = parser.stage_from(inst)
        if not stage.base_name:
            raise DockerfileParseError("FROM requires an image name", inst.line)

        try:
            reference = env.substitute(stage.base_name)
            platform = env.substitute(stage.platform) if stage.platform else ""
        except UnresolvedVariableError as e:
            raise DockerfileParseError(
                f"build argument {e.name} used in FROM has no value", inst.line) from e

        if reference.lower() in aliases:
            logger.debug("Skipping stage %d: %s refers to an earlier stage", stages, reference)
        else:
            try:
                ImageReference.parse(reference)
            except ValueError as e:
                raise DockerfileParseError(str(e), inst.line) from e
            images.append(Image(reference=reference, platform=platform))

        if stage.alias:
            aliases.add(stage.alias.lower())

    if stages == 0:
        raise DockerfileParseError(f"no FROM instruction found in {path}")

    logger.info("Resolved %d base image(s) from %s", len(images), path)
    return images
