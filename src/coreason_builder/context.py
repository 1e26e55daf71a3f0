# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_builder

import asyncio
import secrets
import tempfile
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from docker.utils.build import tar
from loguru import logger

from coreason_builder.models import ImageConfig

REMOTE_PREFIXES = ("http://", "https://", "git://", "git@", "github.com/")
DEFAULT_DOCKERFILE = "Dockerfile"


@dataclass
class BuildContext:
    fileobj: BinaryIO | None
    remote: str | None
    dockerfile: str


def is_remote(context: str) -> bool:
    return context.startswith(REMOTE_PREFIXES)


def _inline_dockerfile(steps: list[str]) -> str:
    return "\n".join(steps) + "\n"


def read_dockerignore(context_dir: Path) -> list[str] | None:
    """Exclude patterns from ``.dockerignore``, read the way the docker client reads them."""
    dockerignore = context_dir / ".dockerignore"
    if not dockerignore.exists():
        return None
    lines = (line.strip() for line in dockerignore.read_text().splitlines())
    return [line for line in lines if line and not line.startswith("#")]


def _archive(context_dir: Path, dockerfile: str, steps: list[str], fileobj: BinaryIO) -> None:
    contents = _inline_dockerfile(steps) if steps else None
    tar(
        str(context_dir),
        exclude=read_dockerignore(context_dir),
        dockerfile=(dockerfile, contents),
        fileobj=fileobj,
    )


@asynccontextmanager
async def prepare_context(image: ImageConfig) -> AsyncIterator[BuildContext]:
    """Acquire the build context for an image.

    Remote contexts are passed through by reference. Local directories are
    archived into a temporary tarball, minus whatever ``.dockerignore``
    excludes, together with a generated Dockerfile when the image declares
    inline steps. Archiving runs in a worker thread. Temporary files are
    removed when the block exits, however it exits.

    Raises:
        FileNotFoundError: If a local context directory does not exist.
        ValueError: If inline steps are combined with a remote context.
    """
    if is_remote(image.context):
        if image.steps:
            raise ValueError(f"Image {image.name}: inline steps cannot be used with a remote context")
        logger.info(f"Using remote build context {image.context}")
        yield BuildContext(fileobj=None, remote=image.context, dockerfile=image.dockerfile or DEFAULT_DOCKERFILE)
        return

    context_dir = Path(image.context).expanduser()
    if not context_dir.is_dir():
        raise FileNotFoundError(f"Build context not found: {context_dir}")

    dockerfile = image.dockerfile or DEFAULT_DOCKERFILE
    if image.steps:
        dockerfile = f"Dockerfile.coreason-{secrets.token_hex(8)}"

    with tempfile.TemporaryDirectory(prefix="coreason-builder-") as temp_dir_str:
        archive_path = Path(temp_dir_str) / "context.tar"
        with open(archive_path, "w+b") as fileobj:
            await asyncio.to_thread(_archive, context_dir, dockerfile, image.steps, fileobj)
            logger.debug(f"Archived build context {context_dir} ({archive_path.stat().st_size} bytes)")
            yield BuildContext(fileobj=fileobj, remote=None, dockerfile=dockerfile)
