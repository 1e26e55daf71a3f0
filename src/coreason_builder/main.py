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
import sys

from coreason_builder.builder import ImageBuilder
from coreason_builder.config import BuilderConfig
from coreason_builder.exceptions import DependencyError
from coreason_builder.factory import EngineFactory
from coreason_builder.utils.logger import configure_logging, logger


async def build_target(config: BuilderConfig) -> str:
    """Build (or reuse) the configured target image and return its id."""
    if not config.target:
        raise ValueError("No target image configured (set COREASON_BUILDER_TARGET)")
    image = config.images.get(config.target)
    if image is None:
        raise DependencyError(f"Unknown image {config.target}")

    engine = EngineFactory.get_engine(config)
    try:
        return await ImageBuilder(image, engine, config=config).get()
    finally:
        engine.close()


def main() -> None:
    """Entry point for the builder."""
    config = BuilderConfig()
    configure_logging(config.log_level, config.log_dir)
    try:
        image_id = asyncio.run(build_target(config))
    except Exception as e:
        logger.error(f"Build failed: {e}")
        sys.exit(1)
    print(image_id)


if __name__ == "__main__":  # pragma: no cover
    main()
