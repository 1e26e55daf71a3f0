# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_builder

from coreason_builder.config import BuilderConfig
from coreason_builder.engine import BuildEngine
from coreason_builder.engines.docker import DockerEngine


class EngineFactory:
    """
    Factory to create BuildEngine instances based on configuration.
    """

    @staticmethod
    def get_engine(config: BuilderConfig) -> BuildEngine:
        """
        Returns an instance of the configured BuildEngine.
        """
        return DockerEngine(
            base_url=config.docker_host,
            version=config.api_version,
            timeout=config.api_timeout,
        )
