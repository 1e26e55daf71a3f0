# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_builder

"""Data models describing what to build and how it is submitted."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class BuildArgument(BaseModel):
    """A single ``--build-arg`` entry."""

    key: str
    value: str | None = None


class ImageConfig(BaseModel):
    """A named build configuration.

    Attributes:
        name: The configuration name, used to reference it as a dependency.
        image_name: The tag to apply to the result. Empty means untagged.
        context: A local directory or a remote context reference (git/http URL).
        dockerfile: The Dockerfile name relative to the context.
        steps: Inline Dockerfile instructions, used instead of ``dockerfile``.
        arguments: Build arguments passed to the engine.
        dependencies: Names of configurations to materialize first, in order.
        no_cache: Disable the engine's build cache.
        force_pull: Always pull base images.
        force_rebuild: Skip the existing-image lookup and rebuild everything.
    """

    name: str
    image_name: str = ""
    context: str = "."
    dockerfile: str | None = None
    steps: list[str] = Field(default_factory=list)
    arguments: list[BuildArgument] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)
    no_cache: bool = False
    force_pull: bool = False
    force_rebuild: bool = False


class BuildRequest(BaseModel):
    """The parameters of one build call. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    tags: frozenset[str] = frozenset()
    build_args: dict[str, str | None] = Field(default_factory=dict)
    no_cache: bool = False
    pull: bool = False
    dockerfile: str | None = None
    remote: str | None = None
    session_id: str
    build_id: str
    auth_configs: dict[str, dict[str, Any]] = Field(default_factory=dict)
