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
import sys
from collections.abc import Callable, Mapping
from enum import Enum

from loguru import logger

from coreason_builder.channel import TraceChannel
from coreason_builder.config import BuilderConfig
from coreason_builder.context import BuildContext, prepare_context
from coreason_builder.decoder import decode_build_stream
from coreason_builder.engine import BuildEngine, BuildStream
from coreason_builder.exceptions import DependencyError, MissingResultError
from coreason_builder.models import BuildRequest, ImageConfig
from coreason_builder.renderer import ProgressRenderer
from coreason_builder.session import BuildSession


class BuildState(str, Enum):
    IDLE = "idle"
    DEPENDENCIES_RESOLVING = "dependencies_resolving"
    CONTEXT_PREPARING = "context_preparing"
    BUILDING = "building"
    DONE = "done"
    FAILED = "failed"


def stderr_is_terminal() -> bool:
    return sys.stderr.isatty()


class ImageBuilder:
    """Builds one image configuration against a build engine.

    Dependencies are materialized first, one after the other. The build
    itself runs three participants in one task group: the session tunnel,
    the progress renderer (only on a terminal in rebuild or verbose mode)
    and the submit-and-decode task. The first failure cancels the others
    and is raised as is.
    """

    def __init__(
        self,
        image: ImageConfig,
        engine: BuildEngine,
        config: BuilderConfig | None = None,
        images: Mapping[str, ImageConfig] | None = None,
        session_factory: Callable[[], BuildSession] | None = None,
        renderer_factory: Callable[[], ProgressRenderer] | None = None,
    ):
        """Initializes the ImageBuilder.

        Args:
            image: The configuration to build.
            engine: The build engine client.
            config: Builder settings. Defaults are loaded if not provided.
            images: Named configurations that dependencies are resolved from.
                Defaults to ``config.images``.
            session_factory: Creates the session tunnel for each build.
            renderer_factory: Creates the progress renderer when one is needed.
        """
        self.image = image
        self.engine = engine
        self.config = config or BuilderConfig()
        self.images = images if images is not None else self.config.images
        self.state = BuildState.IDLE
        self._session_factory = session_factory or self._default_session
        self._renderer_factory = renderer_factory or ProgressRenderer

    def _default_session(self) -> BuildSession:
        return BuildSession(name=self.config.session_name)

    async def get(self) -> str:
        """Return the id of an existing image, building it if needed.

        The lookup is skipped when a rebuild is forced or the image has no
        name. A failed or empty lookup falls through to a build.
        """
        if self.image.force_rebuild or not self.image.image_name:
            return await self.build()

        try:
            image_ids = await self.engine.list_images(self.image.image_name)
        except Exception as e:
            logger.warning(f"Image lookup for {self.image.image_name} failed, building instead: {e}")
            return await self.build()

        if not image_ids:
            return await self.build()

        logger.info(f"Using existing image {self.image.image_name} ({image_ids[0]})")
        self.state = BuildState.DONE
        return image_ids[0]

    async def build(self) -> str:
        """Build the image and return its id.

        Raises:
            DependencyError: If a dependency is not a known configuration.
            MissingResultError: If the engine never reported an image id.
            BuildError: Any decoder, engine or session failure.
        """
        try:
            self._transition(BuildState.DEPENDENCIES_RESOLVING)
            await self._build_dependencies()

            self._transition(BuildState.CONTEXT_PREPARING)
            async with prepare_context(self.image) as context:
                self._transition(BuildState.BUILDING)
                image_id = await self._run_build(context)

            if not image_id:
                raise MissingResultError(f"Build of {self.image.name} finished without reporting an image id")
        except BaseException as e:
            self._transition(BuildState.FAILED)
            logger.error(f"Build of {self.image.name} failed: {e!r}")
            raise

        self._transition(BuildState.DONE)
        logger.info(f"Built {self.image.name}: {image_id}")
        return image_id

    def _transition(self, state: BuildState) -> None:
        logger.debug(f"Image {self.image.name}: {self.state.value} -> {state.value}")
        self.state = state

    async def _build_dependencies(self) -> None:
        for name in self.image.dependencies:
            dependency = self.images.get(name)
            if dependency is None:
                raise DependencyError(f"Unknown dependency {name} of image {self.image.name}")
            if self.image.force_rebuild:
                dependency = dependency.model_copy(update={"force_rebuild": True})

            logger.info(f"Resolving dependency {name} of {self.image.name}")
            builder = ImageBuilder(
                dependency,
                self.engine,
                config=self.config,
                images=self.images,
                session_factory=self._session_factory,
                renderer_factory=self._renderer_factory,
            )
            await builder.get()

    def _should_render(self) -> bool:
        return (self.image.force_rebuild or self.config.verbose) and stderr_is_terminal()

    def _build_request(self, context: BuildContext, session: BuildSession) -> BuildRequest:
        return BuildRequest(
            tags=frozenset({self.image.image_name}) if self.image.image_name else frozenset(),
            build_args={argument.key: argument.value for argument in self.image.arguments},
            no_cache=self.image.no_cache,
            pull=self.image.force_pull,
            dockerfile=context.dockerfile,
            remote=context.remote,
            session_id=session.session_id,
            build_id=secrets.token_hex(32),
            auth_configs=self.config.auth_configs,
        )

    async def _wait_for_session(self, session: BuildSession) -> None:
        try:
            await asyncio.wait_for(session.ready.wait(), timeout=self.config.session_ready_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Session {session.session_id} not ready after {self.config.session_ready_timeout}s, "
                "submitting build anyway"
            )

    async def _run_build(self, context: BuildContext) -> str:
        session = self._session_factory()
        channel = TraceChannel(self.config.trace_buffer_size)
        render = self._should_render()
        request = self._build_request(context, session)

        async def submit_and_decode() -> str:
            # Sole owner of the channel and session shutdown
            stream: BuildStream | None = None
            try:
                await self._wait_for_session(session)
                stream = await self.engine.build(request, context)
                return await decode_build_stream(stream, channel, forward_trace=render)
            finally:
                if stream is not None:
                    stream.close()
                channel.close()
                session.close()

        try:
            async with asyncio.TaskGroup() as group:
                group.create_task(session.run(self.engine.dial_session), name="session")
                if render:
                    group.create_task(self._renderer_factory().run(channel), name="renderer")
                decode_task = group.create_task(submit_and_decode(), name="decode")
        except BaseExceptionGroup as eg:
            raise eg.exceptions[0] from None

        return decode_task.result()
