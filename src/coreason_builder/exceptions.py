# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_builder

"""Error taxonomy for image builds."""


class BuildError(Exception):
    """Base class for all errors raised by the builder."""


class DecodeError(BuildError):
    """The build status stream contained malformed JSON."""


class EngineError(BuildError):
    """The build engine reported a fatal error inside the status stream.

    Attributes:
        message: The engine's error message, verbatim.
        code: The optional numeric error code sent alongside the message.
    """

    def __init__(self, message: str, code: int | None = None):
        super().__init__(message)
        self.message = message
        self.code = code


class AuxParseError(BuildError):
    """An auxiliary payload could not be parsed. Never leaves the decoder."""


class MissingResultError(BuildError):
    """The build finished cleanly but no image identifier was reported."""

    def __init__(self, message: str = "build finished without reporting an image id"):
        super().__init__(message)


class SessionError(BuildError):
    """The session tunnel could not be opened or failed while serving."""


class DependencyError(BuildError):
    """A declared dependency could not be resolved to a build configuration."""
