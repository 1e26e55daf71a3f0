# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_builder

"""Models for the JSON message stream returned by the build endpoint."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

IMAGE_ID_TAG = "moby.image.id"
TRACE_TAG = "moby.buildkit.trace"


class JSONError(BaseModel):
    """Structured error carried by an envelope."""

    code: int | None = None
    message: str = ""


class StatusEnvelope(BaseModel):
    """One decoded unit of the build status stream.

    The engine reports errors either as ``errorDetail`` (an object) or as
    ``error`` (a plain string or an object). Aux payloads are tagged either by
    the sibling ``id`` field or, when ``id`` is absent, by ``aux.ID`` with the
    payload nested under ``aux.payload``.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str | None = None
    stream: str | None = None
    status: str | None = None
    error: JSONError | str | None = None
    error_detail: JSONError | None = Field(default=None, alias="errorDetail")
    aux: Any = None

    @property
    def fatal_error(self) -> JSONError | None:
        if self.error_detail is not None:
            if not self.error_detail.message and isinstance(self.error, str):
                return JSONError(code=self.error_detail.code, message=self.error)
            return self.error_detail
        if isinstance(self.error, JSONError):
            return self.error
        if self.error:
            return JSONError(message=self.error)
        return None

    @property
    def aux_tag(self) -> str | None:
        if self.aux is None:
            return None
        if self.id:
            return self.id
        if isinstance(self.aux, dict) and "payload" in self.aux:
            tag = self.aux.get("ID", self.aux.get("id"))
            return tag if isinstance(tag, str) else None
        return None

    @property
    def aux_payload(self) -> Any:
        if not self.id and isinstance(self.aux, dict) and "payload" in self.aux:
            return self.aux["payload"]
        return self.aux


class BuildResult(BaseModel):
    """Aux payload tagged ``moby.image.id``."""

    model_config = ConfigDict(populate_by_name=True)

    image_id: str = Field(alias="ID")
