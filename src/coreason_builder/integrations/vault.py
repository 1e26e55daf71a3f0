# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_builder

import os
from typing import Protocol, runtime_checkable

from loguru import logger


@runtime_checkable
class SecretClientProtocol(Protocol):
    """
    Protocol for a secrets backend, to allow dependency injection and testing.
    """

    def get_secret(self, key: str) -> str | None:
        """
        Retrieve a secret by key.
        """
        ...


class VaultIntegrator:
    """
    Resolves registry credentials from a secrets client.
    Without a client, secrets are read from environment variables.
    """

    def __init__(self, client: SecretClientProtocol | None = None):
        self.client = client

    def get_secret(self, key: str) -> str | None:
        """
        Fetch a secret. Returns None if it is missing or the fetch fails.
        """
        if self.client:
            try:
                return self.client.get_secret(key)
            except Exception as e:
                logger.warning(f"Failed to fetch secret {key} from Vault: {e}")
                return None

        val = os.getenv(key) or os.getenv(f"COREASON_BUILDER_{key}")
        if not val:
            logger.debug(f"Secret {key} not found in environment.")
        return val
