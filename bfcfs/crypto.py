"""Encryption context for containers; decryption is not available in this build."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from bfcfs.format import FEATURE_AEAD, NotSupportedError

logger = logging.getLogger(__name__)


@dataclass
class CryptoContext:
    """Key state for one mounted container."""

    device: str = "bfcfs"
    has_key: bool = False
    aead: Any = None

    def setup(self, features: int) -> None:
        """Prepare for the container's features; encrypted files stay unreadable."""
        if features & FEATURE_AEAD:
            logger.warning(
                "bfcfs (%s): container has encrypted files, "
                "but encryption not supported in this build",
                self.device,
            )
            logger.warning("bfcfs (%s): encrypted files will be inaccessible", self.device)
        self.has_key = False
        self.aead = None
        logger.debug("bfcfs (%s): crypto setup complete (encryption disabled)", self.device)

    def cleanup(self) -> None:
        """Forget any key material."""
        self.has_key = False
        self.aead = None

    def decrypt_chunk(self, chunk_id: int, ciphertext: bytes, plaintext_len: int) -> bytes:
        """Decrypt one chunk; always fails since encryption is not supported."""
        logger.debug(
            "bfcfs (%s): decrypt_chunk: encryption not supported", self.device
        )
        raise NotSupportedError("encryption not supported")