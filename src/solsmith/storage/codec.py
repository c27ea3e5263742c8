"""Encoding applied to secret material at rest."""

from __future__ import annotations

from abc import ABC, abstractmethod


class SecretCodec(ABC):
    """Transforms ``KeyRecord.secret_material`` on its way to and from disk.

    The record store calls :meth:`encode` before writing and :meth:`decode` after reading,
    so an encrypting implementation can be swapped in without touching callers.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    def encode(self, secret: str) -> str:
        ...

    @abstractmethod
    def decode(self, stored: str) -> str:
        ...


class PlaintextCodec(SecretCodec):
    """Stores secrets unchanged."""

    @property
    def name(self) -> str:
        return "plaintext"

    def encode(self, secret: str) -> str:
        return secret

    def decode(self, stored: str) -> str:
        return stored
