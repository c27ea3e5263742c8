"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class Platform(StrEnum):
    TELEGRAM = "telegram"


class PatternKind(StrEnum):
    PREFIX = "prefix"
    SUFFIX = "suffix"

    @property
    def grind_flag(self) -> str:
        """Command-line flag understood by ``solana-keygen grind``."""
        return "--starts-with" if self is PatternKind.PREFIX else "--ends-with"

    def matches(self, name: str, pattern: str) -> bool:
        if self is PatternKind.PREFIX:
            return name.startswith(pattern)
        return name.endswith(pattern)


class Phase(StrEnum):
    IDLE = "idle"
    AWAITING_PATTERN_CHOICE = "awaiting_pattern_choice"
    AWAITING_PATTERN_VALUE = "awaiting_pattern_value"
    GENERATING = "generating"
    AWAITING_WALLET_SELECTION = "awaiting_wallet_selection"


class Action(StrEnum):
    """Callback tokens carried by inline buttons."""

    CREATE_WALLET = "create_wallet"
    VIEW_WALLETS = "view_wallets"
    PATTERN_PREFIX = "pattern_prefix"
    PATTERN_SUFFIX = "pattern_suffix"
    BACK_TO_MAIN = "back_to_main"
