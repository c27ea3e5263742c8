"""Per-user JSON record store with whole-file atomic rewrites."""

from __future__ import annotations

import asyncio
import contextlib
import json
import os
import re
import tempfile
import weakref
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from solsmith.errors import StorageError
from solsmith.log import get_logger
from solsmith.storage.codec import PlaintextCodec, SecretCodec
from solsmith.storage.models import KeyRecord, UserIdentity, UserProfile, utcnow

logger = get_logger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]")


class RecordStore:
    """One human-readable JSON file per user under ``users_dir``.

    ``get`` and ``put`` are whole-record operations. ``append_key_record`` and ``touch``
    are read-modify-write compositions serialised per user inside this process.
    """

    def __init__(self, users_dir: str | Path, codec: SecretCodec | None = None):
        self._users_dir = Path(users_dir)
        self._codec = codec or PlaintextCodec()
        # An entry disappears once no coroutine holds or awaits its lock.
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    @property
    def users_dir(self) -> Path:
        return self._users_dir

    def path_for(self, user_id: str) -> Path:
        return self._users_dir / f"{_UNSAFE_CHARS.sub('_', user_id)}.json"

    async def get(self, user_id: str) -> UserProfile | None:
        """Return the stored profile, or None when the user has no record yet."""
        path = self.path_for(user_id)
        try:
            text = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.error("record_read_failed", user_id=user_id, error=str(e))
            raise StorageError(user_id, str(e)) from e
        return self._deserialize(user_id, text)

    async def put(self, user_id: str, profile: UserProfile) -> None:
        async with self._lock(user_id):
            await self._put(user_id, profile)

    async def append_key_record(
        self, user_id: str, record: KeyRecord, identity: UserIdentity
    ) -> UserProfile:
        """Append ``record`` to the user's wallets, creating the profile if needed."""
        async with self._lock(user_id):
            profile = await self.get(user_id) or UserProfile.from_identity(identity)
            profile.last_interaction_at = utcnow()
            if profile.has_wallet(record.public_identifier):
                logger.warning(
                    "duplicate_key_record_skipped",
                    user_id=user_id,
                    public_identifier=record.public_identifier,
                )
            else:
                profile.wallets.append(record)
            await self._put(user_id, profile)
            return profile

    async def touch(self, user_id: str, identity: UserIdentity) -> UserProfile:
        """Refresh the interaction timestamp and sender details, creating the profile lazily."""
        async with self._lock(user_id):
            profile = await self.get(user_id)
            if profile is None:
                profile = UserProfile.from_identity(identity)
                logger.info("user_profile_created", user_id=user_id)
            else:
                profile.display_name = identity.display_name
                profile.username = identity.username
                profile.language_tag = identity.language_tag
                profile.last_interaction_at = utcnow()
            await self._put(user_id, profile)
            return profile

    def _lock(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    async def _put(self, user_id: str, profile: UserProfile) -> None:
        text = self._serialize(profile)
        path = self.path_for(user_id)
        try:
            await asyncio.to_thread(_atomic_write, path, text)
        except OSError as e:
            logger.error("record_write_failed", user_id=user_id, error=str(e))
            raise StorageError(user_id, str(e)) from e

    def _serialize(self, profile: UserProfile) -> str:
        data = profile.model_dump(mode="json")
        for wallet in data["wallets"]:
            wallet["secret_material"] = self._codec.encode(wallet["secret_material"])
        return json.dumps(data, indent=2, ensure_ascii=False) + "\n"

    def _deserialize(self, user_id: str, text: str) -> UserProfile:
        try:
            data = json.loads(text)
            for wallet in data.get("wallets", []):
                wallet["secret_material"] = self._codec.decode(wallet["secret_material"])
            return UserProfile.model_validate(data)
        except (json.JSONDecodeError, KeyError, TypeError, AttributeError, PydanticValidationError) as e:
            logger.error("record_corrupt", user_id=user_id, error=str(e))
            raise StorageError(user_id, f"corrupt record: {e}") from e


def _atomic_write(path: Path, text: str) -> None:
    """Write ``text`` to a sibling temp file and move it over ``path``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_name, 0o600)
        os.replace(tmp_name, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp_name)
        raise
