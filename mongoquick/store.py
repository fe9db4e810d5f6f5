"""Encrypted, cached on-disk storage for connection profiles."""

from __future__ import annotations

import asyncio
import logging
import re
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

import anyio
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from .config import Settings
from .crypto import DecryptionError, UriCipher
from .models import ConnectionOptions, ConnectionProfile, ProfileMetadata
from .uri import SCHEMES, has_valid_scheme

LOG = logging.getLogger(__name__)

PROFILES_FILENAME = "profiles.json"
STORAGE_VERSION = "2.0.0"

_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


class ProfileStoreError(RuntimeError):
    """Base error for profile storage failures."""


class ProfileValidationError(ProfileStoreError, ValueError):
    """Raised when a profile fails validation; nothing is persisted."""


class InvalidProfileName(ProfileValidationError):
    """Profile name is missing or contains unsupported characters."""


class InvalidProfileUri(ProfileValidationError):
    """Profile URI is missing or does not use a recognized scheme."""


class DuplicateProfileError(ProfileStoreError):
    """Raised when adding a profile whose name is already taken."""


class ProfileImportError(ProfileStoreError):
    """Raised when an import payload is not a profile storage document."""


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class StoredProfile(BaseModel):
    """On-disk form of a profile; the URI only exists as ciphertext."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str
    encrypted_uri: str
    iv: str
    database: str | None = None
    alias: str | None = None
    tags: tuple[str, ...] = ()
    options: ConnectionOptions | None = None
    metadata: ProfileMetadata = Field(default_factory=ProfileMetadata)


class StorageDocument(BaseModel):
    """File-level container as read back; entries are parsed one at a time."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    version: str = STORAGE_VERSION
    created_at: datetime = Field(default_factory=_utcnow)
    profiles: list[Any] = Field(default_factory=list)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True, indent=2)


class ProfileStorage(StorageDocument):
    """File-level container rewritten wholesale on every mutation."""

    profiles: list[StoredProfile] = Field(default_factory=list)


class ProfileStore:
    """CRUD over connection profiles with transparent URI encryption.

    Reads are served from an in-memory map that is reloaded only when the
    backing file's modification time changes. Every mutation re-encrypts
    the full profile set and atomically replaces the file.
    """

    def __init__(self, config_dir: Path | str, cipher: UriCipher) -> None:
        self._dir = anyio.Path(config_dir)
        self._file = self._dir / PROFILES_FILENAME
        self._cipher = cipher
        self._cache: dict[str, ConnectionProfile] = {}
        self._mtime_ns: int | None = None
        self._write_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> ProfileStore:
        return cls(settings.config_dir, UriCipher(settings.encryption_secret))

    @property
    def path(self) -> Path:
        """Location of the backing profiles file."""

        return Path(self._file)

    async def list(self) -> list[ConnectionProfile]:
        """Return every profile; order is not significant."""

        profiles = await self._load()
        return list(profiles.values())

    async def get(self, name: str) -> ConnectionProfile | None:
        profiles = await self._load()
        return profiles.get(name)

    async def add(self, profile: ConnectionProfile) -> ConnectionProfile:
        """Validate and persist a new profile, stamping its creation time."""

        self._validate(profile)
        async with self._write_lock:
            profiles = dict(await self._load())
            if profile.name in profiles:
                raise DuplicateProfileError(
                    f"Profile '{profile.name}' already exists. Use update() instead."
                )
            stamped = profile.with_metadata(created_at=_utcnow())
            profiles[stamped.name] = stamped
            if stamped.is_default:
                _clear_other_defaults(profiles, stamped.name)
            await self._save(profiles)
        return stamped

    async def remove(self, name: str) -> bool:
        async with self._write_lock:
            profiles = dict(await self._load())
            if profiles.pop(name, None) is None:
                return False
            await self._save(profiles)
        return True

    async def update(self, name: str, changes: Mapping[str, Any]) -> bool:
        """Merge ``changes`` into an existing profile.

        ``metadata`` is merged key-wise; ``name`` cannot be changed here.
        Returns False when the profile does not exist.
        """

        async with self._write_lock:
            profiles = dict(await self._load())
            existing = profiles.get(name)
            if existing is None:
                return False
            updated = _merge(existing, changes)
            self._validate(updated)
            profiles[name] = updated
            if updated.is_default:
                _clear_other_defaults(profiles, name)
            await self._save(profiles)
        return True

    async def set_default(self, name: str) -> bool:
        """Mark ``name`` as the only default profile in one write."""

        async with self._write_lock:
            profiles = dict(await self._load())
            if name not in profiles:
                return False
            profiles[name] = profiles[name].with_metadata(is_default=True)
            _clear_other_defaults(profiles, name)
            await self._save(profiles)
        return True

    async def get_default(self) -> ConnectionProfile | None:
        profiles = await self._load()
        for profile in profiles.values():
            if profile.is_default:
                return profile
        return None

    async def export(self) -> str:
        """Serialize the on-disk container as-is; URIs stay encrypted."""

        storage = await self._read_storage()
        return storage.to_json()

    async def import_profiles(self, data: str) -> int:
        """Add every valid profile from an exported container.

        Entries that fail to decrypt, fail validation or clash with an
        existing name are skipped. Returns the number of profiles added.
        """

        try:
            document = StorageDocument.model_validate_json(data)
        except ValidationError as exc:
            raise ProfileImportError(f"Invalid import data: {exc}") from exc
        imported = 0
        for entry in document.profiles:
            try:
                await self.add(self._decrypt(StoredProfile.model_validate(entry)))
            except (ValidationError, DecryptionError, ProfileValidationError, DuplicateProfileError) as exc:
                LOG.warning("Skipped profile during import", extra={"profile": _entry_name(entry), "reason": str(exc)})
                continue
            imported += 1
        return imported

    async def _load(self) -> dict[str, ConnectionProfile]:
        try:
            stat = await self._file.stat()
        except FileNotFoundError:
            await self._dir.mkdir(parents=True, exist_ok=True)
            self._cache = {}
            self._mtime_ns = None
            return self._cache
        if stat.st_mtime_ns == self._mtime_ns and self._cache:
            return self._cache

        document = await self._read_storage()
        profiles: dict[str, ConnectionProfile] = {}
        for entry in document.profiles:
            try:
                profile = self._decrypt(StoredProfile.model_validate(entry))
            except (ValidationError, DecryptionError) as exc:
                LOG.warning("Skipped unreadable profile", extra={"profile": _entry_name(entry), "reason": str(exc)})
                continue
            profiles[profile.name] = profile
        self._cache = profiles
        self._mtime_ns = stat.st_mtime_ns
        return profiles

    async def _read_storage(self) -> StorageDocument:
        await self._dir.mkdir(parents=True, exist_ok=True)
        try:
            text = await self._file.read_text(encoding="utf-8")
        except FileNotFoundError:
            return StorageDocument()
        try:
            return StorageDocument.model_validate_json(text)
        except ValidationError as exc:
            raise ProfileStoreError(f"Corrupt profile storage at {self.path}: {exc}") from exc

    async def _save(self, profiles: dict[str, ConnectionProfile]) -> None:
        document = await self._read_storage()
        storage = ProfileStorage(
            version=document.version,
            created_at=document.created_at,
            profiles=[self._encrypt(profile) for profile in profiles.values()],
        )

        temp_file = self._file.with_name(f"{PROFILES_FILENAME}.{uuid.uuid4().hex}.tmp")
        try:
            await temp_file.write_text(storage.to_json(), encoding="utf-8")
            await temp_file.replace(self._file)
        finally:
            await temp_file.unlink(missing_ok=True)

        stat = await self._file.stat()
        self._cache = profiles
        self._mtime_ns = stat.st_mtime_ns

    def _encrypt(self, profile: ConnectionProfile) -> StoredProfile:
        ciphertext, iv = self._cipher.encrypt(profile.uri)
        return StoredProfile(
            name=profile.name,
            encrypted_uri=ciphertext,
            iv=iv,
            database=profile.database,
            alias=profile.alias,
            tags=profile.tags,
            options=profile.options,
            metadata=profile.metadata,
        )

    def _decrypt(self, stored: StoredProfile) -> ConnectionProfile:
        return ConnectionProfile(
            name=stored.name,
            uri=self._cipher.decrypt(stored.encrypted_uri, stored.iv),
            database=stored.database,
            alias=stored.alias,
            tags=stored.tags,
            options=stored.options,
            metadata=stored.metadata,
        )

    @staticmethod
    def _validate(profile: ConnectionProfile) -> None:
        if not profile.name:
            raise InvalidProfileName("Profile name is required.")
        if not _NAME_PATTERN.match(profile.name):
            raise InvalidProfileName(
                "Profile name can only contain letters, numbers, underscores, and hyphens."
            )
        if not profile.uri:
            raise InvalidProfileUri("Profile URI is required.")
        if not has_valid_scheme(profile.uri):
            raise InvalidProfileUri(f"Profile URI must start with {' or '.join(SCHEMES)}.")


def _merge(existing: ConnectionProfile, changes: Mapping[str, Any]) -> ConnectionProfile:
    data = existing.model_dump()
    for key, value in changes.items():
        if key == "name":
            continue
        if key == "metadata":
            data["metadata"] = {**data["metadata"], **_fields(value)}
        elif isinstance(value, BaseModel):
            data[key] = value.model_dump(exclude_none=True)
        else:
            data[key] = value
    try:
        return ConnectionProfile.model_validate(data)
    except ValidationError as exc:
        raise ProfileValidationError(f"Invalid update for profile '{existing.name}': {exc}") from exc


def _fields(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, BaseModel):
        return value.model_dump(exclude_unset=True)
    return dict(value)


def _entry_name(entry: Any) -> Any:
    return entry.get("name") if isinstance(entry, dict) else None


def _clear_other_defaults(profiles: dict[str, ConnectionProfile], keep: str) -> None:
    for name, profile in profiles.items():
        if name != keep and profile.is_default:
            profiles[name] = profile.with_metadata(is_default=False)


__all__ = [
    "DuplicateProfileError",
    "InvalidProfileName",
    "InvalidProfileUri",
    "ProfileImportError",
    "ProfileStorage",
    "ProfileStore",
    "ProfileStoreError",
    "ProfileValidationError",
    "StorageDocument",
    "StoredProfile",
]
