"""Shared models used across the profile store and connection manager."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

AuthMechanism = Literal["SCRAM-SHA-1", "SCRAM-SHA-256", "MONGODB-X509", "GSSAPI", "PLAIN"]


class _CamelModel(BaseModel):
    """Base model serialized with camelCase keys on disk."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class Topology(str, Enum):
    """Cluster shape reported by a server's status document."""

    SINGLE = "Single"
    REPLICA_SET_NO_PRIMARY = "ReplicaSetNoPrimary"
    REPLICA_SET_WITH_PRIMARY = "ReplicaSetWithPrimary"
    SHARDED = "Sharded"
    UNKNOWN = "Unknown"


class ConnectionOptions(_CamelModel):
    """Per-profile driver tuning; unset fields fall back to manager defaults.

    Options without a dedicated field (``replicaSet``, ``appName`` and so
    on) are kept under their original key and passed to the driver as-is.
    """

    model_config = ConfigDict(extra="allow")

    max_pool_size: int | None = Field(default=None, alias="maxPoolSize")
    min_pool_size: int | None = Field(default=None, alias="minPoolSize")
    max_idle_time_ms: int | None = Field(default=None, alias="maxIdleTimeMS")
    server_selection_timeout_ms: int | None = Field(default=None, alias="serverSelectionTimeoutMS")
    connect_timeout_ms: int | None = Field(default=None, alias="connectTimeoutMS")
    socket_timeout_ms: int | None = Field(default=None, alias="socketTimeoutMS")
    heartbeat_frequency_ms: int | None = Field(default=None, alias="heartbeatFrequencyMS")
    retry_writes: bool | None = None
    retry_reads: bool | None = None
    tls: bool | None = Field(
        default=None,
        validation_alias=AliasChoices("tls", "ssl"),
        serialization_alias="tls",
    )
    tls_ca_file: str | None = Field(
        default=None,
        validation_alias=AliasChoices("tlsCAFile", "tls_ca_file", "sslCA"),
        serialization_alias="tlsCAFile",
    )
    tls_certificate_key_file: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "tlsCertificateKeyFile", "tls_certificate_key_file", "sslCert", "sslKey"
        ),
        serialization_alias="tlsCertificateKeyFile",
    )
    auth_source: str | None = None
    auth_mechanism: AuthMechanism | None = None

    def driver_kwargs(self) -> dict[str, object]:
        """Return only the options that were set, keyed by driver option name."""

        return self.model_dump(by_alias=True, exclude_none=True)


class ProfileMetadata(_CamelModel):
    """Descriptive bookkeeping attached to a profile."""

    created_at: datetime | None = None
    last_used: datetime | None = None
    last_tested: datetime | None = None
    environment: str | None = None
    is_default: bool = False
    description: str | None = None


class ConnectionProfile(_CamelModel):
    """A named, reusable connection configuration for one endpoint."""

    name: str
    uri: str
    database: str | None = None
    alias: str | None = None
    tags: tuple[str, ...] = ()
    options: ConnectionOptions | None = None
    metadata: ProfileMetadata = Field(default_factory=ProfileMetadata)

    @property
    def is_default(self) -> bool:
        return self.metadata.is_default

    def with_metadata(self, **updates: object) -> ConnectionProfile:
        """Return a copy with metadata fields changed."""

        metadata = self.metadata.model_copy(update=updates)
        return self.model_copy(update={"metadata": metadata})


@dataclass(frozen=True, slots=True)
class ConnectionHealth:
    """Point-in-time result of a connection test."""

    is_connected: bool
    latency_ms: int
    server_version: str
    topology: Topology
    connection_count: int
    tested_at: datetime
    replica_set: str | None = None
    error: str | None = None


__all__ = [
    "AuthMechanism",
    "ConnectionHealth",
    "ConnectionOptions",
    "ConnectionProfile",
    "ProfileMetadata",
    "Topology",
]
