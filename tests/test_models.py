"""Tests for the shared profile models."""

from __future__ import annotations

from mongoquick.models import ConnectionOptions, ConnectionProfile, ProfileMetadata


def test_driver_kwargs_only_include_set_options() -> None:
    options = ConnectionOptions(max_idle_time_ms=1000, retry_writes=False, auth_mechanism="SCRAM-SHA-256")

    assert options.driver_kwargs() == {
        "maxIdleTimeMS": 1000,
        "retryWrites": False,
        "authMechanism": "SCRAM-SHA-256",
    }


def test_options_accept_legacy_ssl_keys() -> None:
    options = ConnectionOptions.model_validate({"ssl": True, "sslCA": "/etc/ca.pem"})

    assert options.tls is True
    assert options.driver_kwargs() == {"tls": True, "tlsCAFile": "/etc/ca.pem"}


def test_profile_reads_camel_case_metadata() -> None:
    profile = ConnectionProfile.model_validate(
        {
            "name": "local",
            "uri": "mongodb://localhost",
            "metadata": {"isDefault": True, "environment": "local"},
        }
    )

    assert profile.is_default is True
    assert profile.metadata.environment == "local"


def test_with_metadata_returns_updated_copy() -> None:
    profile = ConnectionProfile(name="local", uri="mongodb://localhost", metadata=ProfileMetadata(description="x"))

    updated = profile.with_metadata(is_default=True)

    assert updated.is_default is True
    assert updated.metadata.description == "x"
    assert profile.is_default is False


def test_unlisted_driver_options_are_kept() -> None:
    options = ConnectionOptions.model_validate(
        {"replicaSet": "rs0", "directConnection": True, "sslKey": "/k.pem", "maxPoolSize": 5}
    )

    assert options.driver_kwargs() == {
        "maxPoolSize": 5,
        "tlsCertificateKeyFile": "/k.pem",
        "replicaSet": "rs0",
        "directConnection": True,
    }
