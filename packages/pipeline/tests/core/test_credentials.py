from __future__ import annotations

import pytest
from deploy_pipeline.core import Credentials
from pydantic import SecretStr


def _secrets() -> dict[str, SecretStr]:
    return {
        "cloud_access_key": SecretStr("AKIA123"),
        "platform_token": SecretStr("tok"),
    }


def test_scoped_credentials_only_hold_declared_names() -> None:
    creds = Credentials.scoped(_secrets(), ["platform_token", "missing"])
    assert creds.names() == ["platform_token"]
    assert creds.get("platform_token") == "tok"
    assert creds.as_env() == {"platform_token": "tok"}

    with pytest.raises(KeyError, match="not granted"):
        creds.get("cloud_access_key")


def test_repr_never_shows_values() -> None:
    creds = Credentials.scoped(_secrets(), ["cloud_access_key"])
    assert "AKIA123" not in repr(creds)
    assert "cloud_access_key" in repr(creds)
