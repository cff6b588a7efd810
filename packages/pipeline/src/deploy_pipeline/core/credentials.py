from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping

from pydantic import SecretStr


@dataclass(frozen=True, slots=True)
class Credentials:
    """
    Secrets handed to a single collaborator call.

    Built per stage execution from the configured secrets, restricted to the
    names that stage declares. Never stored on a collaborator.
    """

    values: Mapping[str, SecretStr] = field(default_factory=dict)

    @classmethod
    def scoped(
        cls, secrets: Mapping[str, SecretStr], names: Iterable[str]
    ) -> "Credentials":
        return cls(values={n: secrets[n] for n in names if n in secrets})

    def get(self, name: str) -> str:
        try:
            return self.values[name].get_secret_value()
        except KeyError:
            raise KeyError(f"Credential {name!r} was not granted to this call") from None

    def has(self, name: str) -> bool:
        return name in self.values

    def names(self) -> list[str]:
        return sorted(self.values)

    def as_env(self) -> dict[str, str]:
        return {k: v.get_secret_value() for k, v in self.values.items()}

    def __repr__(self) -> str:
        return f"Credentials(names={self.names()!r})"
