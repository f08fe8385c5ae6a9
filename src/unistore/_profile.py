"""Connection profiles: immutable descriptions of one configured provider."""

from __future__ import annotations

import dataclasses
from typing import Any

from unistore._errors import InvalidProfile

PROVIDER_TYPES = frozenset({"local", "mock", "s3", "gcs", "sftp", "ftp", "smb", "gdrive"})

# Config keys each provider type cannot work without.
_REQUIRED_KEYS: dict[str, tuple[str, ...]] = {
    "local": ("base_path",),
    "sftp": ("host", "username"),
    "ftp": ("host",),
    "smb": ("host", "share"),
    "gdrive": ("client_id", "client_secret"),
}

_SFTP_AUTH_METHODS = frozenset({"password", "key", "agent"})


@dataclasses.dataclass(frozen=True)
class Profile:
    """Describes one provider instance.

    ``config`` is passed to the provider class as keyword arguments, so its keys
    are the provider's constructor parameters (e.g. ``host``, ``port``,
    ``bucket``, ``base_path``).

    :param id: Unique profile identifier.
    :param provider: Provider type (e.g. ``"s3"``, ``"sftp"``).
    :param display_name: Human-readable name; defaults to ``id``.
    :param config: Provider-specific options.
    """

    id: str
    provider: str
    display_name: str = ""
    config: dict[str, Any] = dataclasses.field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.display_name:
            object.__setattr__(self, "display_name", self.id)

    def validate(self) -> None:
        """Check the provider type and the presence of required options.

        :raises InvalidProfile: If the profile cannot describe a working provider.
        """
        if not self.id:
            raise InvalidProfile("Profile id must not be empty")
        if self.provider not in PROVIDER_TYPES:
            raise InvalidProfile(
                f"Profile '{self.id}' has unknown provider type '{self.provider}'. "
                f"Known types: {sorted(PROVIDER_TYPES)}"
            )
        missing = [key for key in _REQUIRED_KEYS.get(self.provider, ()) if not self.config.get(key)]
        if missing:
            raise InvalidProfile(f"Profile '{self.id}' ({self.provider}) is missing required options: {missing}")
        if self.provider == "s3":
            has_key = bool(self.config.get("access_key_id"))
            has_secret = bool(self.config.get("secret_access_key"))
            if has_key != has_secret:
                raise InvalidProfile(
                    f"Profile '{self.id}' (s3) must set both 'access_key_id' and 'secret_access_key' or neither"
                )
        if self.provider == "sftp":
            method = self.config.get("auth_method", "password")
            if method not in _SFTP_AUTH_METHODS:
                raise InvalidProfile(
                    f"Profile '{self.id}' (sftp) has unknown auth_method '{method}'. "
                    f"Expected one of {sorted(_SFTP_AUTH_METHODS)}"
                )
            if method == "key" and not self.config.get("private_key_path"):
                raise InvalidProfile(f"Profile '{self.id}' (sftp) uses key auth but sets no 'private_key_path'")

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> Profile:
        """Construct from a plain dict (e.g. parsed TOML/JSON).

        :param data: Dict with ``id``, ``provider`` and optional ``display_name``
            and ``config`` keys.
        :raises TypeError: If ``config`` is not a dict.
        :raises InvalidProfile: If ``id`` or ``provider`` is missing.
        """
        for key in ("id", "provider"):
            if not data.get(key):
                raise InvalidProfile(f"Profile is missing '{key}'")
        raw_config = data.get("config", {})
        if not isinstance(raw_config, dict):
            msg = f"Config for profile '{data['id']}' must be a dict"
            raise TypeError(msg)
        return cls(
            id=str(data["id"]),
            provider=str(data["provider"]),
            display_name=str(data.get("display_name") or ""),
            config={str(k): v for k, v in raw_config.items()},
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "provider": self.provider,
            "display_name": self.display_name,
            "config": dict(self.config),
        }
