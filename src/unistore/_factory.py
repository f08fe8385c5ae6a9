"""Provider factory and registry: profile in, provider out."""

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING, Any

from unistore._errors import InvalidProfile, ProviderNotAvailable

if TYPE_CHECKING:
    from types import TracebackType

    from unistore._profile import Profile
    from unistore._provider import Provider

log = logging.getLogger(__name__)

# Global provider factory registry: maps type strings to provider classes.
_PROVIDER_FACTORIES: dict[str, type[Provider]] = {}

# Built-in providers, imported on first use so optional SDKs stay optional.
_BUILTIN_PROVIDERS: dict[str, tuple[str, str, str | None]] = {
    "local": ("unistore.backends._local", "LocalProvider", None),
    "mock": ("unistore.backends._memory", "MockProvider", None),
    "s3": ("unistore.backends._s3", "S3Provider", "s3"),
    "gcs": ("unistore.backends._gcs", "GCSProvider", "gcs"),
    "sftp": ("unistore.backends._sftp", "SFTPProvider", "sftp"),
    "ftp": ("unistore.backends._ftp", "FTPProvider", None),
}


def register_provider(type_name: str, cls: type[Provider]) -> None:
    """Register a provider class for a given type string.

    Registering an existing type replaces it, which is how applications plug in
    providers for types without a bundled implementation (``smb``, ``gdrive``).

    :param type_name: The type identifier (e.g. ``"local"``).
    :param cls: The provider class to instantiate.
    """
    _PROVIDER_FACTORIES[type_name] = cls


def unregister_provider(type_name: str) -> None:
    _PROVIDER_FACTORIES.pop(type_name, None)


def _resolve(type_name: str) -> type[Provider]:
    if type_name in _PROVIDER_FACTORIES:
        return _PROVIDER_FACTORIES[type_name]
    if type_name not in _BUILTIN_PROVIDERS:
        raise ProviderNotAvailable(
            f"No provider registered for type '{type_name}'. "
            f"Built-in types: {sorted(_BUILTIN_PROVIDERS)}; registered: {sorted(_PROVIDER_FACTORIES)}",
            provider=type_name,
        )
    module_name, class_name, extra = _BUILTIN_PROVIDERS[type_name]
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        hint = f" Install it with: pip install 'unistore[{extra}]'" if extra else ""
        raise ProviderNotAvailable(
            f"Provider '{type_name}' needs a dependency that is not installed: {exc.name}.{hint}",
            provider=type_name,
        ) from exc
    cls: type[Provider] = getattr(module, class_name)
    register_provider(type_name, cls)
    return cls


def create_provider(profile: Profile, **dependencies: Any) -> Provider:
    """Instantiate the provider described by ``profile``.

    :param profile: The profile; validated first.
    :param dependencies: Extra constructor arguments that are not configuration,
        such as ``logger`` or a pre-built SDK client.
    :raises InvalidProfile: If the profile is invalid or its options do not fit
        the provider class.
    :raises ProviderNotAvailable: If no class is available for the type.
    """
    profile.validate()
    cls = _resolve(profile.provider)
    try:
        provider = cls(**profile.config, **dependencies)
    except TypeError as exc:
        raise InvalidProfile(
            f"Invalid options for profile '{profile.id}' (provider={profile.provider!r}): {exc}. "
            f"Provided options: {sorted(profile.config.keys())}"
        ) from exc
    log.debug("Created %s provider for profile %r", profile.provider, profile.id)
    return provider


class Registry:
    """Manages provider lifecycle for a set of profiles.

    Providers are created lazily on first access and cached per profile id.

    :param profiles: Profiles to manage. Each is validated immediately.
    :param dependencies: Passed to every :func:`create_provider` call.
    :raises InvalidProfile: If a profile is invalid or ids collide.
    """

    def __init__(self, profiles: list[Profile] | None = None, **dependencies: Any) -> None:
        self._profiles: dict[str, Profile] = {}
        for profile in profiles or []:
            profile.validate()
            if profile.id in self._profiles:
                raise InvalidProfile(f"Duplicate profile id '{profile.id}'")
            self._profiles[profile.id] = profile
        self._dependencies = dependencies
        self._providers: dict[str, Provider] = {}

    def __repr__(self) -> str:
        return f"Registry(profiles={sorted(self._profiles)!r})"

    @property
    def profiles(self) -> list[Profile]:
        return list(self._profiles.values())

    def get_provider(self, profile_id: str) -> Provider:
        """Get the provider for a profile, creating it on first use.

        :raises KeyError: If no profile with this id exists.
        """
        if profile_id not in self._profiles:
            available = sorted(self._profiles)
            raise KeyError(f"Unknown profile '{profile_id}'. Available profiles: {available}")
        if profile_id not in self._providers:
            self._providers[profile_id] = create_provider(self._profiles[profile_id], **self._dependencies)
        return self._providers[profile_id]

    async def aclose(self) -> None:
        """Disconnect all instantiated providers."""
        for profile_id, provider in self._providers.items():
            result = await provider.disconnect()
            if not result.ok:
                log.warning("Disconnecting profile %r failed: %s", profile_id, result.error)
        self._providers.clear()

    async def __aenter__(self) -> Registry:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()
