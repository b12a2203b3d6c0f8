"""
ProviderKeyring — Encrypted provider API keys bound to an account.

Provides the public API used by application code:
- ``configure(account_id, provider, api_key)`` — encrypt and store a key
- ``get_api_key(account_id, provider)`` — decrypt a stored key
- ``update_settings(...)`` — change model/activation/settings metadata
- ``verify_provider(account_id, provider)`` — check the stored key decrypts
- ``remove(account_id, provider)`` — deconfigure a provider
- ``list_providers(account_id)`` — public documents, without ``apiKey``

Every mutation reads the account's whole provider list, changes it in memory
and writes the whole list back with one ``upsert``.

Security Note:
    Never log plaintext or ciphertext values. Only log account ids,
    provider ids and key fingerprints.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from ..data import ProviderCredential
from ..exceptions import CryptoError, FormatError, NotFound
from .crypto import Key, decrypt, encrypt
from .probe import verify
from .store import ProviderCredentialStore

logger = logging.getLogger("provider_vault")

# Models reported once a provider's key has been verified.
DEFAULT_MODELS: dict[str, list[str]] = {
    "openai": ["gpt-4", "gpt-3.5-turbo"],
    "anthropic": ["claude-3-opus", "claude-3-sonnet"],
    "gemini": ["gemini-2.0-flash", "gemini-pro"],
}


def clean_api_key(api_key: str) -> str:
    """Trim an API key and drop embedded CR/LF/TAB characters.

    Raises:
        ValueError: If nothing is left.
    """
    cleaned = api_key.strip()
    for char in ("\r", "\n", "\t"):
        cleaned = cleaned.replace(char, "")
    if not cleaned:
        raise ValueError("API key cannot be empty")
    return cleaned


class ProviderKeyring:
    """Encrypted provider credentials of accounts, on top of a store.

    Args:
        store: Provider credential store.
        key: Key used to encrypt new envelopes and read stored ones.
        providers: Allowed provider ids (defaults to ``DEFAULT_MODELS`` keys).
    """

    def __init__(
        self,
        store: ProviderCredentialStore,
        key: Key,
        providers: Optional[dict[str, list[str]]] = None,
    ):
        self._store = store
        self._key = key
        self._models = dict(providers if providers is not None else DEFAULT_MODELS)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate_provider(self, provider: str) -> None:
        """Validate a provider id.

        Raises:
            ValueError: If the provider is not supported.
        """
        if provider not in self._models:
            raise ValueError(
                f"Invalid provider type: {provider} "
                f"(supported: {', '.join(sorted(self._models))})"
            )

    async def _load(self, account_id: Any) -> list[ProviderCredential]:
        """Read the provider list; a missing account starts empty."""
        try:
            return await self._store.list(account_id)
        except NotFound:
            return []

    def _index(self, providers: list[ProviderCredential], provider: str) -> int:
        for idx, credential in enumerate(providers):
            if credential.provider == provider:
                return idx
        return -1

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def configure(
        self,
        account_id: Any,
        provider: str,
        api_key: str,
        selected_model: Optional[str] = None,
        is_active: bool = True,
    ) -> dict[str, Any]:
        """Encrypt and store the API key of a provider.

        An existing entry for the provider keeps its settings and model list
        but is marked unverified.

        Returns:
            Public document of the stored credential.

        Raises:
            ValueError: If the provider is unsupported or the key empty.
            CryptoError: If the new envelope fails round-trip verification.
        """
        self._validate_provider(provider)
        plaintext = clean_api_key(api_key)
        envelope = encrypt(self._key, plaintext.encode("utf-8"))
        if not verify(self._key, plaintext, envelope):
            raise CryptoError("Encryption verification failed")

        providers = await self._load(account_id)
        idx = self._index(providers, provider)
        if idx < 0:
            credential = ProviderCredential(
                provider=provider,
                api_key=envelope,
                selected_model=selected_model,
                is_active=is_active,
            )
            providers.append(credential)
        else:
            update = {
                "api_key": envelope,
                "is_active": is_active,
                "is_verified": False,
            }
            if selected_model is not None:
                update["selected_model"] = selected_model
            credential = providers[idx].model_copy(update=update)
            providers[idx] = credential

        await self._store.upsert(account_id, providers)
        logger.info(
            "Provider configured: account=%s provider=%s", account_id, provider,
        )
        return credential.public_view()

    async def get_api_key(self, account_id: Any, provider: str) -> str:
        """Decrypt and return the API key of a provider.

        Raises:
            NotFound: If the provider is not configured.
            FormatError: If the stored envelope is malformed.
            CryptoError: If the stored envelope does not decrypt.
        """
        credential = await self._store.get(account_id, provider)
        try:
            return decrypt(self._key, credential.api_key).decode("utf-8")
        except UnicodeDecodeError as err:
            logger.warning(
                "Credential unreadable: account=%s provider=%s",
                account_id, provider,
            )
            raise CryptoError(
                "Decrypted key is not valid UTF-8: key mismatch or corruption"
            ) from err
        except (FormatError, CryptoError) as err:
            logger.warning(
                "Credential unreadable: account=%s provider=%s (%s)",
                account_id, provider, type(err).__name__,
            )
            raise

    async def update_settings(
        self,
        account_id: Any,
        provider: str,
        selected_model: Optional[str] = None,
        is_active: Optional[bool] = None,
        settings: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Update metadata of a configured provider.

        Raises:
            NotFound: If the provider is not configured.
        """
        providers = await self._store.list(account_id)
        idx = self._index(providers, provider)
        if idx < 0:
            raise NotFound(
                f"Provider settings not found: {provider}", account_id=account_id,
            )
        update: dict[str, Any] = {}
        if selected_model:
            update["selected_model"] = selected_model
        if isinstance(is_active, bool):
            update["is_active"] = is_active
        if settings is not None:
            update["settings"] = settings
        providers[idx] = providers[idx].model_copy(update=update)
        await self._store.upsert(account_id, providers)
        return providers[idx].public_view()

    async def verify_provider(self, account_id: Any, provider: str) -> bool:
        """Check the stored key decrypts and record the verification result.

        Raises:
            NotFound: If the provider is not configured.
        """
        providers = await self._store.list(account_id)
        idx = self._index(providers, provider)
        if idx < 0:
            raise NotFound(
                f"Provider settings not found: {provider}", account_id=account_id,
            )
        credential = providers[idx]
        update: dict[str, Any] = {"last_verified": datetime.now(timezone.utc)}
        try:
            decrypt(self._key, credential.api_key).decode("utf-8")
        except (FormatError, CryptoError, UnicodeDecodeError) as err:
            logger.warning(
                "Provider verification failed: account=%s provider=%s (%s)",
                account_id, provider, type(err).__name__,
            )
            update["is_verified"] = False
        else:
            update["is_verified"] = True
            update["available_models"] = list(self._models.get(provider, []))
        providers[idx] = credential.model_copy(update=update)
        await self._store.upsert(account_id, providers)
        return update["is_verified"]

    async def remove(self, account_id: Any, provider: str) -> bool:
        """Deconfigure a provider.

        Returns:
            True if an entry was removed.
        """
        providers = await self._load(account_id)
        remaining = [p for p in providers if p.provider != provider]
        if len(remaining) == len(providers):
            return False
        await self._store.upsert(account_id, remaining)
        logger.info(
            "Provider removed: account=%s provider=%s", account_id, provider,
        )
        return True

    async def list_providers(self, account_id: Any) -> list[dict[str, Any]]:
        """List public documents (no ``apiKey``) of an account's providers."""
        return [p.public_view() for p in await self._load(account_id)]
