"""
Factory for creating object store instances.

Simplifies provider selection and initialization.
"""

from typing import Dict, Optional

from shared import config
from shared.models import StorageProvider
from .local_provider import LocalStorageProvider
from .s3_provider import S3StorageProvider
from .storage_provider import ObjectStore, StoreError


class StorageProviderFactory:
    """Factory for creating object store instances."""

    @staticmethod
    def create(provider_type: StorageProvider) -> ObjectStore:
        """
        Create an unauthenticated store instance.

        Args:
            provider_type: Type of provider to create

        Returns:
            Store instance

        Raises:
            ValueError: If provider type is not supported
        """
        if provider_type == StorageProvider.S3:
            return S3StorageProvider()

        elif provider_type == StorageProvider.LOCAL:
            return LocalStorageProvider()

        else:
            raise ValueError(f"Unknown provider type: {provider_type}")

    @staticmethod
    def from_config(provider: Optional[str] = None,
                    credentials: Optional[Dict[str, str]] = None) -> ObjectStore:
        """
        Create and authenticate the store described by the environment.

        Raises:
            ValueError: If the provider name is unknown
            StoreError: If the store rejects the configuration
        """
        provider_type = StorageProvider(provider or config.STORAGE_PROVIDER)
        store = StorageProviderFactory.create(provider_type)
        if not store.authenticate(credentials or config.store_credentials(provider_type.value)):
            raise StoreError(f"Could not initialise {provider_type.value} store")
        return store

    @staticmethod
    def get_provider_name(provider_type: StorageProvider) -> str:
        """Get human-readable provider name."""
        names = {
            StorageProvider.S3: "S3-Compatible (MinIO / AWS S3)",
            StorageProvider.LOCAL: "Local Directory",
        }
        return names.get(provider_type, "Unknown")
