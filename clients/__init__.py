# Infrastructure clients
from clients.vault_client import (
    VaultClient,
    VaultError,
    get_database_url,
    get_object_store_config,
    get_rate_service_config,
)
from clients.postgres_client import PostgresClient
from clients.rate_client import RateSuggestionClient, RateServiceError
from clients.object_store_client import ObjectStore, ObjectStoreError, S3ObjectStore
