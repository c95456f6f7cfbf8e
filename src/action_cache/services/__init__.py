"""Services for the remote cache tier.

Provides the digest codec, the object storage client and the batch
upload coordinator.
"""

from action_cache.services.blob_client import BlobClient
from action_cache.services.uploader import RetryPolicy, UploadCoordinator

__all__ = ["BlobClient", "RetryPolicy", "UploadCoordinator"]
