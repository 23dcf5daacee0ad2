from teachlink.storage.secure_store import (
    CredentialStore,
    EncryptedFileBackend,
    MemoryBackend,
    SecureStorageBackend,
)

__all__ = ["CredentialStore", "EncryptedFileBackend", "MemoryBackend", "SecureStorageBackend"]
