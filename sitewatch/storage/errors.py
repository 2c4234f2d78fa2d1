class StorageError(Exception):
    """Raised when a backend cannot store or read entries."""
