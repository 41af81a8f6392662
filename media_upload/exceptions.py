# exceptions.py

class MediaUploadError(Exception):
    """Base class for every error raised by the upload pipeline."""
    pass

class ValidationError(MediaUploadError):
    """A file, its metadata or a request option violates a configured constraint."""
    pass

class ProcessingError(MediaUploadError):
    """Derivative generation failed hard (e.g., an undecodable image)."""
    pass

class StorageError(MediaUploadError):
    """The storage backend failed to upload, delete or sign a file."""
    pass

class NotFoundError(MediaUploadError):
    """The requested file or folder does not exist."""
    pass

class ConflictError(MediaUploadError):
    """The operation clashes with existing state (non-empty folder, duplicate object)."""
    pass

class ConfigurationError(MediaUploadError):
    """Required settings are missing; the service must not start."""
    pass
