"""Exception types raised by shadowpaste components."""


class ShadowPasteError(Exception):
    """Base class for shadowpaste errors."""


class StorageError(ShadowPasteError):
    """The durable store failed (I/O, disk full, corruption, closed handle)."""


class ClipboardMonitorError(ShadowPasteError):
    """The platform clipboard listener could not be initialized."""


class EmbeddingUnavailableError(ShadowPasteError):
    """Embedding was requested before the models finished loading, or after they failed to load."""
