from django.core.exceptions import ImproperlyConfigured


class FileClosedError(ValueError):
    """Raised when reading from a CachedFile after it was closed

    This subclasses ValueError because that's what Python's own file objects
    raise for I/O on a closed file. Call rewind() to open the file again.
    """
    pass


__all__ = ["FileClosedError", "ImproperlyConfigured"]
