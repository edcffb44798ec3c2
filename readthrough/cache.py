"""
Local cache directory management

Cached copies live as one regular file per id directly under the cache root.
Nothing in this module raises on local disk problems. Caching is only an
optimization, so every method here logs and gives up on OSError, and
callers fall back to the storage backend.

Files are written to a temporary name in the cache root and renamed into
place, so a reader either sees a complete file or no file at all. Two
processes populating the same id at once both do the copy and the last
rename wins. Content for an id never changes, so that's harmless.
"""
import hashlib
import os
import os.path
import re
import shutil
import tempfile
from logging import getLogger

from .exceptions import ImproperlyConfigured

logger = getLogger("readthrough.cache")

# Ids matching this are used verbatim as file names. Anything else is hashed.
# Temporary files start with a "." and hashed names with a "~", so neither
# can collide with a verbatim id.
SAFE_NAME = re.compile(r"[A-Za-z0-9_-][A-Za-z0-9._-]{0,199}")

TEMP_PREFIX = ".tmp-"


def cache_name(file_id):
    """Returns the file name used in the cache root for the given id"""
    if SAFE_NAME.fullmatch(file_id):
        return file_id
    # Ids decoded from non-UTF-8 file names can hold lone surrogates
    encoded = file_id.encode("utf-8", "surrogatepass")
    return "~" + hashlib.sha256(encoded).hexdigest()


def _no_hit_hook(file_id, size):
    pass


class CacheConfig:
    """Where and when files get cached

    :param root: The cache directory. It's created on first write if it
        doesn't exist.

    :param min_free_ratio: Files are only cached if the filesystem holding
        the cache root would still have more than this fraction of its
        capacity free after the write.

    :param on_hit: Called as on_hit(file_id, size) each time a read is
        served from the cache. Exceptions from it are logged and ignored.

    :param purge_on_delete: Whether CachedFile.delete() also removes the
        cached copy

    :param disk_usage: A function with the same signature and return value
        as shutil.disk_usage()
    """

    def __init__(self, root, min_free_ratio=0.05, on_hit=None,
                 purge_on_delete=True, disk_usage=shutil.disk_usage):
        self.root = os.fspath(root)
        self.min_free_ratio = min_free_ratio
        self.on_hit = on_hit or _no_hit_hook
        self.purge_on_delete = purge_on_delete
        self.disk_usage = disk_usage

    @classmethod
    def from_settings(cls, **kwargs):
        """Builds a CacheConfig from the Django settings

        Keyword arguments override the corresponding settings.
        """
        from django.conf import settings

        params = {
            "root": getattr(settings, "READTHROUGH_CACHE_ROOT", None),
            "min_free_ratio": getattr(settings, "READTHROUGH_MIN_FREE_RATIO", 0.05),
            "purge_on_delete": getattr(settings, "READTHROUGH_PURGE_ON_DELETE", True),
        }
        params.update(kwargs)
        if not params["root"]:
            raise ImproperlyConfigured("READTHROUGH_CACHE_ROOT is not set")
        return cls(**params)

    def __repr__(self):
        return "<CacheConfig root={!r}>".format(self.root)

    def get_path(self, file_id):
        return os.path.join(self.root, cache_name(file_id))

    def notify_hit(self, file_id, size):
        try:
            self.on_hit(file_id, size)
        except Exception:
            logger.warning("Cache hit hook failed for {!r}".format(file_id),
                           exc_info=True)

    def has_room_for(self, size):
        """Returns whether a file of the given size may be cached

        The cache root may be a symlink to another filesystem, so it's
        resolved before measuring. Returns False if the filesystem can't be
        measured.
        """
        path = os.path.realpath(self.root)
        # Measure the nearest existing directory if the root isn't there yet
        while not os.path.isdir(path):
            parent = os.path.dirname(path)
            if parent == path:
                break
            path = parent

        try:
            usage = self.disk_usage(path)
        except OSError as e:
            logger.debug("Could not measure free space at {}: {}".format(
                path, e))
            return False

        if usage.total <= 0:
            return False
        return (usage.free - size) / usage.total > self.min_free_ratio

    def populate(self, file_id, source_path, size):
        """Copies the file at source_path into the cache for file_id

        Returns True if the cached copy was written, False if it was skipped
        for lack of space or failed.
        """
        if not self.has_room_for(size):
            logger.info("Not caching {!r}: not enough free space in "
                        "{}".format(file_id, self.root))
            return False

        tmp_path = None
        try:
            os.makedirs(self.root, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.root, prefix=TEMP_PREFIX)
            with open(fd, "wb") as fileout, open(source_path, "rb") as filein:
                shutil.copyfileobj(filein, fileout)
                fileout.flush()
                os.fsync(fileout.fileno())
            os.replace(tmp_path, self.get_path(file_id))
        except OSError as e:
            logger.warning("Failed to cache {!r}: {}".format(file_id, e))
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass
            return False

        logger.debug("Cached {!r} ({} bytes)".format(file_id, size))
        return True

    def purge(self, file_id):
        """Removes the cached copy of file_id, if any

        Returns True if a file was removed
        """
        try:
            os.unlink(self.get_path(file_id))
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning("Failed to purge cached {!r}: {}".format(file_id, e))
            return False
        return True
