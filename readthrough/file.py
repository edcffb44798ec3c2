import os
import os.path
import shutil
import stat
import tempfile
from logging import getLogger

from django.utils.functional import cached_property

from .cache import CacheConfig, cache_name
from .exceptions import FileClosedError

logger = getLogger("readthrough.file")


def _backing_path(stream):
    """Returns the path of the regular file behind the given stream, or None
    if it's an in-memory or network stream

    """
    name = getattr(stream, "name", None)
    if isinstance(name, os.PathLike):
        name = os.fspath(name)
    if isinstance(name, str) and os.path.isfile(name):
        return name
    return None


def _is_seekable(stream):
    try:
        return stream.seekable()
    except (AttributeError, ValueError):
        return False


class CachedFile:
    """A file in a storage backend, read through the local disk cache

    Creating a CachedFile does no I/O. The first call to read(), eof(),
    to_io() or download() opens a stream. If a complete copy of the file is
    in the cache directory it's read from there, otherwise it's opened from
    the backend. When the backend hands back a stream that lives in a file
    on the local disk, that file is copied into the cache for next time.

    Problems with the cache directory never cause a read to fail. Errors
    from the backend are raised unchanged.

    :param backend: The storage backend holding the file
    :type backend: readthrough.storage.StorageBase

    :param id: The name of the file in the backend

    :param config: The cache settings to use. Defaults to
        CacheConfig.from_settings()
    :type config: CacheConfig
    """

    def __init__(self, backend, id, config=None):
        self.backend = backend
        self.id = id
        if config is not None:
            self.__dict__['config'] = config

        self._io = None
        self._closed = False
        # A byte read ahead by eof() on a stream that can't seek back
        self._pushback = b""

    @cached_property
    def config(self):
        return CacheConfig.from_settings()

    def __repr__(self):
        return "<CachedFile {!r} in {}>".format(self.id, self.backend)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def cache_path(self):
        return self.config.get_path(self.id)

    @property
    def closed(self):
        return self._closed

    def read(self, size=-1):
        """Reads up to size bytes, or everything left if size is negative

        Returns an empty bytes object at the end of the file
        """
        io = self._get_io()
        if not self._pushback or size == 0:
            return io.read(size)

        head, self._pushback = self._pushback, b""
        if size is None or size < 0:
            return head + io.read()
        return head + io.read(size - len(head))

    def eof(self):
        """Returns True once there's nothing more to read"""
        io = self._get_io()
        if self._pushback:
            return False

        if _is_seekable(io):
            pos = io.tell()
            at_end = not io.read(1)
            io.seek(pos)
            return at_end

        self._pushback = io.read(1)
        return not self._pushback

    def close(self):
        """Closes the underlying stream

        Reading after this raises FileClosedError until rewind() is called
        """
        if self._io is not None:
            self._io.close()
        self._closed = True

    def size(self):
        """Returns the size of the file in bytes

        The size of the cached copy is used when there is one, which saves a
        call to the backend.
        """
        try:
            st = os.stat(self.cache_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.debug("Could not stat cached {!r}: {}".format(self.id, e))
        else:
            if stat.S_ISREG(st.st_mode):
                return st.st_size
        return self.backend.size(self.id)

    def delete(self):
        """Removes the file from the backend

        The cached copy is removed too unless the config's purge_on_delete
        is False.
        """
        self.backend.delete(self.id)
        if self.config.purge_on_delete:
            self.config.purge(self.id)

    def exists(self):
        """Returns whether the file exists in the backend

        The cache isn't consulted. A cached copy can outlive the file in the
        backend.
        """
        return self.backend.exists(self.id)

    def to_io(self):
        """Returns the underlying stream"""
        return self._get_io()

    def download(self):
        """Returns a file on the local disk with the file's contents

        If the underlying stream is already backed by a file, that stream is
        returned. Otherwise the rest of the stream is copied into a new
        temporary file, which is synced to disk and returned positioned at
        the start. Either way the caller can open the returned object's
        name as a path.

        A file-backed stream is handed out as is, not copied, so it still
        belongs to this CachedFile. rewind(), close() and leaving a with
        block close it, and a temporary file from the backend is removed at
        that point. Open the returned name again to keep the file beyond
        that.
        """
        io = self._get_io()
        if _backing_path(io) is not None:
            return io

        tmp = tempfile.NamedTemporaryFile(
            prefix="readthrough-",
            suffix="-" + cache_name(self.id),
        )
        try:
            tmp.write(self._pushback)
            self._pushback = b""
            shutil.copyfileobj(io, tmp)
            tmp.flush()
            os.fsync(tmp.fileno())
        except BaseException:
            tmp.close()
            raise
        tmp.seek(0)
        return tmp

    def rewind(self):
        """Forgets the underlying stream

        It's closed first. The next read opens the file again from scratch,
        which may now find it in the cache.
        """
        if self._io is not None:
            self._io.close()
        self._io = None
        self._closed = False
        self._pushback = b""

    def as_json(self):
        """Returns a summary of this file that's safe to show to users

        Paths and backend credentials are left out
        """
        return {
            'id': self.id,
            'backend': str(self.backend),
        }

    def _get_io(self):
        if self._closed:
            raise FileClosedError("I/O operation on closed file {!r}".format(
                self.id))
        if self._io is None:
            self._io = self._open()
        return self._io

    def _open(self):
        config = self.config
        path = config.get_path(self.id)

        if os.path.isfile(path):
            try:
                f = open(path, "rb")
            except OSError as e:
                logger.debug("Could not open cached {!r}, reading from "
                             "backend: {}".format(self.id, e))
            else:
                logger.debug("Cache hit for {!r}".format(self.id))
                try:
                    size = os.fstat(f.fileno()).st_size
                except OSError:
                    size = 0
                config.notify_hit(self.id, size)
                return f

        logger.debug("Cache miss for {!r}".format(self.id))
        stream = self.backend.open(self.id)

        source = _backing_path(stream)
        if source is not None:
            try:
                size = os.stat(source).st_size
            except OSError as e:
                logger.debug("Could not stat {}: {}".format(source, e))
                size = 0
            if size > 0:
                config.populate(self.id, source, size)

        return stream
