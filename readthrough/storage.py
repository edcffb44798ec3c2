import io
import pathlib
import shutil
import os


class StorageBase:
    """Base class defining the storage interface

    A storage backend holds the authoritative copy of every file. Files are
    addressed by name, which is the same id a CachedFile is created with.
    """

    # Name this class is registered under in STORAGE_CLASSES. This is also
    # what str() returns, so it's safe to expose to callers.
    storage_name = None

    def __str__(self):
        return self.storage_name or type(self).__name__

    def get_params(self):
        """Returns the parameters to initialize this class

        This is essentially used to serialize the instance
        """
        raise NotImplementedError()

    def upload_file(self, name, content):
        """Uploads a file

        :param name: The file name, including path components
        :param content: A file-like object open for reading
        """
        raise NotImplementedError()

    def open(self, name):
        """Opens a file for reading

        :param name: The name of the file to open
        :returns: A file-like object open for reading in binary mode. It may
            be backed by a file on the local disk or held in memory.
        """
        raise NotImplementedError()

    def size(self, name):
        """Returns the size of the named file in bytes"""
        raise NotImplementedError()

    def exists(self, name):
        """Returns whether the named file exists"""
        raise NotImplementedError()

    def delete(self, name):
        """Deletes a file"""
        raise NotImplementedError()


class FilesystemStorage(StorageBase):
    """A filesystem storage class with an api compatible with our B2 class"""

    storage_name = "local"

    def __init__(self, base_dir):
        self.base_dir = pathlib.Path(base_dir)

    def get_params(self):
        return {
            'base_dir': str(self.base_dir)
        }

    def upload_file(self, name, content):
        path = self.base_dir / name

        os.makedirs(str(path.parent), exist_ok=True)
        with path.open(mode="wb") as fileout:
            shutil.copyfileobj(content, fileout)

    def open(self, name):
        path = self.base_dir / name

        return open(str(path), "rb")

    def size(self, name):
        path = self.base_dir / name

        return path.stat().st_size

    def exists(self, name):
        path = self.base_dir / name

        return path.is_file()

    def delete(self, name):
        path = self.base_dir / name

        path.unlink()


class MemoryStorage(StorageBase):
    """Keeps file contents in a dict

    Files opened from here are in-memory streams, so they are never copied
    into the local cache.
    """

    storage_name = "memory"

    def __init__(self, files=None):
        self.files = dict(files or {})

    def get_params(self):
        return {}

    def upload_file(self, name, content):
        self.files[name] = content.read()

    def _get(self, name):
        try:
            return self.files[name]
        except KeyError:
            raise FileNotFoundError("No such file {!r}".format(name)) from None

    def open(self, name):
        return io.BytesIO(self._get(name))

    def size(self, name):
        return len(self._get(name))

    def exists(self, name):
        return name in self.files

    def delete(self, name):
        self._get(name)
        del self.files[name]


def get_storage(data):
    """Builds a storage backend from a settings dict

    :param data: A dict with keys "class", one of the registered storage
        names, and "settings", the keyword arguments for that class.

    Raises KeyError for an unknown storage class
    """
    cls_name = data["class"]
    settings = data.get("settings", {})

    if cls_name == "local":
        cls = FilesystemStorage
    elif cls_name == "memory":
        cls = MemoryStorage
    elif cls_name == "b2":
        from .b2 import B2Bucket

        cls = B2Bucket
    else:
        raise KeyError("Unknown storage class {}".format(cls_name))

    return cls(**settings)
