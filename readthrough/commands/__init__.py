import abc
import logging

from django.conf import settings


class CommandError(Exception):
    pass


class CommandBase(metaclass=abc.ABCMeta):

    help = ""
    logger = logging.getLogger("readthrough.cmd")

    def __init__(self):
        pass

    def add_arguments(self, parser):
        pass

    @abc.abstractmethod
    def handle(self, args):
        pass

    def print(self, s):
        self.logger.info(s)


class FileCommand(CommandBase):
    """Base class for commands that operate on a single file id"""

    def add_arguments(self, parser):
        super().add_arguments(parser)
        parser.add_argument("id", help="The file id in the storage backend")

    def get_storage(self, args):
        from readthrough.storage import FilesystemStorage, get_storage

        if args.storage_dir:
            return FilesystemStorage(args.storage_dir)

        data = getattr(settings, "READTHROUGH_STORAGE", None)
        if not data:
            raise CommandError("No storage configured. Use --storage-dir or "
                               "set READTHROUGH_STORAGE")
        try:
            return get_storage(data)
        except KeyError as e:
            raise CommandError("Invalid READTHROUGH_STORAGE setting: "
                               "{}".format(e))

    def get_file(self, args):
        from django.core.exceptions import ImproperlyConfigured

        from readthrough.cache import CacheConfig
        from readthrough.file import CachedFile

        overrides = {}
        if args.cache_root:
            overrides['root'] = args.cache_root
        try:
            config = CacheConfig.from_settings(**overrides)
        except ImproperlyConfigured as e:
            raise CommandError(str(e))
        return CachedFile(self.get_storage(args), args.id, config)
