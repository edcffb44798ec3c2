from . import FileCommand


class Command(FileCommand):
    help = "Delete a file from the storage backend and the local cache"

    def handle(self, args):
        self.get_file(args).delete()
        print("Deleted {}".format(args.id))
