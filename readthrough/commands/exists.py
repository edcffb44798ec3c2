from . import FileCommand, CommandError


class Command(FileCommand):
    help = "Check whether a file exists in the storage backend"

    def handle(self, args):
        if not self.get_file(args).exists():
            raise CommandError("No such file: {}".format(args.id))
        print("{} exists".format(args.id))
