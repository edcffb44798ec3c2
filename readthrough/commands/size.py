from django.template.defaultfilters import filesizeformat

from . import FileCommand


class Command(FileCommand):
    help = "Print the size of a file"

    def add_arguments(self, parser):
        super().add_arguments(parser)
        parser.add_argument("-H", "--human", action="store_true",
                            help="Print sizes like 1.2 MB")

    def handle(self, args):
        size = self.get_file(args).size()
        if args.human:
            print(filesizeformat(size))
        else:
            print(size)
