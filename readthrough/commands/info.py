import json

from . import FileCommand


class Command(FileCommand):
    help = "Print a JSON summary of a file"

    def handle(self, args):
        print(json.dumps(self.get_file(args).as_json()))
