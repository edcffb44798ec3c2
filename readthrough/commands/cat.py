import shutil
import sys

from . import FileCommand


class Command(FileCommand):
    help = "Write a file's contents to standard output"

    def handle(self, args):
        with self.get_file(args) as f:
            stream = f.to_io()
            out = sys.stdout.buffer
            shutil.copyfileobj(stream, out)
        out.flush()
