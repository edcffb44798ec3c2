import os.path

import tqdm

from . import FileCommand, CommandError


class Command(FileCommand):
    help = "Copy a file to a local path, caching it on the way"

    def add_arguments(self, parser):
        super().add_arguments(parser)
        parser.add_argument("dest", help="Path to write the file to")
        parser.add_argument("--no-progress", action="store_true",
                            help="Don't show a progress bar")

    def handle(self, args):
        dest = args.dest
        if os.path.isdir(dest):
            raise CommandError("Destination is a directory: {}".format(dest))

        with self.get_file(args) as f:
            total = f.size()
            with open(dest, "wb") as fileout, tqdm.tqdm(
                total=total,
                unit="B",
                unit_scale=True,
                desc=args.id,
                disable=args.no_progress,
            ) as pbar:
                while not f.eof():
                    chunk = f.read(2**16)
                    fileout.write(chunk)
                    pbar.update(len(chunk))

        self.print("Wrote {} bytes to {}".format(total, dest))
