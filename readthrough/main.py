import argparse
import os.path
import logging
import pkgutil
import sys
from importlib import import_module

import django
from django.apps import apps

from readthrough.commands import CommandError

logger = logging.getLogger("readthrough.main")

def setup():
    if apps.ready:
        return
    os.environ['DJANGO_SETTINGS_MODULE'] = os.environ.get(
        "READTHROUGH_SETTINGS_MODULE", "readthrough.settings"
    )
    django.setup()

def get_parser(commands):
    parser = argparse.ArgumentParser(prog="readthrough")
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="Increase logging verbosity. Use twice for debug "
                             "output")
    parser.add_argument("-q", "--quiet", action="store_true",
                        help="Disable all logging output except errors")
    parser.add_argument("--cache-root",
                        help="Cache directory. Overrides the "
                             "READTHROUGH_CACHE_ROOT setting")
    parser.add_argument("--storage-dir",
                        help="Read files from this local directory instead "
                             "of the READTHROUGH_STORAGE setting")

    # Add a subparser for each defined command class in the
    # readthrough.commands package, and add each command's arguments to its
    # subparser.
    subparsers = parser.add_subparsers(title="subcommands", dest="cmd_name")
    for cmd_name, command in commands.items():
        sub_parser = subparsers.add_parser(cmd_name,
                                           help=command.help)
        command.add_arguments(sub_parser)

    return parser

def main(argv=None):
    """Main entry point for the command line interface

    """

    setup()

    commands = {
        cmd_name: get_command_obj(cmd_name)
        for cmd_name in find_commands()
    }

    parser = get_parser(commands)
    args = parser.parse_args(argv)
    if args.cmd_name is None:
        parser.print_help()
        sys.exit(1)

    # Set log level
    if args.quiet:
        level = logging.ERROR
    elif args.verbose == 0:
        level = logging.WARNING
    elif args.verbose == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG
    logging.getLogger("readthrough").setLevel(level)

    command = commands[args.cmd_name]

    try:
        command.handle(args)
    except CommandError as e:
        logger.error(str(e))
        sys.exit(1)
    except IOError as e:
        # Errors from the storage backend, such as a missing file
        logger.error(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        sys.exit(1)

def find_commands():
    path = os.path.join(os.path.dirname(__file__), "commands")
    return sorted(name for _, name, is_pkg in pkgutil.iter_modules([path])
                  if not is_pkg and not name.startswith("_"))

def get_command_obj(cmd_name):
    module = import_module('readthrough.commands.{}'.format(cmd_name))
    return module.Command()


if __name__ == "__main__":
    main()
