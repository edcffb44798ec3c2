import os
import sys
import uuid

# No models, so no databases. Settings are only used for configuration and
# logging.
DATABASES = {}

DEBUG = False

USE_TZ = True

INSTALLED_APPS = []

# Directory holding cached copies of files read from storage. Each process
# that shares this directory shares its cache.
READTHROUGH_CACHE_ROOT = os.environ.get(
    "READTHROUGH_CACHE_ROOT",
    os.path.join(os.path.expanduser("~"), ".cache", "readthrough"),
)

# Skip caching a file if the write would leave less than this fraction of
# the cache filesystem free
READTHROUGH_MIN_FREE_RATIO = 0.05

# Whether deleting a file from storage also removes its cached copy
READTHROUGH_PURGE_ON_DELETE = True

# Storage backend used by the command line, e.g.
# {"class": "local", "settings": {"base_dir": "/srv/files"}}
READTHROUGH_STORAGE = None

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "color": {
            "()": "colorlog.ColoredFormatter",
            "format": "%(log_color)s%(levelname)-8s%(reset)s "
                      "%(message)s",
            "log_colors": {"DEBUG": "cyan", "INFO": "white",
                           "WARNING": "yellow", "ERROR": "red",
                           "CRITICAL": "white,bg_red",
                           },
        },
        "nocolor": {
            "format": "%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
    },
    "handlers": {
        "stderr": {
            "class": "logging.StreamHandler",
            "formatter": "color" if sys.stderr.isatty() else "nocolor",
        },
    },
    "loggers": {
        "readthrough": {
            "level": "WARNING",
        },
        "django": {
            "handlers": [],
        },
    },
    "root": {
        "level": "WARNING",
        "handlers": ["stderr"],
    }

}

# Set a secret key for this session
SECRET_KEY = str(uuid.uuid4())
