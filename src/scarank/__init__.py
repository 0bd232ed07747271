__all__ = [
    "config",
    "dataset",
    "metrics",
    "models",
    "modeling",
    "postprocessing",
    "registry",
    "tools",
    "ScarankError",
    "ErrorKind",
]

from .version import version as __version__  # noqa: F401

from .errors import ScarankError, ErrorKind
