"""SamThing device client."""

from .config import VERSION

__version__ = VERSION
