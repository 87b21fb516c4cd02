"""Mass archiving of optical discs into ISO images."""

from .__version__ import __version__

__all__ = ["__version__"]
