"""SafePass, encrypted personal vault."""
from .version import __version__
from .session import KeySession
from .keyring import Keyring

__all__ = ["__version__", "KeySession", "Keyring"]
