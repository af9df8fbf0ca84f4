# Remote providers
from .unipile import UnipileClient

__all__ = ["UnipileClient"]
