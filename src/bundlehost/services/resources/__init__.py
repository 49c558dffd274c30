from .resolver import SourceResolver, parse_repository
from .fetcher import Fetcher
from .installer import Installer

__all__ = ["SourceResolver", "parse_repository", "Fetcher", "Installer"]
