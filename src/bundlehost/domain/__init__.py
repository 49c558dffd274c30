from .types import Event, Command, SourceConfig, ResolvedSource, DownloadProgress, ProcessState

__all__ = ["Event", "Command", "SourceConfig", "ResolvedSource", "DownloadProgress", "ProcessState"]
