"""NASSync - Directory synchronization with NAS shares over rsync or SMB mounts."""

__version__ = "0.3.0"
