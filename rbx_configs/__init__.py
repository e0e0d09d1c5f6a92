"""rbx-configs: sync a local flag file with a universe's remote configuration."""

__version__ = "0.3.0"
