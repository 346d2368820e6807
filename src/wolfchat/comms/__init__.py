"""Session registry and broadcast service."""
