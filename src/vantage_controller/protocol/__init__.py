"""Controller wire protocols: command channel lines and configuration channel XML."""
