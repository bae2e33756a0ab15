"""Built-in CLI commands: ``serve`` and the ``cache`` and ``config`` groups."""
