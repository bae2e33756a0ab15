"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~ttlproxy.exceptions.TtlProxyError` subclass.
Process supervisors and shell wrappers can inspect the exit code to tell a
bad configuration apart from a broken cache directory without parsing
stderr.

Example::

    $ ttlproxy serve --port 99999
    $ echo $?
    3   # EXIT_CONFIG_ERROR -- the port is out of range
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or missing required parameters."""

EXIT_CONFIG_ERROR = 3
"""Startup configuration is missing or malformed."""

EXIT_CACHE_ERROR = 4
"""The cache store could not be created, read, or written."""

EXIT_UPSTREAM_ERROR = 5
"""The upstream server could not be reached or the exchange failed."""
