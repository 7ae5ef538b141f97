"""Command-line entry points (``apk-splicer-install``, ``-devices``, ``-agent``)."""
