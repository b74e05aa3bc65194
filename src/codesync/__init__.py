"""
codesync: move a VS Code configuration between machines.

One machine serves its settings as a streamed ZIP archive over HTTP,
the other pulls it, sets its own settings aside, and unpacks.

    codesync server
    codesync client 192.168.1.50
"""

import os

__version__ = "0.1.0"

DEFAULT_PORT = 8080
SYNC_PATH = "/sync"
ARCHIVE_FILENAME = "vscode_settings.zip"

CONFIG_FILE = os.environ.get("CODESYNC_CONFIG", "~/.config/codesync/config.yaml")
