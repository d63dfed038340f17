"""
provisioner.core.constants - Shared Constants
=============================================

Values that more than one layer needs and that are not configurable.
"""

TOOL_VERSION = "1.0.0"

# Persisted timestamps use this fixed textual format (local wall-clock time).
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

DEFAULT_IDENTIFIER = "com.github.provisioner"

# Search path handed to every script child process.
SCRIPT_PATH = "/usr/local/bin:/usr/bin:/bin:/usr/sbin:/sbin"
