"""Project version constants.

Reported by ``/api/version`` and included in startup logs.
"""

APP_NAME: str = "storage-runway"
APP_VERSION: str = "0.1.0"
