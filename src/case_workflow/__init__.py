"""Case lifecycle and authorization engine: role-gated workflow, SLA tracking, audit ledger."""

import os

__version__ = "0.1.0"

ENGINE_VERSION = os.environ.get("CW_ENGINE_VERSION") or __version__
