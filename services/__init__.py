# services/__init__.py

# This file makes the 'services' directory a Python package and
# exposes its modules for import.

from . import fulfillment
from . import checkout_service
from . import pos_sync_runner
