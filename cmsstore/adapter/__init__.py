from __future__ import annotations

# Re-export the adapter surface for centralized imports.

from cmsstore.adapter.core import AdapterCore
from cmsstore.adapter.facade import CmsAdapter, SystemModules
from cmsstore.adapter.tables import resolve_table
from cmsstore.persistence.db import ConnectionOptions
from cmsstore.services.transactions import TransactionHandle

__all__ = [
    "AdapterCore",
    "CmsAdapter",
    "SystemModules",
    "resolve_table",
    "ConnectionOptions",
    "TransactionHandle",
]
