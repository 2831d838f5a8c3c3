from __future__ import annotations

import asyncio
import sys

from cmsstore.adapter import CmsAdapter
from cmsstore.core.logging import configure_logging


async def prune() -> int:
    # Remove expired sessions and expired or long-consumed tokens.
    adapter = CmsAdapter()
    connected = await adapter.connect()
    if not connected.success:
        print(f"prune_failed code={connected.error.code if connected.error else None}")
        return 1
    try:
        result = await adapter.cleanup_expired_data()
    finally:
        await adapter.disconnect()
    if not result.success or result.data is None:
        print(f"prune_failed code={result.error.code if result.error else None}")
        return 1
    print(f"pruned_sessions={result.data['sessions']}")
    print(f"pruned_tokens={result.data['tokens']}")
    return 0


if __name__ == "__main__":
    configure_logging()
    sys.exit(asyncio.run(prune()))
