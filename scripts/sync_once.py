#!/usr/bin/env python3
"""
Run a single sync pass against the configured server and print the result.
Useful for checking credentials and connectivity outside the app.

Usage: python scripts/sync_once.py [username password]
"""

import asyncio
import sys

from trackit.core.config import get_settings
from trackit.core.runtime import Runtime


async def main():
    settings = get_settings()
    runtime = await Runtime.create(settings)

    try:
        if len(sys.argv) == 3:
            print(f"Logging in as {sys.argv[1]}...")
            await runtime.auth.login(sys.argv[1], sys.argv[2])

        if not runtime.auth.is_logged_in.value:
            print("Not logged in. Pass username and password to log in first.")
            return

        online = await runtime.connectivity.check()
        if online:
            # Going online triggers a pass on its own
            runtime.orchestrator.set_online(True)
            await runtime.orchestrator.wait_idle()
        else:
            await runtime.orchestrator.perform_sync()
        state = runtime.orchestrator.state.value

        print(f"Online:          {state.is_online}")
        print(f"Last sync:       {state.last_sync_timestamp}")
        print(f"Pending uploads: {state.pending_uploads}")
        print(f"Failed uploads:  {state.failed_uploads}")
        if state.error_message:
            print(f"Error:           {state.error_message}")
    finally:
        await runtime.close()


if __name__ == "__main__":
    asyncio.run(main())
