"""Backend launcher that sets Windows event loop policy before uvicorn starts."""
import asyncio
import sys

if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsProactorEventLoopPolicy())

import uvicorn

from promptloom.config import ConfigManager


def main() -> None:
    config = ConfigManager().get()
    uvicorn.run(
        "promptloom.main:create_app",
        factory=True,
        host=config.host,
        port=config.port,
    )


if __name__ == "__main__":
    main()
