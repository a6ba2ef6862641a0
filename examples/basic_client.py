"""
Basic client example using httptask.

This example demonstrates the verb methods, a download with progress
reporting and an authorization module with the automatic retry.
"""

import asyncio
import logging
import tempfile
from typing import Dict

from httptask import AuthzModule, HttpClient, HttpStatusError

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class StaticTokenModule(AuthzModule):
    """Authorization module handing out a fixed bearer token."""

    def __init__(self, token: str):
        self.token = token

    async def request_access(self) -> bool:
        return True

    def revoke_local_access_token(self) -> None:
        logger.info("Token rejected, revoking it")

    def authorization_fields(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


async def simple_requests():
    """Demonstrate GET and POST requests."""
    logger.info("Making simple requests...")

    async with HttpClient("http://httpbin.org") as client:
        value = await client.get("get", {"q": "httptask", "tags": ["a", "b"]})
        logger.info(f"Query echoed back: {value['args']}")

        value = await client.post("post", {"name": "httptask", "nested": {"level": 1}})
        logger.info(f"Form echoed back: {value['form']}")

        try:
            await client.get("status/404")
        except HttpStatusError as e:
            logger.info(f"Got expected error {e.code}")


async def download_with_progress():
    """Demonstrate a download with progress reporting."""
    logger.info("Downloading a file...")

    def progress(written: int, total_written: int, total_expected: int) -> None:
        logger.info(f"Downloaded {total_written}/{total_expected} bytes")

    with tempfile.TemporaryDirectory() as directory:
        async with HttpClient("http://httpbin.org") as client:
            response = await client.download("bytes/102400", directory, progress=progress)
            logger.info(f"Saved to {response.extensions['download_path']}")


async def authorized_request():
    """Demonstrate the authorization retry."""
    logger.info("Making an authorized request...")

    async with HttpClient("http://httpbin.org", authz_module=StaticTokenModule("demo")) as client:
        handle = client.get("bearer", completion_handler=lambda value, error: logger.info(f"Completed: {value}, {error}"))
        await handle.outcome()


async def main():
    """Run all examples."""
    await simple_requests()
    await download_with_progress()
    await authorized_request()


if __name__ == "__main__":
    asyncio.run(main())
