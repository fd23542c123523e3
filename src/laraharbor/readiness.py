"""
Readiness polling for newly created sites.

The proxy serves self-signed certificates, so TLS verification is off.
"""

import asyncio
import logging

import aiohttp

logger = logging.getLogger(__name__)


async def probe(session: aiohttp.ClientSession, url: str, timeout: float = 5.0) -> int:
    """Return the HTTP status of url, or 0 when the request fails."""
    try:
        async with session.get(
            url,
            ssl=False,
            allow_redirects=False,
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as response:
            return response.status
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        logger.debug(f"Probe of {url} failed: {e}")
        return 0


async def wait_for_site(url: str, attempts: int = 30, interval: float = 2.0) -> bool:
    """
    Poll url until it answers 200, with a fixed pause between attempts.

    Returns:
        True when the site answered 200 within the allowed attempts
    """
    async with aiohttp.ClientSession() as session:
        for attempt in range(1, attempts + 1):
            status = await probe(session, url)
            if status == 200:
                logger.info(f"{url} ready after {attempt} attempt(s)")
                return True
            logger.debug(f"{url} not ready (attempt {attempt}/{attempts}, status {status})")
            if attempt < attempts:
                await asyncio.sleep(interval)

    logger.warning(f"{url} did not become ready after {attempts} attempts")
    return False


def wait_for_site_sync(url: str, attempts: int = 30, interval: float = 2.0) -> bool:
    """Blocking wrapper around wait_for_site for the synchronous orchestrator."""
    return asyncio.run(wait_for_site(url, attempts, interval))
