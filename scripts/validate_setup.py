"""Validate that the system is properly set up and configured."""

import asyncio
import sys
from pathlib import Path

import httpx
import redis.asyncio as redis
from redis.exceptions import RedisError

from delivery_engine.config import get_settings


async def check_env_file() -> bool:
    """Check if .env file exists and has the connection variables."""
    print("Checking environment configuration...")

    env_path = Path(".env")
    if not env_path.exists():
        print("  ⚠️  .env file not found, using defaults")
        print("  → Run: cp .env.example .env")
        return True

    with open(env_path) as f:
        env_content = f.read()

    required_vars = ["REDIS_URL", "GATEWAY_BASE_URL"]
    missing_vars = [var for var in required_vars if var not in env_content]

    if missing_vars:
        print(f"  ❌ Missing variables: {', '.join(missing_vars)}")
        return False

    print("  ✓ Environment file configured")
    return True


async def check_python_version() -> bool:
    """Check if Python version is 3.11+."""
    print("\nChecking Python version...")

    version = sys.version_info
    if version.major < 3 or (version.major == 3 and version.minor < 11):
        print(f"  ❌ Python {version.major}.{version.minor} detected")
        print("  → Python 3.11+ required")
        return False

    print(f"  ✓ Python {version.major}.{version.minor} detected")
    return True


async def check_redis() -> bool:
    """Check that the mirror store is reachable."""
    print("\nChecking Redis...")

    settings = get_settings()
    client = redis.from_url(settings.redis_url, decode_responses=True)
    try:
        await client.ping()
    except (RedisError, OSError) as e:
        print(f"  ❌ Redis not reachable at {settings.redis_url}: {e}")
        return False
    finally:
        await client.aclose()

    print(f"  ✓ Redis reachable at {settings.redis_url}")
    return True


async def check_gateway() -> bool:
    """Check that the backend task API answers."""
    print("\nChecking task gateway...")

    settings = get_settings()
    url = f"{settings.gateway_base_url.rstrip('/')}/delivery/tasks/available"
    try:
        async with httpx.AsyncClient(timeout=settings.gateway_timeout_seconds) as client:
            response = await client.get(url)
    except httpx.HTTPError as e:
        print(f"  ⚠️  Gateway not reachable ({e}); engines will run from the mirror")
        return True

    print(f"  ✓ Gateway answered with HTTP {response.status_code}")
    return True


async def main() -> int:
    checks = [
        await check_python_version(),
        await check_env_file(),
        await check_redis(),
        await check_gateway(),
    ]

    if all(checks):
        print("\n✓ Setup looks good\n")
        return 0

    print("\n❌ Setup incomplete, see messages above\n")
    return 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
