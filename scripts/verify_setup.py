#!/usr/bin/env python3
"""
Setup Verification Script

Checks configuration, the credential directory, the messaging adapter and
the optional services before starting the gateway.

Usage:
    python scripts/verify_setup.py
"""

import asyncio
import os
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Load environment variables
from dotenv import load_dotenv
load_dotenv()


def print_header(title: str) -> None:
    """Print section header."""
    print(f"\n{'='*60}")
    print(f" {title}")
    print(f"{'='*60}")


def print_result(name: str, success: bool, message: str = "") -> None:
    """Print check result."""
    status = "[PASS]" if success else "[FAIL]"
    color = "\033[92m" if success else "\033[91m"
    reset = "\033[0m"
    msg = f" - {message}" if message else ""
    print(f"  {color}{status}{reset} {name}{msg}")


def check_env_file() -> bool:
    """Check if .env file exists. Optional: every setting has a default."""
    env_path = project_root / ".env"
    if env_path.exists():
        print_result(".env file", True, "Found")
        return True
    print_result(".env file", False, "Not found, using defaults (see .env.example)")
    return False


def check_dependencies() -> bool:
    """Check if required Python packages are installed."""
    required_packages = [
        "fastapi",
        "uvicorn",
        "pydantic",
        "pydantic_settings",
        "sqlalchemy",
        "asyncpg",
        "redis",
        "httpx",
        "qrcode",
        "PIL",
    ]

    missing = []
    for package in required_packages:
        try:
            __import__(package)
        except ImportError:
            missing.append(package)

    if missing:
        print_result("Python packages", False, f"Missing: {', '.join(missing)}")
        return False
    print_result("Python packages", True, "All required packages installed")
    return True


def check_settings() -> bool:
    """Load settings and print the ones that matter at startup."""
    try:
        from gateway.config import get_settings
        settings = get_settings()
    except Exception as e:
        print_result("Settings", False, str(e)[:80])
        return False

    print_result("APP_ENV", True, settings.app_env)
    print_result("PORT", True, str(settings.port))
    print_result("QR_TIMEOUT_SECONDS", True, str(settings.qr_timeout_seconds))
    print_result("MAX_IMAGE_MB", True, str(settings.max_image_mb))
    print_result("API_KEY", True, "Set" if settings.api_key else "Not set (routes unauthenticated)")
    return True


def check_credentials_dir() -> bool:
    """Verify the credential directory can be created and written."""
    from gateway.config import get_settings
    from gateway.infra.credentials import CredentialStore

    store = CredentialStore(get_settings().credentials_dir)
    try:
        path = store.ensure()
    except OSError as e:
        print_result("Credential directory", False, str(e)[:80])
        return False

    if not os.access(path, os.W_OK):
        print_result("Credential directory", False, f"{path} is not writable")
        return False

    state = "paired session found" if store.exists() else "empty, QR pairing required"
    print_result("Credential directory", True, f"{path} ({state})")
    return True


def check_handle_factory() -> bool:
    """Verify the messaging adapter can be imported."""
    from gateway.config import get_settings
    from gateway.infra.protocol import UnconfiguredHandleFactory, load_handle_factory

    path = get_settings().session_handle_factory
    try:
        factory = load_handle_factory(path)
    except Exception as e:
        print_result("Messaging adapter", False, f"{path}: {str(e)[:60]}")
        return False

    if isinstance(factory, UnconfiguredHandleFactory):
        print_result("Messaging adapter", False, "SESSION_HANDLE_FACTORY not set")
        return False
    print_result("Messaging adapter", True, path)
    return True


async def check_postgres() -> bool:
    """Verify template database connection."""
    try:
        from gateway.infra.database import check_db_health, close_db
        healthy = await check_db_health()
        await close_db()

        if healthy:
            print_result("Template database", True, "Connection successful")
        else:
            print_result("Template database", False, "Connection failed (built-in template will be used)")
        return healthy

    except Exception as e:
        print_result("Template database", False, str(e)[:50])
        return False


async def check_redis() -> bool:
    """Verify Redis connection."""
    try:
        from gateway.infra.redis import RedisClient, check_redis_health
        healthy = await check_redis_health()
        await RedisClient.close()

        if healthy is None:
            print_result("Redis", True, "Disabled (REDIS_URL empty, no rate limiting)")
            return True
        if healthy:
            print_result("Redis", True, "Connection successful")
        else:
            print_result("Redis", False, "Connection failed (rate limiting fails open)")
        return healthy

    except Exception as e:
        print_result("Redis", False, str(e)[:50])
        return False


async def main():
    """Run all verification checks."""
    print("\n" + "="*60)
    print(" WhatsApp Notification Gateway - Setup Verification")
    print("="*60)

    critical_failed = False
    all_passed = True

    print_header("Environment File")
    check_env_file()

    print_header("Python Dependencies")
    if not check_dependencies():
        print("\n  Install with: pip install -e .")
        return 1

    print_header("Settings")
    if not check_settings():
        return 1

    print_header("Messaging Session")
    if not check_credentials_dir():
        critical_failed = True
    if not check_handle_factory():
        critical_failed = True

    # Both services degrade gracefully
    print_header("Service Connections")
    if not await check_postgres():
        all_passed = False
    if not await check_redis():
        all_passed = False

    print_header("Summary")

    if critical_failed:
        print("\n  \033[91mCRITICAL: The messaging session cannot be opened.\033[0m")
        print("  Please fix the issues above before running the application.")
        print()
        return 1
    elif not all_passed:
        print("\n  \033[93mWARNING: Some optional checks failed.\033[0m")
        print("  The application may run with limited functionality.")
        print()
        return 0
    else:
        print("\n  \033[92mAll checks passed!\033[0m")
        print("  You can start the application with:")
        print("    uvicorn gateway.main:app --reload --port 3001")
        print()
        return 0


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
