"""
Health checks for the storefront's local database and backend.
"""

import logging
from typing import Optional

from ..api.backend_client import BackendClient
from ..core.db import get_db_connection, STORAGE_TABLES

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger(__name__)


def check_database(db_path: Optional[str] = None) -> bool:
    """Check that the local storage tables exist and are readable."""
    try:
        conn = get_db_connection(db_path)
        try:
            for table in STORAGE_TABLES:
                count = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
                logger.info(f"✅ Database OK: {table} holds {count} records")
        finally:
            conn.close()
        return True
    except Exception as e:
        logger.error(f"❌ Database failed: {e}")
        return False


def check_backend(client: Optional[BackendClient] = None) -> bool:
    """Check backend connectivity."""
    client = client or BackendClient()
    if client.health():
        logger.info("✅ Backend OK")
        return True
    logger.error(f"❌ Backend not reachable at {client.base_url}")
    return False


def health_check(db_path: Optional[str] = None, client: Optional[BackendClient] = None) -> dict:
    """Run all health checks."""
    checks = {
        "Database": check_database(db_path),
        "Backend": check_backend(client),
    }

    for name, result in checks.items():
        status = "✅ PASS" if result else "❌ FAIL"
        logger.info(f"[HEALTH] {name}: {status}")

    return checks


if __name__ == "__main__":
    health_check()
