"""
Database connection management.

Provides the Supabase client singleton and the scoped unit-of-work used by
multi-step writes such as the bulk product import.
"""

from supabase import create_client, Client
from functools import lru_cache
from typing import Any, Callable, Optional
import structlog

from config.settings import settings
from exceptions import DatabaseError

logger = structlog.get_logger(__name__)


class ConnectionError(DatabaseError):
    """Failed to connect to database."""

    def __init__(self, message: str):
        super().__init__("connect", message)


@lru_cache()
def get_supabase_client() -> Client:
    """
    Get cached Supabase client instance.

    Uses lru_cache to ensure only one client is created.
    Call get_supabase_client.cache_clear() to reconnect.

    Raises:
        ConnectionError: If connection fails
    """
    try:
        logger.info(
            "connecting_to_supabase",
            url=settings.supabase_url[:30] + "..."  # Log partial URL only
        )

        client = create_client(
            settings.supabase_url,
            settings.supabase_service_key or settings.supabase_key
        )

        logger.info("supabase_connected", status="success")
        return client

    except Exception as e:
        logger.error(
            "supabase_connection_failed",
            error=str(e),
            error_type=type(e).__name__
        )
        raise ConnectionError(f"Failed to connect to Supabase: {e}") from e


# Convenience alias
db = get_supabase_client


class Transaction:
    """
    Handle yielded by DatabaseTransaction.

    PostgREST runs every request in its own transaction, so a multi-step
    write registers a compensating action after each insert. If the scope
    exits with an exception the compensations run newest first.
    """

    def __init__(self, client: Client, operation_name: str):
        self.client = client
        self.operation_name = operation_name
        self._compensations: list[tuple[str, Callable[[], Any]]] = []

    def table(self, name: str):
        return self.client.table(name)

    def on_rollback(self, description: str, action: Callable[[], Any]) -> None:
        """Register an action that undoes a write made inside this scope."""
        self._compensations.append((description, action))

    def rollback(self) -> None:
        while self._compensations:
            description, action = self._compensations.pop()
            try:
                action()
                logger.info(
                    "rollback_step_applied",
                    operation=self.operation_name,
                    step=description
                )
            except Exception as e:
                # Keep undoing the remaining steps; the original error is re-raised by the caller
                logger.error(
                    "rollback_step_failed",
                    operation=self.operation_name,
                    step=description,
                    error=str(e)
                )


class DatabaseTransaction:
    """
    Context manager for a multi-step write.

    Usage:
        with DatabaseTransaction("bulk_upload") as tx:
            tx.table("bulk_upload_batch").insert({...}).execute()
    """

    def __init__(self, operation_name: str, client: Optional[Client] = None):
        self.operation_name = operation_name
        self._client = client
        self.tx: Optional[Transaction] = None

    def __enter__(self) -> Transaction:
        logger.debug("db_transaction_start", operation=self.operation_name)
        self.tx = Transaction(self._client or get_supabase_client(), self.operation_name)
        return self.tx

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type:
            logger.error(
                "db_transaction_failed",
                operation=self.operation_name,
                error=str(exc_val),
                error_type=exc_type.__name__
            )
            self.tx.rollback()
        else:
            logger.debug("db_transaction_complete", operation=self.operation_name)
        return False  # Don't suppress exceptions


# ===================
# HELPER FUNCTIONS
# ===================

def check_connection() -> dict:
    """
    Check database connection health.

    Returns:
        dict: Connection status with details
    """
    try:
        client = get_supabase_client()

        products = client.table("product").select("id", count="exact").execute()
        batches = client.table("bulk_upload_batch").select("id", count="exact").execute()

        return {
            "status": "healthy",
            "products_count": products.count,
            "batches_count": batches.count
        }

    except Exception as e:
        return {
            "status": "unhealthy",
            "error": str(e)
        }


def reset_connection():
    """Reset the cached database connection."""
    get_supabase_client.cache_clear()
    logger.info("database_connection_reset")
