"""
Tenant store.

Tenants are managed outside the sync pipeline (admin CLI); the pipeline
only reads them for correlation and for the per-tenant API syncs.
"""

import psycopg

from campaign_sync.core.models import Tenant
from campaign_sync.observability.logger import get_logger
from campaign_sync.warehouse.connection import DatabaseConnectionPool

logger = get_logger(__name__)


class TenantStore:
    """Reads and registers tenants."""

    def __init__(self, pool: DatabaseConnectionPool):
        self.pool = pool

    def list_tenants(self, active_only: bool = True) -> list[Tenant]:
        """
        List tenants ordered by id.

        Args:
            active_only: Skip inactive tenants

        Returns:
            List of Tenant models
        """
        query = "SELECT tenant_id, name, is_active, created_at FROM tenant"
        if active_only:
            query += " WHERE is_active = TRUE"
        query += " ORDER BY tenant_id"

        return [Tenant(**row) for row in self.pool.execute_query(query)]

    def get_tenant(self, tenant_id: int) -> Tenant | None:
        rows = self.pool.execute_query(
            "SELECT tenant_id, name, is_active, created_at FROM tenant WHERE tenant_id = %s",
            (tenant_id,),
        )
        return Tenant(**rows[0]) if rows else None

    def add_tenant(self, name: str, is_active: bool = True) -> Tenant:
        """
        Register a tenant, or return the existing one with the same name.

        Names are unique case-insensitively and trimmed.

        Raises:
            ValueError: If the name is blank
            psycopg.DatabaseError: If the insert fails
        """
        clean_name = name.strip()
        if not clean_name:
            raise ValueError("Tenant name cannot be empty")

        try:
            row = self.pool.execute_returning(
                """
                INSERT INTO tenant (name, is_active)
                VALUES (%s, %s)
                ON CONFLICT ((LOWER(TRIM(name)))) DO NOTHING
                RETURNING tenant_id, name, is_active, created_at
                """,
                (clean_name, is_active),
            )
            if row is None:
                rows = self.pool.execute_query(
                    "SELECT tenant_id, name, is_active, created_at FROM tenant "
                    "WHERE LOWER(TRIM(name)) = LOWER(TRIM(%s))",
                    (clean_name,),
                )
                row = rows[0]
                logger.info(f"Tenant already registered: {row['tenant_id']} ({row['name']})")
            else:
                logger.info(f"Registered tenant {row['tenant_id']} ({row['name']})")
            return Tenant(**row)

        except psycopg.DatabaseError as e:
            logger.error(f"Failed to register tenant {clean_name!r}: {e}")
            raise

    def set_active(self, tenant_id: int, is_active: bool) -> bool:
        """Activate or deactivate a tenant. Returns False when it does not exist."""
        return self.pool.execute_command(
            "UPDATE tenant SET is_active = %s WHERE tenant_id = %s",
            (is_active, tenant_id),
        ) == 1
