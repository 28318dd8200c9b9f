"""
Postcard Service Data Repository

Data access layer - PostgreSQL (asyncpg)
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import asyncpg

from core.config_manager import ConfigManager
from core.postgres_client import PostgresClientWrapper

from .models import (
    Address,
    Campaign,
    CampaignStatus,
    CustomerProfile,
    Recipient,
    RecipientStatus,
    SuppressionListEntry,
    TenantSettings,
    VendorApiLog,
    VendorLogStats,
)
from .protocols import (
    DuplicateSuppressionEntryError,
    DuplicateVendorObjectError,
    RecipientNotFoundError,
)

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

CAMPAIGN_COLUMNS = (
    "campaign_id", "organization_id", "name", "description", "status",
    "recipient_count", "sent_count", "failed_count", "delivered_count",
    "estimated_cost_cents", "actual_cost_cents", "mail_class", "size",
    "suppression_override", "recent_order_suppression_days",
    "recent_mail_suppression_days", "front_pdf_url", "back_pdf_url",
    "template_id", "front_message", "back_message", "merge_variables",
    "template_data", "scheduled_at", "sent_at", "completed_at", "charged_at",
    "created_by", "created_at", "updated_at",
)

RECIPIENT_COLUMNS = (
    "recipient_id", "campaign_id", "organization_id", "profile_id",
    "first_name", "last_name", "company", "address_line1", "address_line2",
    "city", "state", "zip_code", "country", "email", "phone", "metadata",
    "status", "suppressed", "suppression_reason", "vendor_object_id",
    "send_attempts", "estimated_cost_cents", "actual_cost_cents",
    "tracking_url", "expected_delivery_date", "send_error", "vendor_response",
    "delivered_at", "created_at", "updated_at",
)

ADDRESS_FIELDS = ("address_line1", "address_line2", "city", "state", "zip_code", "country")


def _db_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Address):
        return value.model_dump()
    return value


def _row_to_recipient(row: Dict[str, Any]) -> Recipient:
    data = dict(row)
    data["address"] = Address(**{f: data.pop(f) for f in ADDRESS_FIELDS})
    data["metadata"] = data.get("metadata") or {}
    return Recipient(**data)


def _recipient_to_row(recipient: Recipient) -> Dict[str, Any]:
    data = recipient.model_dump(exclude={"address"})
    data.update(recipient.address.model_dump())
    return {k: _db_value(data[k]) for k in RECIPIENT_COLUMNS}


class PostcardRepository:
    """Postcard service data repository - PostgreSQL (asyncpg)"""

    def __init__(
        self,
        config: Optional[ConfigManager] = None,
        db: Optional[PostgresClientWrapper] = None,
    ):
        if config is None:
            config = ConfigManager("postcard_service")
        self.config = config

        self.db = db or PostgresClientWrapper("postcard_service")
        self.schema = "postcard"

        # Table names
        self.campaigns_table = "campaigns"
        self.recipients_table = "recipients"
        self.profiles_table = "customer_profiles"
        self.settings_table = "tenant_settings"
        self.suppression_table = "suppression_entries"
        self.vendor_logs_table = "vendor_api_logs"

    def _t(self, table: str) -> str:
        return f"{self.schema}.{table}"

    async def initialize(self, run_migrations: bool = False):
        """Initialize database connection"""
        await self.db.connect()
        if run_migrations:
            await self.apply_migrations()
        logger.info("Postcard repository initialized with PostgreSQL")

    async def apply_migrations(self) -> None:
        for path in sorted(MIGRATIONS_DIR.glob("*.sql")):
            logger.info(f"Applying migration {path.name}")
            async with self.db.transaction() as conn:
                await conn.execute(path.read_text())

    async def close(self):
        """Close database connection"""
        await self.db.close()
        logger.info("Postcard repository database connection closed")

    async def health_check(self) -> bool:
        """Check repository health"""
        try:
            return await self.db.health_check()
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return False

    @staticmethod
    def _set_clause(updates: Dict[str, Any], start: int = 1) -> Tuple[str, List[Any]]:
        """Build "col = $n" pairs; an Address value expands into its columns"""
        assignments: List[str] = []
        params: List[Any] = []
        expanded: Dict[str, Any] = {}
        for key, value in updates.items():
            if key == "address" and isinstance(value, Address):
                expanded.update(value.model_dump())
            else:
                expanded[key] = value
        for i, (key, value) in enumerate(expanded.items(), start=start):
            assignments.append(f"{key} = ${i}")
            params.append(_db_value(value))
        return ", ".join(assignments), params

    # ====================
    # Campaigns
    # ====================

    async def save_campaign(self, campaign: Campaign) -> Campaign:
        """Insert or replace a campaign"""
        try:
            data = campaign.model_dump()
            values = [_db_value(data[c]) for c in CAMPAIGN_COLUMNS]
            placeholders = ", ".join(f"${i}" for i in range(1, len(values) + 1))
            updates = ", ".join(
                f"{c} = EXCLUDED.{c}" for c in CAMPAIGN_COLUMNS
                if c not in ("campaign_id", "created_at")
            )
            query = f'''
                INSERT INTO {self._t(self.campaigns_table)} ({", ".join(CAMPAIGN_COLUMNS)})
                VALUES ({placeholders})
                ON CONFLICT (campaign_id) DO UPDATE SET {updates}
                RETURNING *
            '''
            async with self.db:
                row = await self.db.query_row(query, values)
            return Campaign(**row)
        except Exception as e:
            logger.error(f"Error saving campaign {campaign.campaign_id}: {e}")
            raise

    async def get_campaign(
        self, campaign_id: str, organization_id: Optional[str] = None
    ) -> Optional[Campaign]:
        query = f"SELECT * FROM {self._t(self.campaigns_table)} WHERE campaign_id = $1"
        params: List[Any] = [campaign_id]
        if organization_id:
            query += " AND organization_id = $2"
            params.append(organization_id)
        async with self.db:
            row = await self.db.query_row(query, params)
        return Campaign(**row) if row else None

    async def list_campaigns(
        self,
        organization_id: str,
        status: Optional[List[CampaignStatus]] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[Campaign], int]:
        conditions = ["organization_id = $1"]
        params: List[Any] = [organization_id]
        if status:
            params.append([s.value for s in status])
            conditions.append(f"status = ANY(${len(params)}::text[])")
        where = " AND ".join(conditions)

        async with self.db:
            total = await self.db.query_value(
                f"SELECT COUNT(*) FROM {self._t(self.campaigns_table)} WHERE {where}", params
            )
            rows = await self.db.query(
                f'''
                SELECT * FROM {self._t(self.campaigns_table)}
                WHERE {where}
                ORDER BY created_at DESC
                LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
                ''',
                params + [limit, offset],
            )
        return [Campaign(**r) for r in rows], int(total or 0)

    async def update_campaign(
        self, campaign_id: str, updates: Dict[str, Any]
    ) -> Optional[Campaign]:
        try:
            updates = {**updates, "updated_at": datetime.now(timezone.utc)}
            set_clause, params = self._set_clause(updates)
            params.append(campaign_id)
            query = f'''
                UPDATE {self._t(self.campaigns_table)}
                SET {set_clause}
                WHERE campaign_id = ${len(params)}
                RETURNING *
            '''
            async with self.db:
                row = await self.db.query_row(query, params)
            return Campaign(**row) if row else None
        except Exception as e:
            logger.error(f"Error updating campaign {campaign_id}: {e}")
            raise

    async def update_campaign_status(
        self,
        campaign_id: str,
        expected: Iterable[CampaignStatus],
        status: CampaignStatus,
        updates: Optional[Dict[str, Any]] = None,
    ) -> Optional[Campaign]:
        """Compare-and-set status change; None when the current status was not expected"""
        fields = {**(updates or {}), "status": status, "updated_at": datetime.now(timezone.utc)}
        set_clause, params = self._set_clause(fields)
        params.append(campaign_id)
        params.append([s.value for s in expected])
        query = f'''
            UPDATE {self._t(self.campaigns_table)}
            SET {set_clause}
            WHERE campaign_id = ${len(params) - 1} AND status = ANY(${len(params)}::text[])
            RETURNING *
        '''
        async with self.db:
            row = await self.db.query_row(query, params)
        return Campaign(**row) if row else None

    async def mark_campaign_charged(self, campaign_id: str, charged_at: datetime) -> bool:
        query = f'''
            UPDATE {self._t(self.campaigns_table)}
            SET charged_at = $1, updated_at = $1
            WHERE campaign_id = $2 AND charged_at IS NULL
        '''
        async with self.db:
            count = await self.db.execute(query, [charged_at, campaign_id])
        return count == 1

    async def delete_campaign(self, campaign_id: str) -> bool:
        async with self.db:
            count = await self.db.execute(
                f"DELETE FROM {self._t(self.campaigns_table)} WHERE campaign_id = $1",
                [campaign_id],
            )
        return count > 0

    # ====================
    # Recipients
    # ====================

    async def save_recipient(self, recipient: Recipient) -> Recipient:
        try:
            data = _recipient_to_row(recipient)
            values = list(data.values())
            placeholders = ", ".join(f"${i}" for i in range(1, len(values) + 1))
            query = f'''
                INSERT INTO {self._t(self.recipients_table)} ({", ".join(data.keys())})
                VALUES ({placeholders})
                RETURNING *
            '''
            async with self.db:
                row = await self.db.query_row(query, values)
            return _row_to_recipient(row)
        except Exception as e:
            logger.error(f"Error saving recipient {recipient.recipient_id}: {e}")
            raise

    async def get_recipient(
        self, recipient_id: str, organization_id: Optional[str] = None
    ) -> Optional[Recipient]:
        query = f"SELECT * FROM {self._t(self.recipients_table)} WHERE recipient_id = $1"
        params: List[Any] = [recipient_id]
        if organization_id:
            query += " AND organization_id = $2"
            params.append(organization_id)
        async with self.db:
            row = await self.db.query_row(query, params)
        return _row_to_recipient(row) if row else None

    async def list_recipients(
        self,
        campaign_id: str,
        status: Optional[List[RecipientStatus]] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Tuple[List[Recipient], int]:
        conditions = ["campaign_id = $1"]
        params: List[Any] = [campaign_id]
        if status:
            params.append([s.value for s in status])
            conditions.append(f"status = ANY(${len(params)}::text[])")
        where = " AND ".join(conditions)

        async with self.db:
            total = await self.db.query_value(
                f"SELECT COUNT(*) FROM {self._t(self.recipients_table)} WHERE {where}", params
            )
            rows = await self.db.query(
                f'''
                SELECT * FROM {self._t(self.recipients_table)}
                WHERE {where}
                ORDER BY created_at, recipient_id
                LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
                ''',
                params + [limit, offset],
            )
        return [_row_to_recipient(r) for r in rows], int(total or 0)

    async def list_sendable_recipients(
        self, campaign_id: str, include_suppressed: bool = False
    ) -> List[Recipient]:
        query = f'''
            SELECT * FROM {self._t(self.recipients_table)}
            WHERE campaign_id = $1 AND status = 'pending' AND ($2 OR NOT suppressed)
            ORDER BY created_at, recipient_id
        '''
        async with self.db:
            rows = await self.db.query(query, [campaign_id, include_suppressed])
        return [_row_to_recipient(r) for r in rows]

    async def list_reconcilable_recipients(
        self, limit: int = 500, after: Optional[Tuple[datetime, str]] = None
    ) -> List[Recipient]:
        """One page in (created_at, recipient_id) order, strictly after the cursor"""
        params: List[Any] = [limit]
        cursor = ""
        if after is not None:
            cursor = "AND (created_at, recipient_id) > ($2, $3)"
            params.extend(after)
        query = f'''
            SELECT * FROM {self._t(self.recipients_table)}
            WHERE status IN ('sent', 'in_transit') AND vendor_object_id IS NOT NULL
            {cursor}
            ORDER BY created_at, recipient_id
            LIMIT $1
        '''
        async with self.db:
            rows = await self.db.query(query, params)
        return [_row_to_recipient(r) for r in rows]

    async def update_recipient(
        self, recipient_id: str, updates: Dict[str, Any]
    ) -> Optional[Recipient]:
        try:
            updates = {**updates, "updated_at": datetime.now(timezone.utc)}
            set_clause, params = self._set_clause(updates)
            params.append(recipient_id)
            query = f'''
                UPDATE {self._t(self.recipients_table)}
                SET {set_clause}
                WHERE recipient_id = ${len(params)}
                RETURNING *
            '''
            async with self.db:
                row = await self.db.query_row(query, params)
            return _row_to_recipient(row) if row else None
        except Exception as e:
            logger.error(f"Error updating recipient {recipient_id}: {e}")
            raise

    async def assign_vendor_object_id(
        self, recipient_id: str, vendor_object_id: str, updates: Dict[str, Any]
    ) -> Recipient:
        """
        Write-once vendor id assignment.

        Rejected when the recipient already holds a vendor id or when another
        recipient already owns this one (unique constraint).
        """
        fields = {
            **updates,
            "vendor_object_id": vendor_object_id,
            "updated_at": datetime.now(timezone.utc),
        }
        set_clause, params = self._set_clause(fields)
        params.append(recipient_id)
        query = f'''
            UPDATE {self._t(self.recipients_table)}
            SET {set_clause}
            WHERE recipient_id = ${len(params)} AND vendor_object_id IS NULL
            RETURNING *
        '''
        try:
            async with self.db:
                row = await self.db.query_row(query, params)
        except asyncpg.UniqueViolationError as e:
            raise DuplicateVendorObjectError(
                f"Vendor object {vendor_object_id} is already assigned to another recipient",
                recipient_id=recipient_id,
                vendor_object_id=vendor_object_id,
            ) from e

        if row:
            return _row_to_recipient(row)

        existing = await self.get_recipient(recipient_id)
        if existing is None:
            raise RecipientNotFoundError(f"Recipient not found: {recipient_id}")
        raise DuplicateVendorObjectError(
            f"Recipient {recipient_id} already holds vendor object {existing.vendor_object_id}",
            recipient_id=recipient_id,
            vendor_object_id=vendor_object_id,
        )

    async def delete_recipient(self, recipient_id: str) -> bool:
        async with self.db:
            count = await self.db.execute(
                f"DELETE FROM {self._t(self.recipients_table)} WHERE recipient_id = $1",
                [recipient_id],
            )
        return count > 0

    async def count_recipients_by_status(self, campaign_id: str) -> Dict[RecipientStatus, int]:
        query = f'''
            SELECT status, COUNT(*) AS count
            FROM {self._t(self.recipients_table)}
            WHERE campaign_id = $1
            GROUP BY status
        '''
        async with self.db:
            rows = await self.db.query(query, [campaign_id])
        return {RecipientStatus(r["status"]): int(r["count"]) for r in rows}

    async def sum_recipient_cost(
        self, campaign_id: str, statuses: Iterable[RecipientStatus]
    ) -> int:
        query = f'''
            SELECT COALESCE(SUM(actual_cost_cents), 0)
            FROM {self._t(self.recipients_table)}
            WHERE campaign_id = $1 AND status = ANY($2::text[])
        '''
        async with self.db:
            total = await self.db.query_value(query, [campaign_id, [s.value for s in statuses]])
        return int(total or 0)

    async def set_recipient_estimates(self, campaign_id: str, unit_cost_cents: int) -> int:
        query = f'''
            UPDATE {self._t(self.recipients_table)}
            SET estimated_cost_cents = $1
            WHERE campaign_id = $2
        '''
        async with self.db:
            return await self.db.execute(query, [unit_cost_cents, campaign_id])

    # ====================
    # Customer profiles
    # ====================

    async def get_profiles(
        self, organization_id: str, profile_ids: List[str]
    ) -> List[CustomerProfile]:
        if not profile_ids:
            return []
        query = f'''
            SELECT * FROM {self._t(self.profiles_table)}
            WHERE organization_id = $1 AND profile_id = ANY($2::text[])
        '''
        async with self.db:
            rows = await self.db.query(query, [organization_id, profile_ids])
        return [CustomerProfile(**r) for r in rows]

    async def touch_profile_mailed(self, profile_id: str, mailed_at: datetime) -> None:
        query = f'''
            UPDATE {self._t(self.profiles_table)}
            SET last_mailed_at = $1
            WHERE profile_id = $2
        '''
        async with self.db:
            await self.db.execute(query, [mailed_at, profile_id])

    # ====================
    # Tenant settings
    # ====================

    async def get_tenant_settings(self, organization_id: str) -> Optional[TenantSettings]:
        async with self.db:
            row = await self.db.query_row(
                f"SELECT * FROM {self._t(self.settings_table)} WHERE organization_id = $1",
                [organization_id],
            )
        return TenantSettings(**row) if row else None

    async def save_tenant_settings(self, settings: TenantSettings) -> TenantSettings:
        query = f'''
            INSERT INTO {self._t(self.settings_table)} (
                organization_id, return_name, return_address,
                recent_order_suppression_days, recent_mail_suppression_days,
                dnm_enabled, updated_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7)
            ON CONFLICT (organization_id) DO UPDATE SET
                return_name = EXCLUDED.return_name,
                return_address = EXCLUDED.return_address,
                recent_order_suppression_days = EXCLUDED.recent_order_suppression_days,
                recent_mail_suppression_days = EXCLUDED.recent_mail_suppression_days,
                dnm_enabled = EXCLUDED.dnm_enabled,
                updated_at = EXCLUDED.updated_at
            RETURNING *
        '''
        params = [
            settings.organization_id,
            settings.return_name,
            _db_value(settings.return_address),
            settings.recent_order_suppression_days,
            settings.recent_mail_suppression_days,
            settings.dnm_enabled,
            datetime.now(timezone.utc),
        ]
        async with self.db:
            row = await self.db.query_row(query, params)
        return TenantSettings(**row)

    # ====================
    # Suppression list
    # ====================

    async def save_suppression_entry(self, entry: SuppressionListEntry) -> SuppressionListEntry:
        query = f'''
            INSERT INTO {self._t(self.suppression_table)} (
                entry_id, organization_id, email, address_line1, city, state,
                zip_code, address_key, reason, created_by, created_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
            RETURNING *
        '''
        params = [
            entry.entry_id, entry.organization_id, entry.email, entry.address_line1,
            entry.city, entry.state, entry.zip_code, entry.address_key, entry.reason,
            entry.created_by, entry.created_at,
        ]
        try:
            async with self.db:
                row = await self.db.query_row(query, params)
        except asyncpg.UniqueViolationError as e:
            raise DuplicateSuppressionEntryError(
                "An entry with this email or address is already on the suppression list"
            ) from e
        row.pop("address_key", None)
        return SuppressionListEntry(**row)

    async def list_suppression_entries(
        self, organization_id: str, limit: int = 100, offset: int = 0
    ) -> Tuple[List[SuppressionListEntry], int]:
        async with self.db:
            total = await self.db.query_value(
                f"SELECT COUNT(*) FROM {self._t(self.suppression_table)} WHERE organization_id = $1",
                [organization_id],
            )
            rows = await self.db.query(
                f'''
                SELECT * FROM {self._t(self.suppression_table)}
                WHERE organization_id = $1
                ORDER BY created_at DESC
                LIMIT $2 OFFSET $3
                ''',
                [organization_id, limit, offset],
            )
        entries = []
        for row in rows:
            row.pop("address_key", None)
            entries.append(SuppressionListEntry(**row))
        return entries, int(total or 0)

    async def find_suppression_matches(
        self,
        organization_id: str,
        email: Optional[str] = None,
        address_key: Optional[str] = None,
    ) -> List[SuppressionListEntry]:
        if not email and not address_key:
            return []
        query = f'''
            SELECT * FROM {self._t(self.suppression_table)}
            WHERE organization_id = $1
              AND ((email IS NOT NULL AND email = $2)
                   OR (address_key IS NOT NULL AND address_key = $3))
            ORDER BY created_at
        '''
        async with self.db:
            rows = await self.db.query(query, [organization_id, email, address_key])
        entries = []
        for row in rows:
            row.pop("address_key", None)
            entries.append(SuppressionListEntry(**row))
        return entries

    async def delete_suppression_entry(self, organization_id: str, entry_id: str) -> bool:
        async with self.db:
            count = await self.db.execute(
                f"DELETE FROM {self._t(self.suppression_table)} WHERE organization_id = $1 AND entry_id = $2",
                [organization_id, entry_id],
            )
        return count > 0

    # ====================
    # Vendor audit log
    # ====================

    async def save_vendor_log(self, log: VendorApiLog) -> VendorApiLog:
        query = f'''
            INSERT INTO {self._t(self.vendor_logs_table)} (
                log_id, organization_id, campaign_id, endpoint, method,
                request_body, response_body, status_code, success, error_message,
                duration_ms, cost_cents, vendor_object_id, vendor_object_type, created_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15)
        '''
        params = [
            log.log_id, log.organization_id, log.campaign_id, log.endpoint, log.method,
            log.request_body, log.response_body, log.status_code, log.success,
            log.error_message, log.duration_ms, log.cost_cents, log.vendor_object_id,
            _db_value(log.vendor_object_type), log.created_at,
        ]
        async with self.db:
            await self.db.execute(query, params)
        return log

    async def list_vendor_logs(
        self,
        organization_id: Optional[str] = None,
        campaign_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[VendorApiLog]:
        conditions: List[str] = []
        params: List[Any] = []
        if organization_id:
            params.append(organization_id)
            conditions.append(f"organization_id = ${len(params)}")
        if campaign_id:
            params.append(campaign_id)
            conditions.append(f"campaign_id = ${len(params)}")
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        query = f'''
            SELECT * FROM {self._t(self.vendor_logs_table)}
            {where}
            ORDER BY created_at DESC
            LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
        '''
        async with self.db:
            rows = await self.db.query(query, params + [limit, offset])
        return [VendorApiLog(**r) for r in rows]

    async def get_vendor_log_stats(
        self, organization_id: Optional[str] = None
    ) -> VendorLogStats:
        where = "WHERE organization_id = $1" if organization_id else ""
        params = [organization_id] if organization_id else []
        query = f'''
            SELECT
                COUNT(*) AS total_calls,
                COUNT(*) FILTER (WHERE success) AS successful_calls,
                COALESCE(SUM(cost_cents) FILTER (WHERE success), 0) AS total_cost_cents,
                COALESCE(AVG(duration_ms), 0) AS average_duration_ms
            FROM {self._t(self.vendor_logs_table)}
            {where}
        '''
        async with self.db:
            row = await self.db.query_row(query, params)
        total = int(row["total_calls"] or 0)
        successful = int(row["successful_calls"] or 0)
        return VendorLogStats(
            total_calls=total,
            successful_calls=successful,
            failed_calls=total - successful,
            success_rate=round(successful / total * 100, 2) if total else 0.0,
            total_cost_cents=int(row["total_cost_cents"] or 0),
            average_duration_ms=round(float(row["average_duration_ms"] or 0), 2),
        )


__all__ = ["PostcardRepository"]
