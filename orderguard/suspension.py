# suspended assets - users, cards, ips and emails that failed fraud protection
# records are unique per (type, fingerprint) and writes are idempotent

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional, Tuple

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert

from db.models import AssetType, SuspendedAsset, db
from orderguard.errors import AssetSuspended

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SuspensionRecord:
    asset_type: AssetType
    fingerprint: str
    reason: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)


class SuspendedAssetStore:
    """interface shared by the sql and in-memory stores"""

    async def exists(self, asset_type: AssetType, fingerprint: str) -> bool:
        raise NotImplementedError

    async def get(self, asset_type: AssetType, fingerprint: str) -> Optional[SuspensionRecord]:
        raise NotImplementedError

    async def create(self, asset_type: AssetType, fingerprint: str, reason: str = None) -> None:
        raise NotImplementedError

    async def delete(self, asset_type: AssetType, fingerprint: str) -> bool:
        raise NotImplementedError

    async def assert_not_suspended(self, asset_type: AssetType, fingerprint: str) -> None:
        """raise AssetSuspended if the asset already has a suspension record"""
        if await self.exists(asset_type, fingerprint):
            asset_type = AssetType(asset_type)
            raise AssetSuspended(
                f"Fraud: {asset_type.value} {fingerprint} is suspended",
                {'asset_type': asset_type.value, 'fingerprint': fingerprint},
            )


def build_suspension_insert(asset_type: AssetType, fingerprint: str, reason: str = None):
    """insert that silently does nothing when the (type, fingerprint) pair already exists"""
    return (
        insert(SuspendedAsset)
        .values(type=AssetType(asset_type).value, fingerprint=fingerprint, reason=reason, created_at=datetime.now())
        .on_conflict_do_nothing(index_elements=['type', 'fingerprint'])
    )


class SqlSuspendedAssetStore(SuspendedAssetStore):
    """suspended_assets table in postgres"""

    def __init__(self, database=db):
        self.db = database

    def _where(self, asset_type, fingerprint):
        return (
            SuspendedAsset.type == AssetType(asset_type).value,
            SuspendedAsset.fingerprint == fingerprint,
        )

    async def exists(self, asset_type, fingerprint):
        async with self.db.async_session() as session:
            query = select(SuspendedAsset.id).where(*self._where(asset_type, fingerprint)).limit(1)
            return (await session.execute(query)).scalar() is not None

    async def get(self, asset_type, fingerprint):
        async with self.db.async_session() as session:
            query = select(SuspendedAsset).where(*self._where(asset_type, fingerprint))
            row = (await session.execute(query)).scalar_one_or_none()
        if row is None:
            return None
        return SuspensionRecord(AssetType(row.type), row.fingerprint, row.reason, row.created_at)

    async def create(self, asset_type, fingerprint, reason=None):
        async with self.db.async_session() as session:
            await session.execute(build_suspension_insert(asset_type, fingerprint, reason))
            await session.commit()
        logger.info("suspended %s %s", AssetType(asset_type).value, fingerprint)

    async def delete(self, asset_type, fingerprint):
        async with self.db.async_session() as session:
            result = await session.execute(delete(SuspendedAsset).where(*self._where(asset_type, fingerprint)))
            await session.commit()
        return result.rowcount > 0


class InMemorySuspendedAssetStore(SuspendedAssetStore):
    """dict backed store, first write wins like ON CONFLICT DO NOTHING"""

    def __init__(self):
        self.records: Dict[Tuple[AssetType, str], SuspensionRecord] = {}

    def _key(self, asset_type, fingerprint):
        return (AssetType(asset_type), fingerprint)

    async def exists(self, asset_type, fingerprint):
        return self._key(asset_type, fingerprint) in self.records

    async def get(self, asset_type, fingerprint):
        return self.records.get(self._key(asset_type, fingerprint))

    async def create(self, asset_type, fingerprint, reason=None):
        key = self._key(asset_type, fingerprint)
        self.records.setdefault(key, SuspensionRecord(key[0], fingerprint, reason))

    async def delete(self, asset_type, fingerprint):
        return self.records.pop(self._key(asset_type, fingerprint), None) is not None
