"""SQLite balance history log with persistent connection"""

from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite

from wallet_monitor.core.logger import logger, short_address
from wallet_monitor.core.models import HistoryRecord


def _prefix_pattern(address: str) -> str:
    """LIKE pattern matching every record key of one wallet"""
    escaped = address.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"{escaped}\\_%"


def _row_to_record(row) -> HistoryRecord:
    return HistoryRecord(
        timestamp=datetime.fromtimestamp(row["timestamp"], tz=timezone.utc),
        address=row["address"],
        sol_balance=row["sol_balance"],
        wsol_balance=row["wsol_balance"],
        total_balance=row["total_balance"],
    )


class HistoryLog:
    """Append-only store of balance records for all wallets.

    Records are keyed by "<address>_<timestamp ms>". Per-wallet reads match on
    that key prefix and sort by timestamp in memory. Failures are logged and
    swallowed: in-memory state stays authoritative.
    """

    def __init__(self, db_path: str = "wallet_history.db"):
        self.db_path = db_path
        self._connection: aiosqlite.Connection | None = None

    async def _get_db(self) -> aiosqlite.Connection:
        """Get or create a persistent database connection"""
        if self._connection is None:
            if self.db_path != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            self._connection = await aiosqlite.connect(self.db_path)
            self._connection.row_factory = aiosqlite.Row
            await self._connection.execute("PRAGMA journal_mode=WAL")
            await self._connection.execute("PRAGMA synchronous=NORMAL")
            logger.debug("Database connection established")
        return self._connection

    async def close(self):
        """Close the persistent connection"""
        if self._connection:
            await self._connection.close()
            self._connection = None
            logger.debug("Database connection closed")

    async def init_db(self):
        """Initialize database schema"""
        db = await self._get_db()

        await db.execute("""
            CREATE TABLE IF NOT EXISTS wallet_history (
                record_key TEXT PRIMARY KEY,
                address TEXT NOT NULL,
                timestamp REAL NOT NULL,
                sol_balance REAL NOT NULL,
                wsol_balance REAL NOT NULL,
                total_balance REAL NOT NULL
            )
        """)

        await db.commit()
        logger.info(f"History database initialized: {self.db_path}")

    async def append(self, record: HistoryRecord) -> bool:
        """Write one record. Returns False (and logs) on failure."""
        try:
            db = await self._get_db()
            await db.execute(
                """INSERT OR REPLACE INTO wallet_history
                   (record_key, address, timestamp, sol_balance, wsol_balance, total_balance)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    record.key,
                    record.address,
                    record.timestamp.timestamp(),
                    record.sol_balance,
                    record.wsol_balance,
                    record.total_balance,
                ),
            )
            await db.commit()
            return True
        except aiosqlite.Error as e:
            logger.warning(f"Failed to save history record for {short_address(record.address)}: {e}")
            return False

    async def load_for_wallet(self, address: str) -> list[HistoryRecord]:
        """All records of one wallet, oldest first"""
        try:
            db = await self._get_db()
            cursor = await db.execute(
                "SELECT * FROM wallet_history WHERE record_key LIKE ? ESCAPE '\\'",
                (_prefix_pattern(address),),
            )
            rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            logger.warning(f"Failed to load history for {short_address(address)}: {e}")
            return []

        records = [_row_to_record(row) for row in rows]
        records.sort(key=lambda r: r.timestamp)
        return records

    async def load_all(self) -> dict[str, list[HistoryRecord]]:
        """Records of every wallet, grouped by address, each list oldest first"""
        try:
            db = await self._get_db()
            cursor = await db.execute("SELECT * FROM wallet_history")
            rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            logger.warning(f"Failed to load history, starting empty: {e}")
            return {}

        grouped: dict[str, list[HistoryRecord]] = defaultdict(list)
        for row in rows:
            record = _row_to_record(row)
            grouped[record.address].append(record)

        for records in grouped.values():
            records.sort(key=lambda r: r.timestamp)

        logger.info(f"Loaded history for {len(grouped)} wallets")
        return dict(grouped)

    async def delete_for_wallet(self, address: str) -> bool:
        """Drop every record of one wallet. A wallet without records is fine."""
        try:
            db = await self._get_db()
            cursor = await db.execute(
                "DELETE FROM wallet_history WHERE record_key LIKE ? ESCAPE '\\'",
                (_prefix_pattern(address),),
            )
            await db.commit()
        except aiosqlite.Error as e:
            logger.warning(f"Failed to delete history for {short_address(address)}: {e}")
            return False

        logger.info(f"Deleted {cursor.rowcount} history records of {short_address(address)}")
        return True

    async def count(self, address: str | None = None) -> int:
        """Number of records, of one wallet or overall. 0 on failure."""
        try:
            db = await self._get_db()
            if address is None:
                cursor = await db.execute("SELECT COUNT(*) FROM wallet_history")
            else:
                cursor = await db.execute(
                    "SELECT COUNT(*) FROM wallet_history WHERE record_key LIKE ? ESCAPE '\\'",
                    (_prefix_pattern(address),),
                )
            result = await cursor.fetchone()
        except aiosqlite.Error as e:
            logger.warning(f"Failed to count history records: {e}")
            return 0
        return result[0]
