"""
Database Manager for the sniper bot

Handles all sqlite operations: the fill ledger, the token registry used for
duplicate suppression, and operator alerts.
"""

import logging
import sqlite3
from pathlib import Path
from typing import List, Optional, Tuple

from pump_sniper.core.models import Alert, LedgerEntry, Side

logger = logging.getLogger(__name__)

_TXN_COLUMNS = (
    "id, tx_hash, mint, tx_time, token_name, token_symbol, swap, swap_price_usd, "
    "swap_amount, swap_fee_usd, swap_mc_usd, swap_profit_usd, swap_profit_percent_usd, "
    "buy_mc_usd, dex"
)

REGISTRY_SORT_FIELDS = {
    "saved_at": "saved_at",
    "mint": "mint",
    "token_name": "token_name",
    "token_symbol": "token_symbol",
}


class DatabaseManager:
    """
    SQLite database manager for bot data persistence.

    Every call opens its own connection, so the manager can be used from
    worker threads (see TransactionLedger).
    """

    def __init__(self, db_path: str = "sniper.db"):
        """
        Initialize database manager.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        logger.info(f"Database initialized: {db_path}")

    def _init_db(self):
        """Initialize database with schema"""
        schema_path = Path(__file__).parent / "schema.sql"

        if not schema_path.exists():
            logger.error(f"Schema file not found: {schema_path}")
            raise FileNotFoundError(f"Schema file not found: {schema_path}")

        with open(schema_path, 'r') as f:
            schema_sql = f.read()

        with self._connect() as conn:
            conn.executescript(schema_sql)

        logger.info("Database schema created/verified")

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    # =========================================================================
    # Ledger Operations
    # =========================================================================

    def append_txn(self, entry: LedgerEntry) -> int:
        """
        Append a fill to the ledger.

        Returns:
            Row ID
        """
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO sniper_txns (
                    tx_hash, mint, tx_time, token_name, token_symbol, swap,
                    swap_price_usd, swap_amount, swap_fee_usd, swap_mc_usd,
                    swap_profit_usd, swap_profit_percent_usd, buy_mc_usd, dex
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (entry.tx_hash, entry.mint, entry.tx_time, entry.token_name,
                 entry.token_symbol, entry.swap.value, entry.swap_price_usd,
                 entry.swap_amount, entry.swap_fee_usd, entry.swap_mc_usd,
                 entry.swap_profit_usd, entry.swap_profit_percent_usd,
                 entry.buy_mc_usd, entry.dex)
            )
            row_id = cursor.lastrowid

        logger.debug(f"Ledger {entry.swap.value}: {entry.mint[:12]}... amount={entry.swap_amount} (ID: {row_id})")
        return row_id

    def get_txns_by_mint(self, mint: str) -> List[LedgerEntry]:
        """All fills for a token, oldest first"""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_TXN_COLUMNS} FROM sniper_txns WHERE mint = ? ORDER BY tx_time ASC, id ASC",
                (mint,)
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def get_latest_buy(self, mint: str) -> Optional[LedgerEntry]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_TXN_COLUMNS} FROM sniper_txns WHERE mint = ? AND swap = 'BUY' "
                "ORDER BY tx_time DESC, id DESC LIMIT 1",
                (mint,)
            ).fetchone()
        return self._row_to_entry(row) if row else None

    def get_txns(self, mint: Optional[str] = None, limit: int = 500, offset: int = 0) -> List[LedgerEntry]:
        """Recent fills, newest first, optionally for one token"""
        query = f"SELECT {_TXN_COLUMNS} FROM sniper_txns"
        params: list = []
        if mint:
            query += " WHERE mint = ?"
            params.append(mint)
        query += " ORDER BY tx_time DESC, id DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def get_all_txns(self) -> List[LedgerEntry]:
        """Every fill, oldest first"""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_TXN_COLUMNS} FROM sniper_txns ORDER BY tx_time ASC, id ASC"
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> LedgerEntry:
        return LedgerEntry(
            id=row["id"],
            tx_hash=row["tx_hash"],
            mint=row["mint"],
            tx_time=row["tx_time"],
            token_name=row["token_name"] or "",
            token_symbol=row["token_symbol"] or "",
            swap=Side(row["swap"]),
            swap_price_usd=row["swap_price_usd"],
            swap_amount=row["swap_amount"],
            swap_fee_usd=row["swap_fee_usd"] or 0.0,
            swap_mc_usd=row["swap_mc_usd"] or 0.0,
            swap_profit_usd=row["swap_profit_usd"] or 0.0,
            swap_profit_percent_usd=row["swap_profit_percent_usd"] or 0.0,
            buy_mc_usd=row["buy_mc_usd"] or 0.0,
            dex=row["dex"] or "",
        )

    # =========================================================================
    # Token Registry Operations
    # =========================================================================

    def find_token_by_symbol(self, symbol: str) -> Optional[dict]:
        """Most recent registry record with this symbol"""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT mint, token_name, token_symbol, token_image, saved_at FROM token_registry "
                "WHERE token_symbol = ? ORDER BY saved_at DESC LIMIT 1",
                (symbol,)
            ).fetchone()
        return dict(row) if row else None

    def save_token(self, mint: str, symbol: str, saved_at: float, name: str = "", image: str = ""):
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO token_registry (mint, token_name, token_symbol, token_image, saved_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (mint, name, symbol, image, saved_at)
            )

    def touch_token(self, mint: str, saved_at: float):
        with self._connect() as conn:
            conn.execute("UPDATE token_registry SET saved_at = ? WHERE mint = ?", (saved_at, mint))

    def list_tokens(
        self,
        search: str = "",
        start: Optional[float] = None,
        end: Optional[float] = None,
        sort_field: str = "",
        sort_order: str = "desc",
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[int, List[dict]]:
        """Page through the registry. Returns (total matching, page rows)."""
        clauses, params = [], []
        if search:
            clauses.append("token_symbol = ? COLLATE NOCASE")
            params.append(search)
        if start is not None and end is not None:
            clauses.append("saved_at BETWEEN ? AND ?")
            params.extend([start, end])
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        # Only whitelisted column names reach the query
        column = REGISTRY_SORT_FIELDS.get(sort_field, "saved_at")
        direction = "ASC" if sort_order.lower() == "asc" else "DESC"

        with self._connect() as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM token_registry {where}", params).fetchone()[0]
            rows = conn.execute(
                f"SELECT mint, token_name, token_symbol, token_image, saved_at FROM token_registry {where} "
                f"ORDER BY {column} {direction} LIMIT ? OFFSET ?",
                params + [limit, offset]
            ).fetchall()
        return total, [dict(row) for row in rows]

    # =========================================================================
    # Alert Operations
    # =========================================================================

    def create_alert(self, alert: Alert) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO alerts (title, content, link, image_url, created_at, is_read)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (alert.title, alert.content, alert.link, alert.image_url,
                 alert.created_at, int(alert.is_read))
            )
            return cursor.lastrowid

    def get_alerts(self, unread_only: bool = False, limit: int = 100) -> List[Alert]:
        query = "SELECT id, title, content, link, image_url, created_at, is_read FROM alerts"
        if unread_only:
            query += " WHERE is_read = 0"
        query += " ORDER BY created_at DESC, id DESC LIMIT ?"

        with self._connect() as conn:
            rows = conn.execute(query, (limit,)).fetchall()
        return [
            Alert(
                id=row["id"],
                title=row["title"],
                content=row["content"],
                link=row["link"] or "",
                image_url=row["image_url"] or "",
                created_at=row["created_at"],
                is_read=bool(row["is_read"]),
            )
            for row in rows
        ]

    def count_unread_alerts(self) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) AS n FROM alerts WHERE is_read = 0").fetchone()
        return int(row["n"])

    def mark_alert_read(self, alert_id: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("UPDATE alerts SET is_read = 1 WHERE id = ?", (alert_id,))
            return cursor.rowcount > 0

    def mark_all_alerts_read(self) -> int:
        with self._connect() as conn:
            cursor = conn.execute("UPDATE alerts SET is_read = 1 WHERE is_read = 0")
            return cursor.rowcount

    def delete_alert(self, alert_id: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM alerts WHERE id = ?", (alert_id,))
            return cursor.rowcount > 0
