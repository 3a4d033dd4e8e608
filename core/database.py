# database.py
# Responsável pela conexão e operações com o banco de dados SQLite

import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator, List, Optional, Tuple, Union, Mapping

# Parameter type accepted by sqlite3 (positional tuple or named mapping)
Params = Union[Tuple[Any, ...], Mapping[str, Any]]

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL CHECK (length(name) BETWEEN 2 AND 100),
    email TEXT NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    role TEXT NOT NULL DEFAULT 'employee' CHECK (role IN ('admin', 'employee')),
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS products (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL CHECK (length(name) BETWEEN 2 AND 200),
    description TEXT,
    price TEXT NOT NULL CHECK (CAST(price AS REAL) >= 0),
    stock_quantity INTEGER NOT NULL DEFAULT 0 CHECK (stock_quantity >= 0),
    category TEXT,
    sku TEXT UNIQUE,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS orders (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id),
    order_number TEXT NOT NULL UNIQUE,
    total_amount TEXT NOT NULL DEFAULT '0.00' CHECK (CAST(total_amount AS REAL) >= 0),
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'processing', 'completed', 'cancelled', 'refunding', 'refunded')),
    payment_status TEXT NOT NULL DEFAULT 'pending'
        CHECK (payment_status IN ('pending', 'paid', 'failed', 'refunding', 'refunded')),
    shipping_address TEXT,
    notes TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS order_items (
    id TEXT PRIMARY KEY,
    order_id TEXT NOT NULL REFERENCES orders(id),
    product_id TEXT NOT NULL REFERENCES products(id),
    quantity INTEGER NOT NULL CHECK (quantity > 0),
    unit_price TEXT NOT NULL,
    total_price TEXT NOT NULL,
    created_at TEXT NOT NULL,
    UNIQUE (order_id, product_id)
);

CREATE TABLE IF NOT EXISTS payments (
    id TEXT PRIMARY KEY,
    order_id TEXT NOT NULL REFERENCES orders(id),
    user_id TEXT NOT NULL REFERENCES users(id),
    amount TEXT NOT NULL CHECK (CAST(amount AS REAL) BETWEEN 0.01 AND 999999.99),
    payment_method TEXT NOT NULL
        CHECK (payment_method IN ('credit_card', 'debit_card', 'bank_transfer', 'digital_wallet', 'cash')),
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'processing', 'completed', 'failed', 'cancelled', 'refunding', 'refunded')),
    transaction_id TEXT UNIQUE,
    processed_at TEXT,
    transaction_date TEXT NOT NULL,
    refund_reason TEXT,
    refund_requested_at TEXT,
    refunded_at TEXT,
    refund_transaction_id TEXT UNIQUE,
    notes TEXT,
    error_message TEXT,
    retry_count INTEGER NOT NULL DEFAULT 0 CHECK (retry_count BETWEEN 0 AND 10),
    last_retry_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS stock_movements (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    product_id TEXT NOT NULL REFERENCES products(id),
    type TEXT NOT NULL,
    quantity INTEGER NOT NULL,
    reason TEXT,
    order_id TEXT REFERENCES orders(id),
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_orders_user_id ON orders(user_id);
CREATE INDEX IF NOT EXISTS idx_orders_status ON orders(status);
CREATE INDEX IF NOT EXISTS idx_order_items_order_id ON order_items(order_id);
CREATE INDEX IF NOT EXISTS idx_payment_order_id ON payments(order_id);
CREATE INDEX IF NOT EXISTS idx_payment_composite ON payments(user_id, status, created_at);
"""


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    # timespec fixo: as colunas de data são comparadas/ordenadas como texto
    return value.isoformat(timespec='microseconds') if value is not None else None


def from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def new_id() -> str:
    return str(uuid.uuid4())


class Database:
    """
    Acesso ao SQLite.

    Cada chamada abre sua própria conexão: o servidor Flask atende
    requisições em threads diferentes e uma conexão sqlite3 não pode ser
    compartilhada com transações abertas.
    """

    def __init__(self, db_path: str, busy_timeout_ms: int = 5000):
        self.db_path = db_path
        self.busy_timeout_ms = busy_timeout_ms
        self._init_db()

    def connect(self) -> sqlite3.Connection:
        # isolation_level=None: o controle de BEGIN/COMMIT é explícito em transaction()
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout_ms / 1000,
                               isolation_level=None, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        conn.execute("PRAGMA journal_mode=WAL")  # leitores não bloqueiam escritor
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute(f"PRAGMA busy_timeout={int(self.busy_timeout_ms)}")
        return conn

    def _init_db(self):
        conn = self.connect()
        try:
            conn.executescript(SCHEMA)
        finally:
            conn.close()

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Conexão só de leitura (autocommit), sem tomar o lock de escrita"""
        conn = self.connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Abre uma transação com BEGIN IMMEDIATE.

        O lock de escrita é obtido antes da primeira leitura, então duas
        transações concorrentes nunca leem o mesmo estoque para depois
        decrementá-lo. Qualquer exceção faz rollback antes de propagar.
        """
        conn = self.connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.rollback()
                raise
            else:
                conn.commit()
        finally:
            conn.close()

    def execute(self, sql: str, params: Params = ()) -> int:
        """Executa um comando isolado em sua própria transação. Retorna rowcount."""
        with self.transaction() as conn:
            return conn.execute(sql, params).rowcount

    def query(self, sql: str, params: Params = ()) -> List[sqlite3.Row]:
        conn = self.connect()
        try:
            return conn.execute(sql, params).fetchall()
        except sqlite3.DatabaseError as e:
            if "malformed" in str(e).lower() or "corrupt" in str(e).lower():
                raise sqlite3.DatabaseError(f"Banco de dados corrompido: {e}")
            raise
        finally:
            conn.close()

    def query_one(self, sql: str, params: Params = ()) -> Optional[sqlite3.Row]:
        rows = self.query(sql, params)
        return rows[0] if rows else None

    def verify_integrity(self) -> Tuple[bool, str]:
        """Verifica a integridade do banco de dados"""
        try:
            result = self.query_one("PRAGMA quick_check")
            if result and result[0] == "ok":
                return True, "Banco de dados íntegro"
            return False, f"Problemas detectados: {result[0] if result else 'desconhecido'}"
        except sqlite3.Error as e:
            return False, f"Erro ao verificar: {str(e)}"
