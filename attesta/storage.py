"""
Attesta Account Storage

The engine never owns storage. It reads and writes fixed-size,
byte-addressed regions through an AccountStore:

    allocate(address, size)   reserve a region
    load(address)             bytes last saved to the region
    save(address, data)       overwrite; data must fit the region

Account records carry the b"ATTESTA\\x00" discriminator; registry records
carry b"ATTMPK\\x00\\x00". Addresses are derived from the owner identity
and a seed (typically the credential id).
"""

import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

from .account import Account
from .config import store_path
from .errors import ErrorCode, FormatError
from .hashing import sha256_digest, short_hex
from .registry import MultiCredentialRegistry

logger = logging.getLogger(__name__)

ADDRESS_PREFIX = b"attesta"
REGISTRY_ADDRESS_PREFIX = b"attesta-registry"

# Fits a 255-byte credential id and a 1 KiB policy record.
DEFAULT_ACCOUNT_SPACE = 1536
DEFAULT_REGISTRY_SPACE = 4096


def derive_account_address(owner: bytes, seed: bytes) -> bytes:
    """address = SHA-256(b"attesta" || owner || seed)"""
    return sha256_digest(ADDRESS_PREFIX + bytes(owner) + bytes(seed))


def derive_registry_address(account_address: bytes) -> bytes:
    return sha256_digest(REGISTRY_ADDRESS_PREFIX + bytes(account_address))


class AccountStore(ABC):
    """
    Byte-addressed region store.

    Implementations must make save() atomic per region: a reader sees
    either the old record or the new one.
    """

    @abstractmethod
    def allocate(self, address: bytes, size: int) -> None:
        """Reserve ``size`` bytes at ``address``. Fails if already allocated."""
        pass

    @abstractmethod
    def exists(self, address: bytes) -> bool:
        pass

    @abstractmethod
    def load(self, address: bytes) -> bytes:
        """Bytes last saved at ``address``; empty if never written."""
        pass

    @abstractmethod
    def save(self, address: bytes, data: bytes) -> None:
        pass


class InMemoryAccountStore(AccountStore):
    """
    In-memory region store for development and tests.

    WARNING: Not persistent across restarts.
    """

    def __init__(self):
        self._regions: Dict[bytes, Tuple[int, bytes]] = {}
        self._lock = threading.Lock()

    def allocate(self, address: bytes, size: int) -> None:
        with self._lock:
            if address in self._regions:
                raise FormatError(ErrorCode.INVALID_ACCOUNT_DATA, "region already allocated")
            self._regions[address] = (size, b"")

    def exists(self, address: bytes) -> bool:
        with self._lock:
            return address in self._regions

    def load(self, address: bytes) -> bytes:
        with self._lock:
            if address not in self._regions:
                raise FormatError(ErrorCode.INVALID_ACCOUNT_DATA, "no region at address")
            return self._regions[address][1]

    def save(self, address: bytes, data: bytes) -> None:
        with self._lock:
            if address not in self._regions:
                raise FormatError(ErrorCode.INVALID_ACCOUNT_DATA, "no region at address")
            size, _ = self._regions[address]
            if len(data) > size:
                raise FormatError(
                    ErrorCode.INVALID_ACCOUNT_DATA,
                    f"record of {len(data)} bytes exceeds region of {size}",
                )
            self._regions[address] = (size, bytes(data))


class SqliteAccountStore(AccountStore):
    """
    SQLite-backed region store.

    Schema:
        CREATE TABLE attesta_regions (
            address BLOB PRIMARY KEY,
            size INTEGER NOT NULL,
            data BLOB NOT NULL
        );
    """

    def __init__(self, db_connection: sqlite3.Connection, table_name: str = "attesta_regions"):
        self.db = db_connection
        self.table = table_name
        self._lock = threading.Lock()
        with self._lock:
            self.db.execute(
                f"CREATE TABLE IF NOT EXISTS {self.table} ("
                "address BLOB PRIMARY KEY, size INTEGER NOT NULL, data BLOB NOT NULL)"
            )
            self.db.commit()

    @classmethod
    def open(cls, path: str) -> "SqliteAccountStore":
        return cls(sqlite3.connect(path, check_same_thread=False))

    def allocate(self, address: bytes, size: int) -> None:
        with self._lock:
            try:
                self.db.execute(
                    f"INSERT INTO {self.table} (address, size, data) VALUES (?, ?, ?)",
                    (address, size, b""),
                )
                self.db.commit()
            except sqlite3.IntegrityError as e:
                self.db.rollback()
                raise FormatError(ErrorCode.INVALID_ACCOUNT_DATA, "region already allocated") from e

    def exists(self, address: bytes) -> bool:
        with self._lock:
            row = self.db.execute(
                f"SELECT 1 FROM {self.table} WHERE address = ?", (address,)
            ).fetchone()
        return row is not None

    def _region(self, address: bytes) -> Tuple[int, bytes]:
        row = self.db.execute(
            f"SELECT size, data FROM {self.table} WHERE address = ?", (address,)
        ).fetchone()
        if row is None:
            raise FormatError(ErrorCode.INVALID_ACCOUNT_DATA, "no region at address")
        return row[0], bytes(row[1])

    def load(self, address: bytes) -> bytes:
        with self._lock:
            return self._region(address)[1]

    def save(self, address: bytes, data: bytes) -> None:
        with self._lock:
            size, _ = self._region(address)
            if len(data) > size:
                raise FormatError(
                    ErrorCode.INVALID_ACCOUNT_DATA,
                    f"record of {len(data)} bytes exceeds region of {size}",
                )
            self.db.execute(
                f"UPDATE {self.table} SET data = ? WHERE address = ?",
                (bytes(data), address),
            )
            self.db.commit()


# =============================================================================
# Account and registry records
# =============================================================================

def load_account(store: AccountStore, address: bytes) -> Account:
    """
    Raises:
        FormatError(INVALID_ACCOUNT_DATA): missing region, wrong
            discriminator, or undecodable record
    """
    return Account.from_record(store.load(address))


def save_account(store: AccountStore, address: bytes, account: Account) -> None:
    store.save(address, account.to_record())


def init_account(
    store: AccountStore,
    owner: bytes,
    public_key: bytes,
    credential_id: bytes,
    policy: bytes,
    now: int,
    seed: Optional[bytes] = None,
    space: int = DEFAULT_ACCOUNT_SPACE,
) -> Tuple[bytes, Account]:
    """
    Create and persist a new account.

    The seed defaults to the credential id. Returns (address, account).
    """
    account = Account.create(owner, public_key, credential_id, policy, now)
    address = derive_account_address(owner, credential_id if seed is None else seed)
    record = account.to_record()
    if len(record) > space:
        raise FormatError(
            ErrorCode.INVALID_ACCOUNT_DATA,
            f"record of {len(record)} bytes exceeds region of {space}",
        )
    store.allocate(address, space)
    store.save(address, record)
    logger.info("Account initialized at %s", short_hex(address))
    return address, account


def load_registry(store: AccountStore, account_address: bytes) -> Optional[MultiCredentialRegistry]:
    """The account's registry, or None when it has never been created."""
    address = derive_registry_address(account_address)
    if not store.exists(address):
        return None
    return MultiCredentialRegistry.from_bytes(store.load(address))


def save_registry(
    store: AccountStore,
    account_address: bytes,
    registry: MultiCredentialRegistry,
    space: int = DEFAULT_REGISTRY_SPACE,
) -> None:
    address = derive_registry_address(account_address)
    if not store.exists(address):
        store.allocate(address, space)
    store.save(address, registry.to_bytes())


def open_store(path: Optional[str] = None) -> AccountStore:
    """
    SQLite store at ``path`` (or ATTESTA_STORE_PATH); in-memory when neither
    is set.
    """
    path = path or store_path()
    if path:
        logger.info("Using SQLite account store at %s", path)
        return SqliteAccountStore.open(path)
    logger.warning("No store path configured; accounts are not persisted")
    return InMemoryAccountStore()
