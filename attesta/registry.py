"""
Attesta Multi-Credential Registry

An account may be controlled by several passkeys: one primary credential,
which can never be removed, and an ordered list of additional ones. The
registry also records how many enabled credentials are needed for recovery.

Invariants:
- 1 <= recovery_threshold <= max_credentials <= 255
- credential ids are pairwise distinct across primary and additional
- the primary is always present
"""

import logging
import threading
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Tuple

from .codec import I64, U32, RecordReader, pack_sized
from .errors import AuthenticationError, ErrorCode, FormatError, RegistryError
from .hashing import short_hex
from .p256 import PUBLIC_KEY_LEN

logger = logging.getLogger(__name__)

MAX_CREDENTIALS_CAP = 255
DEFAULT_MAX_CREDENTIALS = 5
DEFAULT_RECOVERY_THRESHOLD = 1

REGISTRY_DISCRIMINATOR = b"ATTMPK\x00\x00"


@dataclass(frozen=True)
class CredentialEntry:
    """A registered passkey."""
    public_key: bytes
    credential_id: bytes
    name: str = ""
    enabled: bool = True
    added_at: int = 0

    def __post_init__(self):
        if len(self.public_key) != PUBLIC_KEY_LEN:
            raise FormatError(
                ErrorCode.INVALID_PUBLIC_KEY,
                f"expected {PUBLIC_KEY_LEN} bytes, got {len(self.public_key)}",
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "public_key": self.public_key.hex(),
            "credential_id": self.credential_id.hex(),
            "name": self.name,
            "enabled": self.enabled,
            "added_at": self.added_at,
        }

    def encode(self) -> bytes:
        name = self.name.encode("utf-8")
        return (
            self.public_key
            + pack_sized(self.credential_id)
            + pack_sized(name)
            + bytes([1 if self.enabled else 0])
            + I64.pack(self.added_at)
        )


class MultiCredentialRegistry:
    """
    Registry of passkeys for one account.

    Mutating methods either complete fully or raise without changing the
    registry. A lock guards the entry list so a shared registry instance
    is safe to use from several threads.
    """

    def __init__(
        self,
        primary: CredentialEntry,
        recovery_threshold: int = DEFAULT_RECOVERY_THRESHOLD,
        max_credentials: int = DEFAULT_MAX_CREDENTIALS,
        additional: Optional[List[CredentialEntry]] = None,
    ):
        self.max_credentials = max(1, min(MAX_CREDENTIALS_CAP, max_credentials))
        self.recovery_threshold = max(1, min(self.max_credentials, recovery_threshold))
        self._primary = primary
        self._additional: List[CredentialEntry] = []
        self._lock = threading.Lock()
        for entry in additional or []:
            self.add(entry)

    @property
    def primary(self) -> CredentialEntry:
        return self._primary

    @property
    def additional(self) -> Tuple[CredentialEntry, ...]:
        with self._lock:
            return tuple(self._additional)

    def entries(self) -> List[CredentialEntry]:
        """Primary first, then additional in insertion order."""
        with self._lock:
            return [self._primary] + list(self._additional)

    def __len__(self) -> int:
        with self._lock:
            return 1 + len(self._additional)

    # -------------------------------------------------------------------------
    # Mutation
    # -------------------------------------------------------------------------

    def add(self, entry: CredentialEntry) -> None:
        """
        Register an additional credential.

        Raises:
            RegistryError(MAX_CREDENTIALS_REACHED)
            RegistryError(DUPLICATE_CREDENTIAL)
        """
        with self._lock:
            if len(self._additional) + 1 >= self.max_credentials:
                raise RegistryError(
                    ErrorCode.MAX_CREDENTIALS_REACHED,
                    f"registry holds {len(self._additional) + 1} of {self.max_credentials}",
                )
            if self._index_locked(entry.credential_id) is not None:
                raise RegistryError(ErrorCode.DUPLICATE_CREDENTIAL, entry.credential_id.hex())
            self._additional.append(entry)
        logger.debug("Credential %s added", short_hex(entry.credential_id))

    def add_credential(
        self,
        public_key: bytes,
        credential_id: bytes,
        name: str = "",
        added_at: int = 0,
    ) -> CredentialEntry:
        entry = CredentialEntry(
            public_key=bytes(public_key),
            credential_id=bytes(credential_id),
            name=name,
            enabled=True,
            added_at=added_at,
        )
        self.add(entry)
        return entry

    def remove(self, credential_id: bytes) -> CredentialEntry:
        """
        Remove an additional credential.

        Raises:
            RegistryError(CANNOT_REMOVE_PRIMARY)
            RegistryError(CREDENTIAL_NOT_FOUND)
        """
        with self._lock:
            if credential_id == self._primary.credential_id:
                raise RegistryError(ErrorCode.CANNOT_REMOVE_PRIMARY)
            index = self._index_locked(credential_id)
            if index is None:
                raise RegistryError(ErrorCode.CREDENTIAL_NOT_FOUND, credential_id.hex())
            return self._additional.pop(index)

    def enable(self, credential_id: bytes) -> CredentialEntry:
        return self._set_enabled(credential_id, True)

    def disable(self, credential_id: bytes) -> CredentialEntry:
        return self._set_enabled(credential_id, False)

    def _set_enabled(self, credential_id: bytes, enabled: bool) -> CredentialEntry:
        with self._lock:
            if credential_id == self._primary.credential_id:
                self._primary = replace(self._primary, enabled=enabled)
                return self._primary
            index = self._index_locked(credential_id)
            if index is None:
                raise RegistryError(ErrorCode.CREDENTIAL_NOT_FOUND, credential_id.hex())
            updated = replace(self._additional[index], enabled=enabled)
            self._additional[index] = updated
            return updated

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def _index_locked(self, credential_id: bytes) -> Optional[int]:
        """-1 for the primary, list index for additional, None if absent."""
        if credential_id == self._primary.credential_id:
            return -1
        for i, entry in enumerate(self._additional):
            if entry.credential_id == credential_id:
                return i
        return None

    def find(self, credential_id: bytes) -> Optional[CredentialEntry]:
        with self._lock:
            index = self._index_locked(credential_id)
            if index is None:
                return None
            return self._primary if index == -1 else self._additional[index]

    def enabled(self) -> List[CredentialEntry]:
        return [e for e in self.entries() if e.enabled]

    def can_recover(self) -> bool:
        return len(self.enabled()) >= self.recovery_threshold

    def resolve(self, credential_id: bytes) -> CredentialEntry:
        """
        The enabled entry that may sign for ``credential_id``.

        Raises:
            AuthenticationError(INVALID_CREDENTIAL_ID): unknown or disabled
        """
        entry = self.find(credential_id)
        if entry is None or not entry.enabled:
            raise AuthenticationError(ErrorCode.INVALID_CREDENTIAL_ID, credential_id.hex())
        return entry

    # -------------------------------------------------------------------------
    # Record codec
    # -------------------------------------------------------------------------

    def to_bytes(self) -> bytes:
        entries = self.entries()
        out = bytearray(REGISTRY_DISCRIMINATOR)
        out += bytes([self.recovery_threshold, self.max_credentials])
        out += entries[0].encode()
        out += U32.pack(len(entries) - 1)
        for entry in entries[1:]:
            out += entry.encode()
        return bytes(out)

    @classmethod
    def from_bytes(cls, data: bytes) -> "MultiCredentialRegistry":
        """
        Raises:
            FormatError(INVALID_ACCOUNT_DATA): bad discriminator or layout,
                or entries that break the registry rules (duplicate ids,
                more entries than max_credentials)
        """
        reader = RecordReader(data)
        if reader.take(len(REGISTRY_DISCRIMINATOR)) != REGISTRY_DISCRIMINATOR:
            raise FormatError(ErrorCode.INVALID_ACCOUNT_DATA, "not a registry record")
        threshold = reader.u8()
        max_credentials = reader.u8()
        if not 1 <= threshold <= max_credentials:
            raise FormatError(
                ErrorCode.INVALID_ACCOUNT_DATA,
                f"recovery threshold {threshold} outside 1..{max_credentials}",
            )
        primary = _read_entry(reader)
        count = reader.u32()
        if count >= max_credentials:
            raise FormatError(
                ErrorCode.INVALID_ACCOUNT_DATA,
                f"{count} additional credentials exceed capacity {max_credentials}",
            )
        additional = [_read_entry(reader) for _ in range(count)]
        reader.finish()
        try:
            return cls(primary, threshold, max_credentials, additional)
        except RegistryError as e:
            raise FormatError(
                ErrorCode.INVALID_ACCOUNT_DATA, f"registry record rejected: {e}"
            ) from e

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recovery_threshold": self.recovery_threshold,
            "max_credentials": self.max_credentials,
            "primary": self._primary.to_dict(),
            "additional": [e.to_dict() for e in self.additional],
            "can_recover": self.can_recover(),
        }


def _read_entry(reader: RecordReader) -> CredentialEntry:
    public_key = reader.take(PUBLIC_KEY_LEN)
    credential_id = reader.sized()
    try:
        name = reader.sized().decode("utf-8")
    except UnicodeDecodeError as e:
        raise FormatError(ErrorCode.INVALID_ACCOUNT_DATA, "credential name is not UTF-8") from e
    enabled = reader.u8() != 0
    added_at = reader.i64()
    return CredentialEntry(public_key, credential_id, name, enabled, added_at)
