"""
Little-endian record helpers shared by the account and registry codecs.

Variable-length fields are a u32 LE length followed by the bytes.
"""

import struct

from .errors import ErrorCode, FormatError

U32 = struct.Struct("<I")
U64 = struct.Struct("<Q")
I64 = struct.Struct("<q")


def pack_sized(data: bytes) -> bytes:
    return U32.pack(len(data)) + bytes(data)


class RecordReader:
    """Bounds-checked cursor over a persisted record."""

    def __init__(self, data: bytes, error_code: ErrorCode = ErrorCode.INVALID_ACCOUNT_DATA):
        self.data = bytes(data)
        self.offset = 0
        self.error_code = error_code

    def take(self, n: int) -> bytes:
        end = self.offset + n
        if end > len(self.data):
            raise FormatError(self.error_code, "truncated record")
        chunk = self.data[self.offset:end]
        self.offset = end
        return chunk

    def u8(self) -> int:
        return self.take(1)[0]

    def u32(self) -> int:
        return U32.unpack(self.take(U32.size))[0]

    def u64(self) -> int:
        return U64.unpack(self.take(U64.size))[0]

    def i64(self) -> int:
        return I64.unpack(self.take(I64.size))[0]

    def sized(self) -> bytes:
        return self.take(self.u32())

    def finish(self) -> None:
        if self.offset != len(self.data):
            raise FormatError(
                self.error_code,
                f"{len(self.data) - self.offset} trailing bytes",
            )
