#!/bin/python
import io
import os
import struct

from zipfile import ZipFile, BadZipFile
from typing import Optional, Union

from crx_errors import ArchiveParseFailed, MalformedHeader, NotAPackage
from extension_id import verify_crx2


CRX_MAGIC = b"Cr24"
CRX2_VERSION = 2
CRX3_VERSION = 3


class ZipBuffer(io.RawIOBase):
    """Read-only, seekable file object over an in-memory buffer.

    ZipFile needs to seek around the central directory, so the downloaded
    payload is exposed through this adapter instead of a temporary file.
    """

    def __init__(self, data: Union[bytes, memoryview]) -> None:
        super().__init__()
        self._data = memoryview(data).cast("B")
        self._pos = 0


    def read_at(self, pos: int, length: int) -> bytes:
        if pos < 0 or length <= 0:
            return b""
        return bytes(self._data[pos:pos + length])


    def readable(self) -> bool:
        return True


    def seekable(self) -> bool:
        return True


    def tell(self) -> int:
        return self._pos


    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        if whence == os.SEEK_SET:
            self._pos = offset
        elif whence == os.SEEK_CUR:
            self._pos += offset
        elif whence == os.SEEK_END:
            self._pos = len(self._data) + offset
        else:
            raise ValueError(f"Invalid whence: {whence}")
        return self._pos


    def readinto(self, buffer) -> int:
        chunk = self.read_at(self._pos, len(buffer))
        n = len(chunk)
        buffer[:n] = chunk
        self._pos += n
        return n


    @property
    def size(self) -> int:
        return len(self._data)


class _HeaderReader:
    """Bounds-checked cursor over the CRX prefix."""

    def __init__(self, data: memoryview, pos: int) -> None:
        self.data = data
        self.pos = pos


    def remaining(self) -> int:
        return len(self.data) - self.pos


    def length(self, field: str) -> int:
        # lengths are u32 on the wire but must fit a signed int
        if self.remaining() < 4:
            raise MalformedHeader(f"Truncated CRX header: missing {field}")
        value = struct.unpack_from("<i", self.data, self.pos)[0]
        if value < 0:
            raise MalformedHeader(f"Negative {field}: {value}")
        self.pos += 4
        return value


    def block(self, length: int, field: str) -> memoryview:
        if length > self.remaining():
            raise MalformedHeader(
                f"{field} length {length} exceeds remaining {self.remaining()} bytes"
            )
        view = self.data[self.pos:self.pos + length]
        self.pos += length
        return view


class CrxHeader:
    """Decoded CRX prefix. Subclasses carry one format variant each."""

    def __init__(self, magic: bytes, version: int) -> None:
        self.magic = magic
        self.version = version


    @property
    def authenticated(self) -> bool:
        return False


    def verify(self, app_id: str, payload: memoryview) -> None:
        raise NotImplementedError


class Crx2Header(CrxHeader):
    """Legacy layout: the public key and signature follow the fixed fields."""

    def __init__(self, magic: bytes, version: int, public_key: memoryview,
                 signature: memoryview) -> None:
        super().__init__(magic, version)
        self.public_key = public_key
        self.signature = signature


    @property
    def public_key_length(self) -> int:
        return len(self.public_key)


    @property
    def signature_length(self) -> int:
        return len(self.signature)


    @property
    def authenticated(self) -> bool:
        return True


    def verify(self, app_id: str, payload: memoryview) -> None:
        """Check the key matches app_id and the payload is signed by it."""
        verify_crx2(bytes(self.public_key), bytes(self.signature), payload, app_id)


class Crx3Header(CrxHeader):
    """Current layout: a single protobuf header block, kept opaque.

    No signature check is performed for this variant; the payload handed back
    is only as trustworthy as the transport it came over.
    """

    def __init__(self, magic: bytes, version: int, header_block: memoryview) -> None:
        super().__init__(magic, version)
        self.header_block = header_block


    @property
    def header_block_length(self) -> int:
        return len(self.header_block)


    def verify(self, app_id: str, payload: memoryview) -> None:
        return None


class CrxPackage:

    def __init__(self, header: CrxHeader, payload: memoryview) -> None:
        self.header = header
        self.payload = payload


    def verify(self, app_id: str) -> None:
        self.header.verify(app_id, self.payload)


    def open_zip(self) -> ZipFile:
        """Wrap the payload in a ZipFile without copying it to disk."""
        try:
            return ZipFile(ZipBuffer(self.payload))
        except (BadZipFile, ValueError, EOFError, struct.error) as err:
            raise ArchiveParseFailed(f"Failed to parse ZIP file: {err}") from err


def parse_crx(data: Union[bytes, bytearray, memoryview]) -> CrxPackage:
    """Split a CRX buffer into header, header blocks and ZIP payload."""
    view = memoryview(data).cast("B")

    if bytes(view[:4]) != CRX_MAGIC:
        raise NotAPackage("Downloaded file doesn't look like a CRX")
    if len(view) < 8:
        raise MalformedHeader("Truncated CRX header: missing version")

    magic = bytes(view[:4])
    version = struct.unpack_from("<I", view, 4)[0]
    reader = _HeaderReader(view, 8)

    if version == CRX2_VERSION:
        public_key_length = reader.length("public key length")
        signature_length = reader.length("signature length")
        public_key = reader.block(public_key_length, "public key")
        signature = reader.block(signature_length, "signature")
        header = Crx2Header(magic, version, public_key, signature)
    elif version == CRX3_VERSION:
        header_length = reader.length("header length")
        header = Crx3Header(magic, version, reader.block(header_length, "header"))
    else:
        raise MalformedHeader(f"Unsupported CRX version: {version}")

    return CrxPackage(header, view[reader.pos:])


def open_crx(data: Union[bytes, bytearray, memoryview], app_id: Optional[str]) -> ZipFile:
    """Parse, verify against app_id when given, and open the ZIP payload."""
    package = parse_crx(data)
    if app_id is not None:
        package.verify(app_id)
    return package.open_zip()


class CrxArchive:


    def __init__(self, crx_path: str) -> None:
        self.crx_path = crx_path


    def get_zip_archive(self, app_id: Optional[str] = None) -> ZipFile:
        """Read CRX file from disk and open its ZIP payload."""
        with open(self.crx_path, "rb") as crx_file:
            crx_bytes = crx_file.read()

        return open_crx(crx_bytes, app_id)
