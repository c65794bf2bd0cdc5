"""Decoding of commit block sections.

A block section is a CAR v1 archive: a varint-prefixed DAG-CBOR header
followed by varint-prefixed sections, each holding a binary CID immediately
followed by the block it addresses. The decoder builds a lookup table from
the string form of each CID to its decoded DAG-CBOR value.

Blocks whose sha2-256 digest does not match their CID are dropped from the
table: a body that cannot be authenticated is reported as unavailable rather
than trusted.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import typing as typ

import cbor2

from .errors import BlockSectionError

logger = logging.getLogger(__name__)

_CID_LINK_TAG = 42
_SHA2_256 = 0x12
_SHA2_256_LENGTH = 32
_CIDV0_PREFIX = bytes((_SHA2_256, _SHA2_256_LENGTH))
_CAR_VERSION = 1
_VARINT_MAX_BYTES = 9
_BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


def read_varint(data: bytes, offset: int) -> tuple[int, int]:
    """Read an unsigned LEB128 varint, returning ``(value, next_offset)``."""
    value = 0
    shift = 0
    for index in range(_VARINT_MAX_BYTES):
        position = offset + index
        if position >= len(data):
            raise BlockSectionError.truncated("varint")
        byte = data[position]
        value |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return value, position + 1
        shift += 7
    raise BlockSectionError.malformed("varint exceeds 9 bytes")


def _base58btc(raw: bytes) -> str:
    number = int.from_bytes(raw, "big")
    encoded = ""
    while number:
        number, remainder = divmod(number, 58)
        encoded = _BASE58_ALPHABET[remainder] + encoded
    leading_zeros = len(raw) - len(raw.lstrip(b"\x00"))
    return "1" * leading_zeros + encoded


def format_cid(raw: bytes) -> str:
    """Render binary CID bytes in their canonical string form.

    CIDv0 (a bare sha2-256 multihash) renders as base58btc; CIDv1 renders as
    multibase base32 with the ``b`` prefix.
    """
    if len(raw) == _SHA2_256_LENGTH + 2 and raw.startswith(_CIDV0_PREFIX):
        return _base58btc(raw)
    return "b" + base64.b32encode(raw).decode("ascii").lower().rstrip("=")


def _read_multihash(data: bytes, offset: int) -> tuple[int, bytes, int]:
    code, offset = read_varint(data, offset)
    length, offset = read_varint(data, offset)
    end = offset + length
    if end > len(data):
        raise BlockSectionError.truncated("multihash digest")
    return code, data[offset:end], end


def read_cid(data: bytes, offset: int) -> tuple[str, int, bytes, int]:
    """Read a binary CID at *offset*.

    Returns
    -------
    tuple[str, int, bytes, int]
        The CID string, the multihash code, the digest, and the offset just
        past the CID.

    """
    if data[offset : offset + 2] == _CIDV0_PREFIX:
        code, digest, end = _read_multihash(data, offset)
        return format_cid(data[offset:end]), code, digest, end

    version, cursor = read_varint(data, offset)
    if version != 1:
        raise BlockSectionError.malformed(f"unsupported CID version {version}")
    _codec, cursor = read_varint(data, cursor)
    code, digest, end = _read_multihash(data, cursor)
    return format_cid(data[offset:end]), code, digest, end


def _tag_hook(_decoder: object, tag: cbor2.CBORTag) -> object:
    if tag.tag == _CID_LINK_TAG and isinstance(tag.value, bytes):
        # DAG-CBOR links carry a leading 0x00 multibase identity prefix.
        return {"$link": format_cid(tag.value[1:])}
    return tag


def decode_dag_cbor(block: bytes) -> typ.Any:
    """Decode one DAG-CBOR block, rendering CID links as ``{"$link": cid}``."""
    try:
        return cbor2.loads(block, tag_hook=_tag_hook)
    except (cbor2.CBORDecodeError, ValueError) as exc:
        raise BlockSectionError.malformed(f"undecodable block: {exc}") from exc


def _read_header(data: bytes) -> int:
    length, offset = read_varint(data, 0)
    end = offset + length
    if length == 0 or end > len(data):
        raise BlockSectionError.truncated("header")
    header = decode_dag_cbor(data[offset:end])
    if not isinstance(header, dict) or header.get("version") != _CAR_VERSION:
        raise BlockSectionError.malformed("header is not a CAR v1 header")
    return end


def iter_blocks(data: bytes) -> typ.Iterator[tuple[str, bytes]]:
    """Yield ``(cid, block_bytes)`` pairs whose content matches their CID."""
    offset = _read_header(data)
    while offset < len(data):
        length, offset = read_varint(data, offset)
        end = offset + length
        if length == 0 or end > len(data):
            raise BlockSectionError.truncated("section")
        cid, code, digest, block_start = read_cid(data, offset)
        if block_start > end:
            raise BlockSectionError.malformed("CID overruns its section")
        block = data[block_start:end]
        offset = end
        if code == _SHA2_256 and hashlib.sha256(block).digest() != digest:
            logger.warning("Dropping block %s: digest does not match content", cid)
            continue
        yield cid, block


def decode_block_section(data: bytes) -> dict[str, typ.Any]:
    """Decode a block section into a CID-keyed lookup table."""
    return {cid: decode_dag_cbor(block) for cid, block in iter_blocks(data)}


__all__ = [
    "decode_block_section",
    "decode_dag_cbor",
    "format_cid",
    "iter_blocks",
    "read_cid",
    "read_varint",
]
