# /tools/tlv.py
"""
Minimal TLV / DER codec.

Everything in this package that needs to look at raw ASN.1 bytes goes through
this module: the length/tag primitives, a cursor (`TLVReader`) for walking
certificates and security objects field by field, and an immutable node tree
(`Asn1Node`) used when a structure has to be rewritten and re-serialized.

This is not a general ASN.1 library. It understands definite-length DER only,
which is all that certificates and ICAO data groups use.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, NamedTuple, Optional, Sequence, Tuple, Type

from tools.errors import MalformedEncoding

logger = logging.getLogger(__name__)

# --- Universal and context tags used across the package ---
TAG_INTEGER = 0x02
TAG_BIT_STRING = 0x03
TAG_OCTET_STRING = 0x04
TAG_NULL = 0x05
TAG_OID = 0x06
TAG_UTC_TIME = 0x17
TAG_GENERALIZED_TIME = 0x18
TAG_SEQUENCE = 0x30
TAG_SET = 0x31
TAG_CONTEXT_0 = 0xA0
TAG_CONTEXT_1 = 0xA1
TAG_CONTEXT_2 = 0xA2
TAG_CONTEXT_3 = 0xA3

TIME_TAGS = (TAG_UTC_TIME, TAG_GENERALIZED_TIME)


# ----- Length and tag primitives -----

def read_length(buffer: bytes, offset: int) -> Tuple[int, int]:
    """
    Decode DER length octets at `offset`.

    Returns `(length, consumed)`. Short form uses the low seven bits of the
    first octet; long form uses them as the count of big-endian length octets
    that follow.
    """
    if offset >= len(buffer):
        raise MalformedEncoding("Length octet past end of buffer", offset)
    first = buffer[offset]
    if not first & 0x80:
        return first, 1
    count = first & 0x7F
    if count == 0:
        raise MalformedEncoding("Indefinite length is not allowed in DER", offset)
    if offset + 1 + count > len(buffer):
        raise MalformedEncoding(f"Truncated long-form length ({count} octets)", offset)
    length = int.from_bytes(buffer[offset + 1:offset + 1 + count], "big")
    return length, 1 + count


def encode_length(length: int) -> bytes:
    """Encode `length` in the minimal short or long DER form."""
    if length < 0:
        raise ValueError(f"Negative length: {length}")
    if length < 0x80:
        return bytes([length])
    body = length.to_bytes((length.bit_length() + 7) // 8, "big")
    return bytes([0x80 | len(body)]) + body


def read_tag(buffer: bytes, offset: int) -> Tuple[int, int]:
    """Read a tag at `offset`. Multi-octet tags (e.g. 0x5F1F) come back as one integer."""
    if offset >= len(buffer):
        raise MalformedEncoding("Tag past end of buffer", offset)
    tag = buffer[offset]
    consumed = 1
    if tag & 0x1F == 0x1F:
        while True:
            if offset + consumed >= len(buffer):
                raise MalformedEncoding("Truncated multi-octet tag", offset)
            octet = buffer[offset + consumed]
            tag = (tag << 8) | octet
            consumed += 1
            if not octet & 0x80:
                break
    return tag, consumed


def expect_tag(buffer: bytes, offset: int, tag: int) -> int:
    """Fail with MalformedEncoding unless the tag at `offset` equals `tag`. Returns the tag width."""
    actual, consumed = read_tag(buffer, offset)
    if actual != tag:
        raise MalformedEncoding("Unexpected tag", offset, expected_tag=tag, actual_tag=actual)
    return consumed


def encode_tag(tag: int) -> bytes:
    return tag.to_bytes(max(1, (tag.bit_length() + 7) // 8), "big")


def wrap(tag: int, value: bytes) -> bytes:
    """Prefix `value` with a tag and minimal length header."""
    return encode_tag(tag) + encode_length(len(value)) + bytes(value)


def is_constructed(tag: int) -> bool:
    return bool(encode_tag(tag)[0] & 0x20)


# ----- Primitive value helpers -----

def encode_integer(value: int) -> bytes:
    """Content octets of a non-negative INTEGER, with a 0x00 pad when the high bit is set."""
    if value < 0:
        raise ValueError("Only non-negative integers are encoded here")
    return value.to_bytes(value.bit_length() // 8 + 1, "big")


def decode_integer(value: bytes) -> int:
    return int.from_bytes(value, "big", signed=True)


def encode_oid(dotted: str) -> bytes:
    """Content octets of an OBJECT IDENTIFIER given in dotted form."""
    arcs = [int(arc) for arc in dotted.split(".")]
    if len(arcs) < 2:
        raise ValueError(f"OID needs at least two arcs: {dotted}")
    body = bytearray()
    for arc in [arcs[0] * 40 + arcs[1]] + arcs[2:]:
        chunk = [arc & 0x7F]
        arc >>= 7
        while arc:
            chunk.append(0x80 | (arc & 0x7F))
            arc >>= 7
        body.extend(reversed(chunk))
    return bytes(body)


def decode_oid(value: bytes, offset: int = 0) -> str:
    arcs = []
    acc = 0
    for octet in value:
        acc = (acc << 7) | (octet & 0x7F)
        if not octet & 0x80:
            arcs.append(acc)
            acc = 0
    if not arcs or value[-1] & 0x80:
        raise MalformedEncoding("Invalid OBJECT IDENTIFIER content", offset, actual_tag=TAG_OID)
    first = arcs[0]
    head = [first // 40, first % 40] if first < 80 else [2, first - 80]
    return ".".join(str(arc) for arc in head + arcs[1:])


# ----- Flat node view -----

class TLVNode(NamedTuple):
    """Position of one element inside a buffer. Never outlives the parse call."""
    tag: int
    offset: int
    length: int
    value_offset: int

    @property
    def value_length(self) -> int:
        return self.length

    @property
    def header_length(self) -> int:
        return self.value_offset - self.offset

    @property
    def end(self) -> int:
        return self.value_offset + self.length


def read_node(buffer: bytes, offset: int) -> TLVNode:
    tag, tag_width = read_tag(buffer, offset)
    length, length_width = read_length(buffer, offset + tag_width)
    value_offset = offset + tag_width + length_width
    if value_offset + length > len(buffer):
        raise MalformedEncoding(
            f"Element of length {length} overruns buffer of {len(buffer)} bytes",
            offset,
            actual_tag=tag,
        )
    return TLVNode(tag, offset, length, value_offset)


# ----- Cursor -----

class TLVReader:
    """
    Stateful cursor over a DER buffer.

    Each method consumes exactly one element (or one header when descending)
    and raises `error` with the current offset when the element is not the one
    the caller expects. Offsets are always absolute positions in `buffer`.
    """

    def __init__(
        self,
        buffer: bytes,
        offset: int = 0,
        end: Optional[int] = None,
        error: Type[MalformedEncoding] = MalformedEncoding,
    ) -> None:
        self.buffer = bytes(buffer)
        self.offset = offset
        self.end = len(self.buffer) if end is None else end
        self.error = error

    def _fail(self, message: str, expected: Optional[int] = None, actual: Optional[int] = None):
        return self.error(message, self.offset, expected_tag=expected, actual_tag=actual)

    def _node(self, what: str) -> TLVNode:
        if self.offset >= self.end:
            raise self._fail(f"Unexpected end of data while reading {what}")
        try:
            node = read_node(self.buffer, self.offset)
        except MalformedEncoding as exc:
            if isinstance(exc, self.error):
                raise
            raise self.error(f"Invalid {what}: {exc}", exc.offset, exc.expected_tag, exc.actual_tag) from exc
        if node.end > self.end:
            raise self._fail(f"{what} overruns its enclosing element", actual=node.tag)
        return node

    def at_end(self) -> bool:
        return self.offset >= self.end

    def peek_tag(self) -> Optional[int]:
        if self.at_end():
            return None
        return read_tag(self.buffer, self.offset)[0]

    def read(self, tag: Optional[int] = None, what: str = "element") -> TLVNode:
        """Consume one whole element, checking its tag when one is given."""
        node = self._node(what)
        if tag is not None and node.tag != tag:
            raise self._fail(f"Expected {what}", expected=tag, actual=node.tag)
        self.offset = node.end
        return node

    def expect(self, tag: int, what: str = "element") -> bytes:
        """Consume one element and return it whole (tag, length and value)."""
        node = self.read(tag, what)
        return self.buffer[node.offset:node.end]

    def value(self, tag: int, what: str = "element") -> bytes:
        node = self.read(tag, what)
        return self.buffer[node.value_offset:node.end]

    def skip(self, tag: Optional[int] = None, what: str = "element") -> None:
        self.read(tag, what)

    def skip_optional(self, tag: int) -> bool:
        if self.peek_tag() != tag:
            return False
        self.read(tag)
        return True

    def descend(self, tag: int, what: str = "element") -> TLVNode:
        """Consume only the header of a constructed element; the cursor lands on its first child."""
        node = self._node(what)
        if node.tag != tag:
            raise self._fail(f"Expected {what}", expected=tag, actual=node.tag)
        self.offset = node.value_offset
        return node

    def enter(self, tag: int, what: str = "element") -> "TLVReader":
        """Consume a constructed element and return a reader bounded to its children."""
        node = self.read(tag, what)
        return TLVReader(self.buffer, node.value_offset, node.end, self.error)

    def read_byte(self, what: str = "octet") -> int:
        if self.offset >= self.end:
            raise self._fail(f"Unexpected end of data while reading {what}")
        octet = self.buffer[self.offset]
        self.offset += 1
        return octet


# ----- Immutable node tree -----

@dataclass(frozen=True)
class Asn1Node:
    """
    One ASN.1 element: a tag plus either raw content octets or ordered children.

    Nodes are never mutated. Edits return a new tree sharing every untouched
    subtree, and `encode()` re-serializes with minimal lengths, which is byte
    identical to the input for anything that was valid DER to begin with.
    Opaque nodes carry their original encoding and return it unchanged.
    """
    tag: int
    value: bytes = b""
    children: Optional[Tuple["Asn1Node", ...]] = None
    encoded: Optional[bytes] = None

    @classmethod
    def primitive(cls, tag: int, value: bytes) -> "Asn1Node":
        return cls(tag, bytes(value), None)

    @classmethod
    def of(cls, tag: int, *children: "Asn1Node") -> "Asn1Node":
        return cls(tag, b"", tuple(children))

    @classmethod
    def integer(cls, value: int) -> "Asn1Node":
        return cls.primitive(TAG_INTEGER, encode_integer(value))

    @classmethod
    def oid(cls, dotted: str) -> "Asn1Node":
        return cls.primitive(TAG_OID, encode_oid(dotted))

    @classmethod
    def null(cls) -> "Asn1Node":
        return cls.primitive(TAG_NULL, b"")

    @classmethod
    def opaque(cls, encoded: bytes) -> "Asn1Node":
        """One complete element kept as its exact bytes, whatever length form they use."""
        encoded = bytes(encoded)
        node = read_node(encoded, 0)
        if node.end != len(encoded):
            raise MalformedEncoding(f"{len(encoded) - node.end} trailing bytes after opaque element", node.end)
        return cls(node.tag, encoded[node.value_offset:node.end], None, encoded)

    @property
    def is_constructed(self) -> bool:
        return self.children is not None

    def content(self) -> bytes:
        if self.children is None:
            return self.value
        return b"".join(child.encode() for child in self.children)

    def encode(self) -> bytes:
        if self.encoded is not None:
            return self.encoded
        return wrap(self.tag, self.content())

    def child(self, index: int) -> "Asn1Node":
        if self.children is None:
            raise MalformedEncoding(f"Node 0x{self.tag:02x} has no children", 0, actual_tag=self.tag)
        try:
            return self.children[index]
        except IndexError:
            raise MalformedEncoding(
                f"Node 0x{self.tag:02x} has no child {index} ({len(self.children)} present)",
                0,
                actual_tag=self.tag,
            ) from None

    def find(self, tag: int, start: int = 0) -> Optional[int]:
        """Index of the first child with `tag`, or None."""
        for index, node in enumerate(self.children or ()):
            if index >= start and node.tag == tag:
                return index
        return None

    def at(self, path: Sequence[int]) -> "Asn1Node":
        node = self
        for index in path:
            node = node.child(index)
        return node

    def replace(self, index: int, node: "Asn1Node") -> "Asn1Node":
        self.child(index)
        children = list(self.children)
        children[index] = node
        return Asn1Node(self.tag, b"", tuple(children))

    def insert(self, index: int, node: "Asn1Node") -> "Asn1Node":
        if self.children is None:
            raise MalformedEncoding(f"Cannot insert into primitive 0x{self.tag:02x}", 0, actual_tag=self.tag)
        children = list(self.children)
        children.insert(index, node)
        return Asn1Node(self.tag, b"", tuple(children))

    def replace_at(self, path: Sequence[int], node: "Asn1Node") -> "Asn1Node":
        """Return a new tree where the node at `path` is `node`."""
        if not path:
            return node
        head, rest = path[0], path[1:]
        return self.replace(head, self.child(head).replace_at(rest, node))

    def retag(self, tag: int) -> "Asn1Node":
        return Asn1Node(tag, self.value, self.children)


def _parse_element(buffer: bytes, offset: int) -> Tuple[Asn1Node, int]:
    node = read_node(buffer, offset)
    if not is_constructed(node.tag):
        return Asn1Node.primitive(node.tag, buffer[node.value_offset:node.end]), node.end
    children = []
    position = node.value_offset
    while position < node.end:
        child, position = _parse_element(buffer, position)
        children.append(child)
    if position != node.end:
        raise MalformedEncoding("Children overrun their parent", position, actual_tag=node.tag)
    return Asn1Node(node.tag, b"", tuple(children)), node.end


def parse_tree(buffer: bytes, offset: int = 0) -> Asn1Node:
    """Parse one complete element (and all of its descendants) starting at `offset`."""
    buffer = bytes(buffer)
    root, end = _parse_element(buffer, offset)
    if end != len(buffer):
        raise MalformedEncoding(f"{len(buffer) - end} trailing bytes after root element", end)
    return root


def sequence(*children: Asn1Node) -> Asn1Node:
    return Asn1Node.of(TAG_SEQUENCE, *children)


def algorithm_identifier(dotted: str, parameters: Optional[Asn1Node] = None) -> Asn1Node:
    """AlgorithmIdentifier with an explicit NULL when no parameters are given."""
    return sequence(Asn1Node.oid(dotted), parameters if parameters is not None else Asn1Node.null())


def concat(nodes: Iterable[Asn1Node]) -> bytes:
    return b"".join(node.encode() for node in nodes)
