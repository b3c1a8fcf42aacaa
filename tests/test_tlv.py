# /tests/test_tlv.py
import pytest

from tools.errors import MalformedEncoding
from tools.tlv import (
    TAG_INTEGER,
    TAG_OCTET_STRING,
    TAG_SEQUENCE,
    TAG_SET,
    Asn1Node,
    TLVReader,
    algorithm_identifier,
    decode_integer,
    decode_oid,
    encode_integer,
    encode_length,
    encode_oid,
    is_constructed,
    parse_tree,
    read_length,
    read_node,
    read_tag,
    sequence,
    wrap,
)

RSA_ENCRYPTION_CONTENT = bytes.fromhex("2a864886f70d010101")


# --------------------------------------------------------------------------
# Length and tag primitives
# --------------------------------------------------------------------------
@pytest.mark.parametrize(
    "data, expected",
    [
        (b"\x05", (5, 1)),
        (b"\x7f", (127, 1)),
        (b"\x81\x80", (128, 2)),
        (b"\x82\x01\x00", (256, 3)),
    ],
)
def test_read_length(data, expected):
    assert read_length(data, 0) == expected


def test_read_length_rejects_indefinite_and_truncated_forms():
    with pytest.raises(MalformedEncoding):
        read_length(b"\x80", 0)
    with pytest.raises(MalformedEncoding) as exc_info:
        read_length(b"\x30\x82\x01", 1)
    assert exc_info.value.offset == 1


def test_encode_length_is_minimal():
    assert encode_length(0) == b"\x00"
    assert encode_length(127) == b"\x7f"
    assert encode_length(128) == b"\x81\x80"
    assert encode_length(256) == b"\x82\x01\x00"
    with pytest.raises(ValueError):
        encode_length(-1)


def test_multi_octet_tag():
    assert read_tag(b"\x5f\x1f\x58", 0) == (0x5F1F, 2)
    assert wrap(0x5F1F, b"ab") == b"\x5f\x1f\x02ab"
    assert is_constructed(0x61)
    assert not is_constructed(0x5F1F)


def test_read_node_overrun_reports_offset_and_tag():
    with pytest.raises(MalformedEncoding) as exc_info:
        read_node(b"\x00\x04\x05ab", 1)
    assert exc_info.value.offset == 1
    assert exc_info.value.actual_tag == TAG_OCTET_STRING


# --------------------------------------------------------------------------
# Value helpers
# --------------------------------------------------------------------------
def test_integer_encoding_keeps_values_positive():
    assert encode_integer(0) == b"\x00"
    assert encode_integer(127) == b"\x7f"
    assert encode_integer(128) == b"\x00\x80"
    assert encode_integer(65537) == b"\x01\x00\x01"
    assert decode_integer(b"\x00\x80") == 128
    assert decode_integer(b"\xff") == -1


def test_oid_encoding():
    assert encode_oid("1.2.840.113549.1.1.1") == RSA_ENCRYPTION_CONTENT
    assert decode_oid(RSA_ENCRYPTION_CONTENT) == "1.2.840.113549.1.1.1"
    assert decode_oid(encode_oid("2.23.136.1.1.1")) == "2.23.136.1.1.1"


def test_oid_with_dangling_continuation_is_rejected():
    with pytest.raises(MalformedEncoding):
        decode_oid(b"\x2a\x86")


# --------------------------------------------------------------------------
# Cursor
# --------------------------------------------------------------------------
def _sample() -> bytes:
    return wrap(TAG_SEQUENCE, wrap(TAG_INTEGER, b"\x01") + wrap(TAG_OCTET_STRING, b"xy"))


def test_reader_walks_children_in_order():
    reader = TLVReader(_sample()).enter(TAG_SEQUENCE, "outer")
    assert reader.value(TAG_INTEGER) == b"\x01"
    assert reader.peek_tag() == TAG_OCTET_STRING
    assert reader.expect(TAG_OCTET_STRING) == b"\x04\x02xy"
    assert reader.at_end()
    assert reader.peek_tag() is None


def test_reader_tag_mismatch():
    with pytest.raises(MalformedEncoding) as exc_info:
        TLVReader(_sample()).read(TAG_SET, "set")
    error = exc_info.value
    assert error.offset == 0
    assert error.expected_tag == TAG_SET
    assert error.actual_tag == TAG_SEQUENCE


def test_reader_skip_optional_and_descend():
    reader = TLVReader(_sample())
    reader.descend(TAG_SEQUENCE)
    assert reader.offset == 2
    assert reader.skip_optional(TAG_OCTET_STRING) is False
    assert reader.skip_optional(TAG_INTEGER) is True
    assert reader.read_byte() == TAG_OCTET_STRING


def test_child_may_not_overrun_its_parent():
    # SEQUENCE of length 3 whose OCTET STRING child claims 5 bytes
    data = b"\x30\x03\x04\x05abcde"
    reader = TLVReader(data).enter(TAG_SEQUENCE)
    with pytest.raises(MalformedEncoding, match="overruns its enclosing element"):
        reader.read(TAG_OCTET_STRING)


def test_reader_at_end_raises():
    reader = TLVReader(b"\x05\x00")
    reader.skip()
    with pytest.raises(MalformedEncoding):
        reader.read()
    with pytest.raises(MalformedEncoding):
        reader.read_byte()


# --------------------------------------------------------------------------
# Node tree
# --------------------------------------------------------------------------
def test_parse_tree_reencodes_identically():
    data = wrap(TAG_SEQUENCE, wrap(TAG_OCTET_STRING, b"a" * 300) + algorithm_identifier("1.2.840.113549.1.1.1").encode())
    tree = parse_tree(data)
    assert tree.encode() == data
    assert len(tree.child(0).value) == 300
    assert tree.child(1).child(0) == Asn1Node.oid("1.2.840.113549.1.1.1")
    assert tree.child(1).child(1) == Asn1Node.null()


def test_parse_tree_rejects_trailing_bytes():
    with pytest.raises(MalformedEncoding, match="trailing"):
        parse_tree(_sample() + b"\x00")


def test_node_edits_return_new_trees():
    tree = parse_tree(_sample())
    edited = tree.replace_at((1,), Asn1Node.primitive(TAG_OCTET_STRING, b"zz"))
    assert tree.child(1).value == b"xy"
    assert edited.child(1).value == b"zz"
    assert edited.child(0) is tree.child(0)

    inserted = tree.insert(1, Asn1Node.integer(7))
    assert [child.tag for child in inserted.children] == [TAG_INTEGER, TAG_INTEGER, TAG_OCTET_STRING]
    assert inserted.find(TAG_OCTET_STRING) == 2
    assert tree.retag(TAG_SET).encode()[0] == TAG_SET


def test_node_child_out_of_range():
    tree = sequence(Asn1Node.integer(1))
    with pytest.raises(MalformedEncoding):
        tree.child(3)
    with pytest.raises(MalformedEncoding):
        tree.child(0).child(0)
    with pytest.raises(MalformedEncoding):
        tree.child(0).insert(0, Asn1Node.null())


@pytest.mark.parametrize("length", [0, 1, 127, 128, 255, 256, 65535, 65536, 1 << 24])
def test_length_round_trip(length):
    encoded = encode_length(length)
    assert read_length(encoded, 0) == (length, len(encoded))


def test_opaque_node_keeps_its_encoding():
    long_form = b"\x04\x81\x02xy"
    node = Asn1Node.opaque(long_form)
    assert node.tag == TAG_OCTET_STRING
    assert node.value == b"xy"
    assert node.encode() == long_form

    tree = sequence(Asn1Node.integer(1), node)
    assert tree.encode() == wrap(TAG_SEQUENCE, b"\x02\x01\x01" + long_form)
    assert node.retag(TAG_SET).encode() == b"\x31\x02xy"
    with pytest.raises(MalformedEncoding):
        Asn1Node.opaque(long_form + b"\x00")
