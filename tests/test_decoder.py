"""Tests for schema-guided decoding and per-field degradation."""

import pytest
from google.protobuf import descriptor_pb2

from blobscope.kernel.decoder import MAX_DEPTH, decode_bytes, decode_message, default_value, expected_wire_type
from blobscope.kernel.descriptors import DescriptorRegistry, FieldKind
from blobscope.kernel.values import EnumValue, MapValue, Message, Scalar, Unknown, UnknownReason
from blobscope.kernel.wire import WireType, scan


def decode_user(entry, data):
    return decode_bytes(data, entry.resolve("demo.User"), entry)


def test_decodes_documented_example(demo_entry):
    decoded = decode_user(demo_entry, b"\x08\x96\x01")
    assert decoded == Message("demo.User", (("id", Scalar(FieldKind.INT32, 150)),))


def test_decodes_runtime_encoded_message(demo_entry, demo_classes):
    User, Point = demo_classes["User"], demo_classes["Point"]
    user = User(
        id=7,
        name="ada",
        status=1,
        scores=[1, 2, 300],
        location=Point(x=3, y=-4),
        tags=["x", "y"],
        balance=2.5,
        delta=-3,
        avatar=b"\x00\x01",
        verified=True,
        path=[Point(x=1), Point(y=2)],
        crc=0xDEADBEEF,
    )
    user.attrs["b"] = 2
    user.attrs["a"] = 1
    decoded = decode_user(demo_entry, user.SerializeToString(deterministic=True))

    assert decoded.field_names() == (
        "id", "name", "status", "scores", "location", "attrs",
        "tags", "balance", "delta", "avatar", "verified", "path", "crc",
    )
    assert decoded.get("id") == Scalar(FieldKind.INT32, 7)
    assert decoded.get("name") == Scalar(FieldKind.STRING, "ada")
    assert decoded.get("status") == EnumValue("ACTIVE", 1)
    assert [s.value for s in decoded.get("scores")] == [1, 2, 300]
    assert decoded.get("location") == Message(
        "demo.Point", (("x", Scalar(FieldKind.INT32, 3)), ("y", Scalar(FieldKind.INT32, -4)))
    )
    assert decoded.get("attrs") == MapValue((
        (Scalar(FieldKind.STRING, "a"), Scalar(FieldKind.INT32, 1)),
        (Scalar(FieldKind.STRING, "b"), Scalar(FieldKind.INT32, 2)),
    ))
    assert [s.value for s in decoded.get("tags")] == ["x", "y"]
    assert decoded.get("balance") == Scalar(FieldKind.DOUBLE, 2.5)
    assert decoded.get("delta") == Scalar(FieldKind.SINT64, -3)
    assert decoded.get("avatar") == Scalar(FieldKind.BYTES, b"\x00\x01")
    assert decoded.get("verified") == Scalar(FieldKind.BOOL, True)
    assert decoded.get("path") == (
        Message("demo.Point", (("x", Scalar(FieldKind.INT32, 1)),)),
        Message("demo.Point", (("y", Scalar(FieldKind.INT32, 2)),)),
    )
    assert decoded.get("crc") == Scalar(FieldKind.FIXED32, 0xDEADBEEF)


def test_negative_int32_uses_ten_byte_varint(demo_entry, demo_classes):
    data = demo_classes["User"](id=-5).SerializeToString()
    assert len(data) == 11
    assert decode_user(demo_entry, data).get("id") == Scalar(FieldKind.INT32, -5)


def test_packed_and_unpacked_repeated_decode_identically(demo_entry, wire):
    values = [1, 2, 300]
    unpacked = b"".join(wire.tag(4, 0) + wire.varint(v) for v in values)
    packed = wire.length_delimited(4, b"".join(wire.varint(v) for v in values))
    assert decode_user(demo_entry, unpacked) == decode_user(demo_entry, packed)
    assert [s.value for s in decode_user(demo_entry, packed).get("scores")] == values


def test_packed_and_unpacked_records_concatenate(demo_entry, wire):
    data = wire.tag(4, 0) + wire.varint(1) + wire.length_delimited(4, wire.varint(2) + wire.varint(3))
    assert [s.value for s in decode_user(demo_entry, data).get("scores")] == [1, 2, 3]


def test_malformed_packed_payload_degrades(demo_entry, wire):
    data = wire.tag(4, 0) + wire.varint(1) + wire.length_delimited(4, b"\x96")
    scores = decode_user(demo_entry, data).get("scores")
    assert scores[0] == Scalar(FieldKind.INT32, 1)
    assert isinstance(scores[1], Unknown)
    assert scores[1].reason == UnknownReason.MALFORMED


def test_unknown_fields_are_kept_after_known_fields(demo_entry, wire):
    data = wire.tag(99, 0) + wire.varint(5) + b"\x08\x01"
    decoded = decode_user(demo_entry, data)
    assert decoded.fields == (
        ("id", Scalar(FieldKind.INT32, 1)),
        ("99", Unknown(99, WireType.VARINT, b"\x05", UnknownReason.UNKNOWN_FIELD)),
    )


def test_wire_type_mismatch_degrades_only_that_field(demo_entry, wire):
    data = wire.length_delimited(1, b"abc") + wire.length_delimited(2, b"ada")
    decoded = decode_user(demo_entry, data)
    assert decoded.get("id") == Unknown(1, WireType.LENGTH_DELIMITED, b"abc", UnknownReason.WIRE_TYPE_MISMATCH)
    assert decoded.get("name") == Scalar(FieldKind.STRING, "ada")


def test_mismatched_record_next_to_valid_one_is_kept(demo_entry, wire):
    data = b"\x08\x01" + wire.length_delimited(1, b"x")
    decoded = decode_user(demo_entry, data)
    assert decoded.get("id") == Scalar(FieldKind.INT32, 1)
    assert decoded.get("1").reason == UnknownReason.WIRE_TYPE_MISMATCH


def test_repeated_message_mismatch_is_an_unknown_item(demo_entry, wire):
    data = wire.length_delimited(12, b"\x08\x01") + wire.tag(12, 0) + wire.varint(4)
    path = decode_user(demo_entry, data).get("path")
    assert isinstance(path[0], Message)
    assert path[1].reason == UnknownReason.WIRE_TYPE_MISMATCH


def test_malformed_nested_message_degrades(demo_entry, wire):
    data = wire.length_delimited(5, b"\x08") + b"\x08\x02"
    decoded = decode_user(demo_entry, data)
    assert decoded.get("location") == Unknown(5, WireType.LENGTH_DELIMITED, b"\x08", UnknownReason.MALFORMED)
    assert decoded.get("id") == Scalar(FieldKind.INT32, 2)


def test_invalid_utf8_string_is_marked_invalid(demo_entry, wire):
    name = decode_user(demo_entry, wire.length_delimited(2, b"ok\xff")).get("name")
    assert name.valid is False
    assert name.value == "ok\\xff"


def test_enum_number_without_name(demo_entry, wire):
    status = decode_user(demo_entry, wire.tag(3, 0) + wire.varint(9)).get("status")
    assert status == EnumValue(None, 9)


def test_singular_scalar_last_wins(demo_entry):
    assert decode_user(demo_entry, b"\x08\x01\x08\x02").get("id") == Scalar(FieldKind.INT32, 2)


def test_singular_message_occurrences_merge(demo_entry, wire):
    data = wire.length_delimited(5, b"\x08\x01") + wire.length_delimited(5, b"\x10\x02")
    location = decode_user(demo_entry, data).get("location")
    assert location == Message(
        "demo.Point", (("x", Scalar(FieldKind.INT32, 1)), ("y", Scalar(FieldKind.INT32, 2)))
    )


def test_failed_message_merge_keeps_every_occurrence(demo_entry, wire):
    data = wire.length_delimited(5, b"\x08\x01") + b"\x08\x07" + wire.length_delimited(5, b"\x08")
    decoded = decode_user(demo_entry, data)
    assert decoded.fields == (
        ("id", Scalar(FieldKind.INT32, 7)),
        ("location", Unknown(5, WireType.LENGTH_DELIMITED, b"\x08", UnknownReason.MALFORMED)),
        ("5", Unknown(5, WireType.LENGTH_DELIMITED, b"\x08\x01", UnknownReason.MALFORMED)),
    )


def test_map_last_write_wins_and_defaults(demo_entry, wire):
    entry_a1 = wire.length_delimited(1, b"a") + wire.tag(2, 0) + wire.varint(1)
    entry_b = wire.length_delimited(1, b"b")
    entry_a5 = wire.length_delimited(1, b"a") + wire.tag(2, 0) + wire.varint(5)
    data = b"".join(wire.length_delimited(6, e) for e in (entry_a1, entry_b, entry_a5))
    attrs = decode_user(demo_entry, data).get("attrs")
    assert attrs == MapValue((
        (Scalar(FieldKind.STRING, "a"), Scalar(FieldKind.INT32, 5)),
        (Scalar(FieldKind.STRING, "b"), Scalar(FieldKind.INT32, 0)),
    ))


def test_malformed_map_entry_becomes_unknown(demo_entry, wire):
    bad_entry = wire.length_delimited(1, b"a") + wire.tag(3, 0) + wire.varint(1)
    decoded = decode_user(demo_entry, wire.length_delimited(6, bad_entry))
    assert decoded.get("attrs") == MapValue()
    assert decoded.get("6").reason == UnknownReason.MALFORMED


def test_empty_blob_decodes_to_empty_message(demo_entry):
    assert decode_user(demo_entry, b"") == Message("demo.User")


def test_unresolved_nested_type_degrades(broken_descriptor_bytes, wire):
    entry = DescriptorRegistry().load("broken", broken_descriptor_bytes)
    data = b"\x08\x01" + wire.length_delimited(2, b"\x08\x01")
    decoded = decode_bytes(data, entry.resolve("demo.Broken"), entry)
    assert decoded.get("id") == Scalar(FieldKind.INT32, 1)
    assert decoded.get("missing").reason == UnknownReason.UNRESOLVED_TYPE


def test_depth_limit(protos, wire):
    file_proto = descriptor_pb2.FileDescriptorProto(name="tree.proto", package="tree", syntax="proto3")
    node = file_proto.message_type.add(name="Node")
    protos.add_field(node, "child", 1, protos.FDP.TYPE_MESSAGE, type_name=".tree.Node")
    protos.add_field(node, "v", 2, protos.FDP.TYPE_INT32)
    entry = DescriptorRegistry().load("tree", protos.descriptor_set(file_proto))

    payload = b"\x10\x01"
    for _ in range(MAX_DEPTH + 5):
        payload = wire.length_delimited(1, payload)
    value = decode_bytes(payload, entry.resolve("tree.Node"), entry)

    levels = 0
    while isinstance(value, Message):
        levels += 1
        value = value.get("child")
    assert levels == MAX_DEPTH + 1
    assert value.reason == UnknownReason.DEPTH_LIMIT


@pytest.mark.parametrize(
    "blob",
    [
        b"\x08\x96\x01",
        b"\x12\x03\xff\xfe\xfd",
        b"\x2a\x02\x08\x01\x32\x00",
        b"\x0d\x00\x00\x80\x7f\x19\x00\x00\x00\x00\x00\x00\xf8\x7f",
        b"\x62\x01\x08\x52\x04\x0a\x00\x10\x01",
        b"\x20\xff\xff\xff\xff\xff\xff\xff\xff\xff\x01",
    ],
)
def test_decoding_never_raises_for_scannable_blobs(demo_entry, blob):
    records = scan(blob)
    for type_name in demo_entry.type_names() + ["demo.User.AttrsEntry"]:
        decoded = decode_message(records, demo_entry.resolve(type_name), demo_entry)
        assert isinstance(decoded, Message)
        assert decoded.type_name == type_name


def test_expected_wire_types():
    assert expected_wire_type(FieldKind.SINT64) == WireType.VARINT
    assert expected_wire_type(FieldKind.ENUM) == WireType.VARINT
    assert expected_wire_type(FieldKind.FLOAT) == WireType.FIXED32
    assert expected_wire_type(FieldKind.SFIXED64) == WireType.FIXED64
    assert expected_wire_type(FieldKind.MESSAGE) == WireType.LENGTH_DELIMITED
    assert expected_wire_type(FieldKind.BYTES) == WireType.LENGTH_DELIMITED


def test_default_values(demo_entry):
    user = demo_entry.resolve("demo.User")
    assert default_value(user.field_by_number(1), demo_entry) == Scalar(FieldKind.INT32, 0)
    assert default_value(user.field_by_number(2), demo_entry) == Scalar(FieldKind.STRING, "")
    assert default_value(user.field_by_number(3), demo_entry) == EnumValue("STATUS_UNKNOWN", 0)
    assert default_value(user.field_by_number(5), demo_entry) == Message("demo.Point")
