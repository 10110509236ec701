"""Pytest configuration and shared fixtures.

No sys.path hacks - tests import from the installed blobscope package.

Descriptor sets are built with descriptor_pb2 and blobs are serialized by the
protobuf runtime itself, so decoded output is checked against real encoder
output rather than hand-assembled bytes.
"""

from types import SimpleNamespace

import pytest
from google.protobuf import descriptor_pb2, descriptor_pool, message_factory

from blobscope.kernel.descriptors import DescriptorRegistry

FDP = descriptor_pb2.FieldDescriptorProto

DEMO_DESCRIPTOR = "demo"


def add_field(message, name, number, field_type, label=FDP.LABEL_OPTIONAL, type_name=None):
    field = message.field.add(name=name, number=number, type=field_type, label=label)
    if type_name:
        field.type_name = type_name
    return field


def demo_file() -> descriptor_pb2.FileDescriptorProto:
    """demo.proto (proto3, package demo).

    enum Status { STATUS_UNKNOWN = 0; ACTIVE = 1; DISABLED = 2; }
    message Point { int32 x = 1; int32 y = 2; }
    message User {
      int32 id = 1; string name = 2; Status status = 3;
      repeated int32 scores = 4; Point location = 5;
      map<string, int32> attrs = 6; repeated string tags = 7;
      double balance = 8; sint64 delta = 9; bytes avatar = 10;
      bool verified = 11; repeated Point path = 12; fixed32 crc = 13;
    }
    message Event { string kind = 1; int64 ts = 2; }
    """
    file_proto = descriptor_pb2.FileDescriptorProto(name="demo.proto", package="demo", syntax="proto3")

    status = file_proto.enum_type.add(name="Status")
    status.value.add(name="STATUS_UNKNOWN", number=0)
    status.value.add(name="ACTIVE", number=1)
    status.value.add(name="DISABLED", number=2)

    point = file_proto.message_type.add(name="Point")
    add_field(point, "x", 1, FDP.TYPE_INT32)
    add_field(point, "y", 2, FDP.TYPE_INT32)

    user = file_proto.message_type.add(name="User")
    add_field(user, "id", 1, FDP.TYPE_INT32)
    add_field(user, "name", 2, FDP.TYPE_STRING)
    add_field(user, "status", 3, FDP.TYPE_ENUM, type_name=".demo.Status")
    add_field(user, "scores", 4, FDP.TYPE_INT32, label=FDP.LABEL_REPEATED)
    add_field(user, "location", 5, FDP.TYPE_MESSAGE, type_name=".demo.Point")
    add_field(user, "attrs", 6, FDP.TYPE_MESSAGE, label=FDP.LABEL_REPEATED,
              type_name=".demo.User.AttrsEntry")
    add_field(user, "tags", 7, FDP.TYPE_STRING, label=FDP.LABEL_REPEATED)
    add_field(user, "balance", 8, FDP.TYPE_DOUBLE)
    add_field(user, "delta", 9, FDP.TYPE_SINT64)
    add_field(user, "avatar", 10, FDP.TYPE_BYTES)
    add_field(user, "verified", 11, FDP.TYPE_BOOL)
    add_field(user, "path", 12, FDP.TYPE_MESSAGE, label=FDP.LABEL_REPEATED, type_name=".demo.Point")
    add_field(user, "crc", 13, FDP.TYPE_FIXED32)

    attrs_entry = user.nested_type.add(name="AttrsEntry")
    attrs_entry.options.map_entry = True
    add_field(attrs_entry, "key", 1, FDP.TYPE_STRING)
    add_field(attrs_entry, "value", 2, FDP.TYPE_INT32)

    event = file_proto.message_type.add(name="Event")
    add_field(event, "kind", 1, FDP.TYPE_STRING)
    add_field(event, "ts", 2, FDP.TYPE_INT64)
    return file_proto


def broken_file() -> descriptor_pb2.FileDescriptorProto:
    """A descriptor with a dangling reference.

    Broken.missing points at demo.Missing; UsesBroken embeds Broken; Fine is
    unrelated and must stay usable.
    """
    file_proto = descriptor_pb2.FileDescriptorProto(name="broken.proto", package="demo", syntax="proto3")
    broken = file_proto.message_type.add(name="Broken")
    add_field(broken, "id", 1, FDP.TYPE_INT32)
    add_field(broken, "missing", 2, FDP.TYPE_MESSAGE, type_name=".demo.Missing")
    uses = file_proto.message_type.add(name="UsesBroken")
    add_field(uses, "inner", 1, FDP.TYPE_MESSAGE, type_name=".demo.Broken")
    fine = file_proto.message_type.add(name="Fine")
    add_field(fine, "label", 1, FDP.TYPE_STRING)
    return file_proto


def descriptor_set(*files) -> bytes:
    fds = descriptor_pb2.FileDescriptorSet()
    fds.file.extend(files)
    return fds.SerializeToString()


def varint(value: int) -> bytes:
    """LEB128 encoding of a non-negative int."""
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def tag(field_number: int, wire_type: int) -> bytes:
    return varint((field_number << 3) | wire_type)


def length_delimited(field_number: int, payload: bytes) -> bytes:
    return tag(field_number, 2) + varint(len(payload)) + payload


@pytest.fixture(scope="session")
def demo_descriptor_bytes():
    return descriptor_set(demo_file())


@pytest.fixture(scope="session")
def broken_descriptor_bytes():
    return descriptor_set(broken_file())


@pytest.fixture(scope="session")
def demo_classes():
    """Generated message classes for demo.proto, keyed by simple name."""
    pool = descriptor_pool.DescriptorPool()
    pool.AddSerializedFile(demo_file().SerializeToString())
    return {
        name: message_factory.GetMessageClass(pool.FindMessageTypeByName(f"demo.{name}"))
        for name in ("Point", "User", "Event")
    }


@pytest.fixture
def registry(demo_descriptor_bytes):
    reg = DescriptorRegistry()
    reg.load(DEMO_DESCRIPTOR, demo_descriptor_bytes)
    return reg


@pytest.fixture
def demo_entry(registry):
    return registry.entry(DEMO_DESCRIPTOR)


@pytest.fixture
def wire():
    """Helpers for hand-assembling wire bytes (malformed inputs, odd encodings)."""
    return SimpleNamespace(varint=varint, tag=tag, length_delimited=length_delimited)


@pytest.fixture
def protos():
    """Builders for custom descriptor sets."""
    return SimpleNamespace(
        FDP=FDP,
        add_field=add_field,
        demo_file=demo_file,
        broken_file=broken_file,
        descriptor_set=descriptor_set,
    )
