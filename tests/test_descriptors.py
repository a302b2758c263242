import pytest

from usbgen.descriptors import (
    UNSET,
    DescriptorType,
    Direction,
    EndpointAddress,
    EndpointDescriptor,
    EndpointType,
    StringKind,
    StringRef,
    control_endpoint,
    endpoint_info,
)
from usbgen.errors import ConfigurationError


def test_byte_codes():
    assert DescriptorType.DEVICE == 1
    assert DescriptorType.CONFIGURATION == 2
    assert DescriptorType.STRING == 3
    assert DescriptorType.INTERFACE == 4
    assert DescriptorType.ENDPOINT == 5
    assert Direction.OUT == 0x00
    assert Direction.IN == 0x80
    assert EndpointType.CONTROL == 0
    assert EndpointType.ISOCHRONOUS == 1
    assert EndpointType.BULK == 2
    assert EndpointType.INTERRUPT == 3


class TestEndpointAddress:
    def test_from_parts(self):
        assert EndpointAddress.from_parts(1, Direction.IN) == 0x81
        assert EndpointAddress.from_parts(15, Direction.OUT) == 0x0F

    def test_components(self):
        address = EndpointAddress(0x83)
        assert address.number == 3
        assert address.direction is Direction.IN

        address = EndpointAddress(0x02)
        assert address.number == 2
        assert address.direction is Direction.OUT

    def test_repr(self):
        assert repr(EndpointAddress(0x81)) == "EndpointAddress(0x81)"

    def test_bad_value(self):
        with pytest.raises(ConfigurationError):
            EndpointAddress(0x10)

        with pytest.raises(ConfigurationError):
            EndpointAddress.from_parts(16, Direction.IN)


class TestStringRef:
    def test_unset(self):
        assert StringRef.unset() is UNSET
        assert UNSET.kind is StringKind.UNSET
        assert StringRef(StringKind.UNSET) == UNSET

    def test_equality(self):
        assert StringRef.literal("a") == StringRef.literal("a")
        assert StringRef.literal("a") != StringRef.literal("b")
        assert StringRef.external(1) == StringRef.external(1)
        assert StringRef.external(1) != StringRef.external(2)
        assert StringRef.literal("a") != UNSET

    def test_coerce(self):
        assert StringRef.coerce("text") == StringRef.literal("text")
        assert StringRef.coerce(None) is UNSET
        ref = StringRef.external(3)
        assert StringRef.coerce(ref) is ref

    def test_bad_types(self):
        with pytest.raises(TypeError):
            StringRef.literal(1)

        with pytest.raises(TypeError):
            StringRef.external("1")

    def test_repr(self):
        assert repr(UNSET) == "StringRef.unset()"
        assert repr(StringRef.literal("a")) == "StringRef.literal('a')"
        assert repr(StringRef.external(42)) == "StringRef.external(42)"


def test_endpoint_descriptor_info():
    ep = EndpointDescriptor(EndpointAddress(0x82), EndpointType.BULK, 64)
    assert ep.number == 2
    assert ep.direction is Direction.IN
    assert ep.ep_type is EndpointType.BULK
    assert ep.interval == 0


def test_control_endpoint():
    ep = control_endpoint(Direction.IN, 16)
    assert ep.address == 0x80
    assert ep.ep_type is EndpointType.CONTROL
    assert ep.max_packet_size == 16


class TestEndpointInfo:
    def test_descriptor(self):
        ep = EndpointDescriptor(EndpointAddress(0x01), EndpointType.BULK, 64)
        assert endpoint_info(ep) is ep

    def test_builder_like(self):
        ep = EndpointDescriptor(EndpointAddress(0x01), EndpointType.BULK, 64)

        class Builder:
            def build(self):
                return ep

        assert endpoint_info(Builder()) is ep

    def test_bad_type(self):
        with pytest.raises(TypeError):
            endpoint_info(42)
