# SPDX-License-Identifier: MIT
# Copyright (c) 2024 The usbgen Authors

"""
The :mod:`.descriptors` module contains the value types that describe a USB
device before it is serialized, along with enums for the standard byte codes
used in `USB 2.0`_ descriptors.

.. _USB 2.0: https://www.usb.org/document-library/usb-20-specification
"""

from enum import Enum, IntEnum, unique
from typing import Any, NamedTuple, Union

from usb.util import (
    DESC_TYPE_CONFIG,
    DESC_TYPE_DEVICE,
    DESC_TYPE_ENDPOINT,
    DESC_TYPE_INTERFACE,
    DESC_TYPE_STRING,
    ENDPOINT_IN,
    ENDPOINT_OUT,
    ENDPOINT_TYPE_BULK,
    ENDPOINT_TYPE_CTRL,
    ENDPOINT_TYPE_INTR,
    ENDPOINT_TYPE_ISO,
    endpoint_address,
    endpoint_direction,
    endpoint_type,
)

from usbgen.errors import ConfigurationError

USB_MAX_ENDPOINTS = 16
"""Maximum number of endpoints in one direction, as specified by USB."""

USB_VERSION = 0x0200
"""The ``bcdUSB`` value written to device descriptors."""

LANG_ID_ENGLISH_US = 0x0409
"""The only language advertised in string descriptor 0."""


@unique
class DescriptorType(IntEnum):
    """Standard descriptor types."""

    DEVICE = DESC_TYPE_DEVICE
    CONFIGURATION = DESC_TYPE_CONFIG
    STRING = DESC_TYPE_STRING
    INTERFACE = DESC_TYPE_INTERFACE
    ENDPOINT = DESC_TYPE_ENDPOINT


@unique
class Direction(IntEnum):
    """
    Endpoint direction, as encoded in bit 7 of ``bEndpointAddress``.

    Directions are from the point of view of the host.
    """

    OUT = ENDPOINT_OUT
    """Host to device. Served by the receive (RX) half of an endpoint."""

    IN = ENDPOINT_IN
    """Device to host. Served by the transmit (TX) half of an endpoint."""


@unique
class EndpointType(IntEnum):
    """Transfer type, as encoded in bits 1..0 of ``bmAttributes``."""

    CONTROL = ENDPOINT_TYPE_CTRL
    ISOCHRONOUS = ENDPOINT_TYPE_ISO
    BULK = ENDPOINT_TYPE_BULK
    INTERRUPT = ENDPOINT_TYPE_INTR


class EndpointAddress(int):
    """A packed ``bEndpointAddress`` value."""

    def __new__(cls, value: int) -> "EndpointAddress":
        if value & ~(ENDPOINT_IN | 0x0F):
            raise ConfigurationError(f"invalid endpoint address: 0x{value:02X}")

        return int.__new__(cls, value)

    @property
    def number(self) -> int:
        """Gets the endpoint number (0 to 15)."""
        return endpoint_address(self)

    @property
    def direction(self) -> Direction:
        """Gets the endpoint direction."""
        return Direction(endpoint_direction(self))

    @staticmethod
    def from_parts(number: int, direction: Direction) -> "EndpointAddress":
        if not 0 <= number < USB_MAX_ENDPOINTS:
            raise ConfigurationError(f"endpoint number out of range: {number}")

        return EndpointAddress(number | Direction(direction))

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(0x{self:02X})"


class StringKind(Enum):
    UNSET = "unset"
    LITERAL = "literal"
    EXTERNAL = "external"


class StringRef(NamedTuple):
    """
    Reference to the text behind a string descriptor index.

    Literal strings are compiled into static descriptors. External strings are
    only identified by an opaque id and are served at runtime by the firmware.
    """

    kind: StringKind
    value: Union[str, int, None] = None

    @staticmethod
    def unset() -> "StringRef":
        return UNSET

    @staticmethod
    def literal(text: str) -> "StringRef":
        if not isinstance(text, str):
            raise TypeError("text must be str")

        return StringRef(StringKind.LITERAL, text)

    @staticmethod
    def external(string_id: int) -> "StringRef":
        if not isinstance(string_id, int):
            raise TypeError("string_id must be int")

        return StringRef(StringKind.EXTERNAL, string_id)

    @staticmethod
    def coerce(value: Union[str, "StringRef", None]) -> "StringRef":
        """Converts plain text to a literal reference and ``None`` to unset."""
        if value is None:
            return UNSET

        if isinstance(value, StringRef):
            return value

        return StringRef.literal(value)

    def __repr__(self) -> str:
        if self.kind is StringKind.UNSET:
            return "StringRef.unset()"

        return f"StringRef.{self.kind.value}({self.value!r})"


UNSET = StringRef(StringKind.UNSET)
"""The reference used when a descriptor has no string."""


class DeviceDescriptor(NamedTuple):
    device_class: int
    device_sub_class: int
    device_protocol: int
    max_packet_size_0: int
    vendor_id: int
    product_id: int
    device_release: int
    manufacturer: StringRef = UNSET
    product: StringRef = UNSET
    serial_number: StringRef = UNSET


class ConfigurationDescriptor(NamedTuple):
    configuration_value: int
    configuration_string: StringRef
    attributes: int
    max_power: int
    """Maximum bus current in units of 2 mA."""


class InterfaceDescriptor(NamedTuple):
    interface_number: int
    alternate_setting: int = 0
    interface_class: int = 0
    interface_sub_class: int = 0
    interface_protocol: int = 0
    interface_string: StringRef = UNSET


class EndpointDescriptor(NamedTuple):
    address: EndpointAddress
    attributes: int
    max_packet_size: int
    interval: int = 0

    @property
    def number(self) -> int:
        return self.address.number

    @property
    def direction(self) -> Direction:
        return self.address.direction

    @property
    def ep_type(self) -> EndpointType:
        return EndpointType(endpoint_type(self.attributes))


class CustomDescriptor(NamedTuple):
    """A class or vendor specific descriptor that is written verbatim."""

    descriptor_type: int
    data: bytes


def control_endpoint(direction: Direction, max_packet_size: int) -> EndpointDescriptor:
    """Creates the descriptor for one half of the default control endpoint."""
    return EndpointDescriptor(
        EndpointAddress.from_parts(0, direction),
        EndpointType.CONTROL,
        max_packet_size,
    )


def endpoint_info(endpoint: Any) -> EndpointDescriptor:
    """
    Gets the endpoint descriptor for anything that describes an endpoint.

    Args:
        endpoint:
            An :class:`EndpointDescriptor` or an object with a ``build()``
            method that returns one, such as an endpoint builder.

    Raises:
        TypeError: ``endpoint`` does not describe an endpoint.
    """
    if isinstance(endpoint, EndpointDescriptor):
        return endpoint

    build = getattr(endpoint, "build", None)

    if build is None:
        raise TypeError(f"expecting an endpoint but received {type(endpoint)}")

    return build()
