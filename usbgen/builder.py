# SPDX-License-Identifier: MIT
# Copyright (c) 2024 The usbgen Authors

"""
Builders for describing a USB device and compiling it into descriptors.

A device is described with a :class:`DeviceBuilder`, one
:class:`InterfaceBuilder` per interface and one :class:`EndpointBuilder` per
endpoint. Each setter returns the builder, so calls can be chained::

    device = DeviceBuilder(0x1209, 0x0001).manufacturer("ACME").product("Widget")

    ep = (
        EndpointBuilder()
        .ep_type(EndpointType.INTERRUPT)
        .direction(Direction.IN)
        .max_packet_size(8)
        .allocate(allocator)
    )

    device.alloc_interface().interface_class(0xFF).endpoint(ep).save(device)

    config = device.build()
"""

import logging
from types import MappingProxyType
from typing import Dict, List, Mapping, NamedTuple, Optional, Tuple, Union

from packaging.version import InvalidVersion, Version

from usbgen.allocator import CONTROL_PACKET_SIZES, MAX_PACKET_SIZE
from usbgen.descriptors import (
    UNSET,
    ConfigurationDescriptor,
    CustomDescriptor,
    DeviceDescriptor,
    Direction,
    EndpointAddress,
    EndpointDescriptor,
    EndpointType,
    InterfaceDescriptor,
    StringKind,
    StringRef,
    control_endpoint,
    endpoint_info,
)
from usbgen.errors import ConfigurationError
from usbgen.strings import StringTable
from usbgen.writer import DescriptorWriter

logger = logging.getLogger(__name__)

CONFIGURATION_ATTRIBUTES_RESERVED = 1 << 7
CONFIGURATION_ATTRIBUTES_SELF_POWERED = 1 << 6
CONFIGURATION_ATTRIBUTES_REMOTE_WAKEUP = 1 << 5

MAX_POWER_MA = 500
"""Maximum bus current that a device may request in mA."""


def _encode_bcd_version(version: str) -> int:
    try:
        parsed = Version(version)
    except InvalidVersion as ex:
        raise ConfigurationError(f"invalid release version: {version!r}") from ex

    major, minor, micro = parsed.major, parsed.minor, parsed.micro

    if major > 99 or minor > 9 or micro > 9:
        raise ConfigurationError(
            f"release version {version!r} does not fit in BCD format JJ.M.N"
        )

    return ((major // 10) << 12) | ((major % 10) << 8) | (minor << 4) | micro


def _check_byte(name: str, value: int) -> int:
    if not 0 <= value <= 0xFF:
        raise ConfigurationError(f"{name} must fit in one byte: {value}")

    return value


class StringResolution(NamedTuple):
    """
    How the firmware answers a request for a string descriptor.

    Exactly one of the fields is set.
    """

    descriptor: Optional[bytes] = None
    """The complete descriptor, if it is static."""
    external_id: Optional[int] = None
    """The id passed to the custom string provider, if it is not static."""


class DeviceConfig(NamedTuple):
    """The compiled descriptors of a device."""

    device_descriptor: bytes
    configuration_descriptor: bytes
    string_descriptors: Mapping[int, bytes]
    """Static string descriptors by index."""
    custom_strings: Mapping[int, int]
    """External string ids by index."""
    endpoints: Tuple[EndpointDescriptor, ...]
    """All endpoints, starting with both halves of endpoint 0."""

    def resolve_string(self, index: int) -> StringResolution:
        """
        Looks up the string descriptor that answers a request for ``index``.

        Raises:
            KeyError: No string has this index. The request should be rejected.
        """
        if index in self.string_descriptors:
            return StringResolution(descriptor=self.string_descriptors[index])

        if index in self.custom_strings:
            return StringResolution(external_id=self.custom_strings[index])

        raise KeyError(index)


class EndpointSpec(NamedTuple):
    """Endpoint properties collected by :class:`EndpointBuilder`."""

    number: Optional[int] = None
    direction: Optional[Direction] = None
    ep_type: Optional[EndpointType] = None
    max_packet_size: Optional[int] = None
    interval: int = 0


class EndpointBuilder:
    """Describes an endpoint. The number may be left to the allocator."""

    def __init__(self) -> None:
        self.spec = EndpointSpec()

    def number(self, number: int) -> "EndpointBuilder":
        # validates the range
        EndpointAddress.from_parts(number, Direction.OUT)
        self.spec = self.spec._replace(number=number)
        return self

    def direction(self, direction: Direction) -> "EndpointBuilder":
        self.spec = self.spec._replace(direction=Direction(direction))
        return self

    def ep_type(self, ep_type: EndpointType) -> "EndpointBuilder":
        self.spec = self.spec._replace(ep_type=EndpointType(ep_type))
        return self

    def max_packet_size(self, max_packet_size: int) -> "EndpointBuilder":
        if not 0 <= max_packet_size <= MAX_PACKET_SIZE:
            raise ConfigurationError(
                f"max packet size must be between 0 and {MAX_PACKET_SIZE}: "
                f"{max_packet_size}"
            )

        self.spec = self.spec._replace(max_packet_size=max_packet_size)
        return self

    def interval(self, interval: int) -> "EndpointBuilder":
        self.spec = self.spec._replace(interval=_check_byte("interval", interval))
        return self

    def allocate(self, allocator) -> "EndpointBuilder":
        """
        Reserves hardware resources for this endpoint.

        See :meth:`usbgen.allocator.DeviceAllocator.allocate`.
        """
        return allocator.allocate(self)

    def allocate_double_buffered(self, allocator) -> "EndpointBuilder":
        """
        Reserves hardware resources for this endpoint with two buffers.

        See :meth:`usbgen.allocator.DeviceAllocator.allocate`.
        """
        return allocator.allocate(self, double_buffered=True)

    def build(self) -> EndpointDescriptor:
        """
        Creates the endpoint descriptor.

        Raises:
            ConfigurationError: A field is not set.
        """
        for field in ("number", "direction", "ep_type", "max_packet_size"):
            if getattr(self.spec, field) is None:
                raise ConfigurationError(f"endpoint {field} is not set")

        return EndpointDescriptor(
            EndpointAddress.from_parts(self.spec.number, self.spec.direction),
            self.spec.ep_type,
            self.spec.max_packet_size,
            self.spec.interval,
        )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.spec!r})"


class InterfaceBuilder:
    """
    Describes an interface.

    Instances are created with :meth:`DeviceBuilder.alloc_interface` and only
    become part of the device once :meth:`save` is called.
    """

    def __init__(self, interface_number: int) -> None:
        self.descriptor = InterfaceDescriptor(interface_number)
        self.custom_descriptors: List[CustomDescriptor] = []
        self.endpoints: List[EndpointDescriptor] = []

    @property
    def interface_number(self) -> int:
        return self.descriptor.interface_number

    def alternate_setting(self, alternate_setting: int) -> "InterfaceBuilder":
        self.descriptor = self.descriptor._replace(
            alternate_setting=_check_byte("alternate setting", alternate_setting)
        )
        return self

    def interface_class(self, interface_class: int) -> "InterfaceBuilder":
        self.descriptor = self.descriptor._replace(
            interface_class=_check_byte("interface class", interface_class)
        )
        return self

    def interface_sub_class(self, interface_sub_class: int) -> "InterfaceBuilder":
        self.descriptor = self.descriptor._replace(
            interface_sub_class=_check_byte("interface sub-class", interface_sub_class)
        )
        return self

    def interface_protocol(self, interface_protocol: int) -> "InterfaceBuilder":
        self.descriptor = self.descriptor._replace(
            interface_protocol=_check_byte("interface protocol", interface_protocol)
        )
        return self

    def interface_string(
        self, interface_string: Union[str, StringRef]
    ) -> "InterfaceBuilder":
        self.descriptor = self.descriptor._replace(
            interface_string=StringRef.coerce(interface_string)
        )
        return self

    def custom_descriptor(
        self, descriptor_type: int, data: bytes
    ) -> "InterfaceBuilder":
        """
        Adds a class or vendor specific descriptor.

        These are written after the interface descriptor and before its
        endpoint descriptors, in the order they were added.
        """
        self.custom_descriptors.append(
            CustomDescriptor(
                _check_byte("descriptor type", descriptor_type), bytes(data)
            )
        )
        return self

    def endpoint(self, endpoint) -> "InterfaceBuilder":
        """
        Adds an endpoint.

        Args:
            endpoint: An :class:`EndpointDescriptor` or a complete
                :class:`EndpointBuilder`.
        """
        self.endpoints.append(endpoint_info(endpoint))
        return self

    def save(self, device: "DeviceBuilder") -> None:
        """
        Adds this interface to ``device``.

        Raises:
            ConfigurationError:
                The interface was not allocated from ``device``, uses an
                alternate setting or has no endpoints.
        """
        device._add_interface(self)


class DeviceBuilder:
    """Describes a device with a single configuration."""

    def __init__(self, vendor_id: int, product_id: int) -> None:
        if not 0 <= vendor_id <= 0xFFFF or not 0 <= product_id <= 0xFFFF:
            raise ConfigurationError("vendor and product IDs must be 16-bit values")

        self.descriptor = DeviceDescriptor(
            device_class=0,
            device_sub_class=0,
            device_protocol=0,
            max_packet_size_0=8,
            vendor_id=vendor_id,
            product_id=product_id,
            device_release=0x0010,
        )
        self.configuration_desc = ConfigurationDescriptor(
            configuration_value=1,
            configuration_string=UNSET,
            attributes=CONFIGURATION_ATTRIBUTES_RESERVED,
            max_power=50,
        )
        self.interfaces: List[InterfaceBuilder] = []

    def device_class(self, device_class: int) -> "DeviceBuilder":
        """
        Sets the device class code assigned by USB.org. Set to ``0xFF`` for
        vendor-specific devices that do not conform to any class.

        Default: ``0x00`` (class code specified by interfaces)
        """
        self.descriptor = self.descriptor._replace(
            device_class=_check_byte("device class", device_class)
        )
        return self

    def device_sub_class(self, device_sub_class: int) -> "DeviceBuilder":
        """Sets the device sub-class code. Depends on class."""
        self.descriptor = self.descriptor._replace(
            device_sub_class=_check_byte("device sub-class", device_sub_class)
        )
        return self

    def device_protocol(self, device_protocol: int) -> "DeviceBuilder":
        """Sets the device protocol code. Depends on class and sub-class."""
        self.descriptor = self.descriptor._replace(
            device_protocol=_check_byte("device protocol", device_protocol)
        )
        return self

    def device_release(self, device_release: Union[int, str]) -> "DeviceBuilder":
        """
        Sets the device release number.

        Args:
            device_release:
                Either the raw BCD value (e.g. ``0x0123``) or a version string
                (e.g. ``"1.2.3"``).

        Default: ``0x0010`` ("0.1")
        """
        if isinstance(device_release, str):
            device_release = _encode_bcd_version(device_release)
        elif not 0 <= device_release <= 0xFFFF:
            raise ConfigurationError(f"invalid device release: {device_release}")

        self.descriptor = self.descriptor._replace(device_release=device_release)
        return self

    def max_packet_size_0(self, max_packet_size_0: int) -> "DeviceBuilder":
        """
        Sets the maximum packet size in bytes for the control endpoint 0.

        Valid values are 8, 16, 32 and 64. There's generally no need to change
        this unless a class uses control transfers for large amounts of data.

        Default: 8 bytes
        """
        if max_packet_size_0 not in CONTROL_PACKET_SIZES:
            raise ConfigurationError(f"invalid max_packet_size_0: {max_packet_size_0}")

        self.descriptor = self.descriptor._replace(max_packet_size_0=max_packet_size_0)
        return self

    def self_powered(self, self_powered: bool) -> "DeviceBuilder":
        """
        Sets whether the device may have an external power source.

        This should be set to ``True`` even if the device only sometimes uses
        an external power source.

        Default: ``False``
        """
        return self._set_attribute(CONFIGURATION_ATTRIBUTES_SELF_POWERED, self_powered)

    def supports_remote_wakeup(self, supports_remote_wakeup: bool) -> "DeviceBuilder":
        """
        Sets whether the device supports remotely waking up the host.

        Default: ``False``
        """
        return self._set_attribute(
            CONFIGURATION_ATTRIBUTES_REMOTE_WAKEUP, supports_remote_wakeup
        )

    def _set_attribute(self, bit: int, value: bool) -> "DeviceBuilder":
        attributes = self.configuration_desc.attributes

        if value:
            attributes |= bit
        else:
            attributes &= ~bit

        self.configuration_desc = self.configuration_desc._replace(
            attributes=attributes
        )
        return self

    def max_power(self, max_power_ma: int) -> "DeviceBuilder":
        """
        Sets the maximum current drawn from the USB bus in mA.

        Set to 0 if the device never draws power from the bus.

        Default: 100 mA
        """
        if not 0 <= max_power_ma <= MAX_POWER_MA:
            raise ConfigurationError(
                f"max power must be between 0 and {MAX_POWER_MA} mA: {max_power_ma}"
            )

        self.configuration_desc = self.configuration_desc._replace(
            max_power=max_power_ma // 2
        )
        return self

    def manufacturer(self, manufacturer: Union[str, StringRef]) -> "DeviceBuilder":
        self.descriptor = self.descriptor._replace(
            manufacturer=StringRef.coerce(manufacturer)
        )
        return self

    def product(self, product: Union[str, StringRef]) -> "DeviceBuilder":
        self.descriptor = self.descriptor._replace(product=StringRef.coerce(product))
        return self

    def serial_number(self, serial_number: Union[str, StringRef]) -> "DeviceBuilder":
        self.descriptor = self.descriptor._replace(
            serial_number=StringRef.coerce(serial_number)
        )
        return self

    def configuration(self, configuration: Union[str, StringRef]) -> "DeviceBuilder":
        """Sets the configuration string descriptor."""
        self.configuration_desc = self.configuration_desc._replace(
            configuration_string=StringRef.coerce(configuration)
        )
        return self

    def allocate(self, allocator) -> "DeviceBuilder":
        """
        Reserves hardware resources for the control endpoint.

        See :meth:`usbgen.allocator.DeviceAllocator.allocate_control_endpoint`.
        """
        allocator.allocate_control_endpoint(self.descriptor.max_packet_size_0)
        return self

    def alloc_interface(self) -> InterfaceBuilder:
        """Reserves the next interface number and returns a builder for it."""
        index = len(self.interfaces)
        # placeholder until the returned builder is saved
        self.interfaces.append(InterfaceBuilder(index))
        return InterfaceBuilder(index)

    def _add_interface(self, interface: InterfaceBuilder) -> None:
        index = interface.interface_number

        if not 0 <= index < len(self.interfaces):
            raise ConfigurationError(f"interface {index} was not allocated")

        if interface.descriptor.alternate_setting != 0:
            raise ConfigurationError("alternate settings are not supported")

        if not interface.endpoints:
            raise ConfigurationError(f"interface {index} has no endpoints")

        self.interfaces[index] = interface

    def _strings(self) -> StringTable:
        strings = StringTable()

        # this order determines the string indexes
        strings.intern(self.descriptor.manufacturer)
        strings.intern(self.descriptor.product)
        strings.intern(self.descriptor.serial_number)
        strings.intern(self.configuration_desc.configuration_string)

        for interface in self.interfaces:
            strings.intern(interface.descriptor.interface_string)

        return strings

    def build(self) -> DeviceConfig:
        """
        Compiles the device description.

        Raises:
            ConfigurationError:
                The device has no interfaces or an interface has no endpoints.
        """
        if not self.interfaces:
            raise ConfigurationError("device has no interfaces")

        for interface in self.interfaces:
            if not interface.endpoints:
                raise ConfigurationError(
                    f"interface {interface.interface_number} has no endpoints"
                )

        strings = self._strings()

        w = DescriptorWriter()
        w.device(self.descriptor, 1, strings)
        device_descriptor = w.finish()

        w = DescriptorWriter()
        w.configuration(self.configuration_desc, strings)

        for interface in self.interfaces:
            w.interface(interface.descriptor, strings)

            for custom in interface.custom_descriptors:
                w.custom_descriptor(custom)

            for endpoint in interface.endpoints:
                w.endpoint(endpoint)

        configuration_descriptor = w.finish()

        string_descriptors: Dict[int, bytes] = {}
        custom_strings: Dict[int, int] = {}

        for i, s in enumerate(strings):
            if s.kind is StringKind.UNSET:
                w = DescriptorWriter()
                w.languages()
                string_descriptors[i] = w.finish()
            elif s.kind is StringKind.LITERAL:
                w = DescriptorWriter()
                w.string(s.value)
                string_descriptors[i] = w.finish()
            else:
                custom_strings[i] = s.value

        max_packet_size_0 = self.descriptor.max_packet_size_0
        endpoints = [
            control_endpoint(Direction.OUT, max_packet_size_0),
            control_endpoint(Direction.IN, max_packet_size_0),
        ]

        for interface in self.interfaces:
            endpoints.extend(interface.endpoints)

        logger.debug(
            "built device %04x:%04x with %d interfaces, %d endpoints and %d strings",
            self.descriptor.vendor_id,
            self.descriptor.product_id,
            len(self.interfaces),
            len(endpoints),
            len(strings),
        )

        return DeviceConfig(
            device_descriptor,
            configuration_descriptor,
            MappingProxyType(string_descriptors),
            MappingProxyType(custom_strings),
            tuple(endpoints),
        )

