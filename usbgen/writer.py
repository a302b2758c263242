# SPDX-License-Identifier: MIT
# Copyright (c) 2024 The usbgen Authors

"""
Serialization of descriptors into the USB wire format.

Every descriptor starts with a one byte total length and a one byte type.
Multi-byte fields are little-endian.
"""

import struct
from typing import Optional

from usbgen.descriptors import (
    LANG_ID_ENGLISH_US,
    USB_VERSION,
    ConfigurationDescriptor,
    CustomDescriptor,
    DescriptorType,
    DeviceDescriptor,
    EndpointDescriptor,
    InterfaceDescriptor,
    StringRef,
)
from usbgen.errors import ConfigurationError, ConsistencyViolation
from usbgen.strings import StringTable

MAX_DESCRIPTOR_SIZE = 0xFF
"""``bLength`` is a single byte."""

# offsets of backpatched fields relative to the start of their descriptor
_CONFIGURATION_TOTAL_LENGTH = 2
_CONFIGURATION_NUM_INTERFACES = 4
_INTERFACE_NUM_ENDPOINTS = 4


class DescriptorWriter:
    """
    Appends descriptors to a byte buffer.

    Configuration descriptors are written with zero ``wTotalLength`` and
    ``bNumInterfaces`` fields. The interface count is incremented by each
    following :meth:`interface` and the endpoint count of the last interface
    by each :meth:`endpoint`. The total length is filled in when the next
    configuration starts or when :meth:`finish` is called.
    """

    def __init__(self) -> None:
        self._buf = bytearray()
        self._configuration_offset: Optional[int] = None
        self._num_interfaces_mark: Optional[int] = None
        self._num_endpoints_mark: Optional[int] = None

    @property
    def position(self) -> int:
        """Gets the number of bytes written so far."""
        return len(self._buf)

    def write(self, descriptor_type: int, descriptor: bytes) -> None:
        """
        Writes a descriptor with the given type and payload.

        Raises:
            ConfigurationError: The descriptor is too large.
        """
        length = len(descriptor) + 2

        if length > MAX_DESCRIPTOR_SIZE:
            raise ConfigurationError(
                f"descriptor is too big - {length} bytes (max {MAX_DESCRIPTOR_SIZE})"
            )

        self._buf.append(length)
        self._buf.append(descriptor_type)
        self._buf.extend(descriptor)

    def custom_descriptor(self, descriptor: CustomDescriptor) -> None:
        self.write(descriptor.descriptor_type, descriptor.data)

    def device(
        self, device: DeviceDescriptor, num_configurations: int, strings: StringTable
    ) -> None:
        self.write(
            DescriptorType.DEVICE,
            struct.pack(
                "<H4B3H4B",
                USB_VERSION,
                device.device_class,
                device.device_sub_class,
                device.device_protocol,
                device.max_packet_size_0,
                device.vendor_id,
                device.product_id,
                device.device_release,
                _string_index(strings, device.manufacturer),
                _string_index(strings, device.product),
                _string_index(strings, device.serial_number),
                num_configurations,
            ),
        )

    def configuration(
        self, conf: ConfigurationDescriptor, strings: StringTable
    ) -> None:
        self._update_configuration_length()
        self._configuration_offset = self.position
        self._num_interfaces_mark = self.position + _CONFIGURATION_NUM_INTERFACES
        self._num_endpoints_mark = None

        self.write(
            DescriptorType.CONFIGURATION,
            struct.pack(
                "<H5B",
                0,  # wTotalLength
                0,  # bNumInterfaces
                conf.configuration_value,
                _string_index(strings, conf.configuration_string),
                conf.attributes,
                conf.max_power,
            ),
        )

    def _update_configuration_length(self) -> None:
        if self._configuration_offset is None:
            return

        offset = self._configuration_offset
        struct.pack_into(
            "<H",
            self._buf,
            offset + _CONFIGURATION_TOTAL_LENGTH,
            self.position - offset,
        )

    def interface(self, interface: InterfaceDescriptor, strings: StringTable) -> None:
        if self._num_interfaces_mark is None:
            raise ConsistencyViolation("interface written outside of a configuration")

        self._buf[self._num_interfaces_mark] += 1
        self._num_endpoints_mark = self.position + _INTERFACE_NUM_ENDPOINTS

        self.write(
            DescriptorType.INTERFACE,
            struct.pack(
                "<7B",
                interface.interface_number,
                interface.alternate_setting,
                0,  # bNumEndpoints
                interface.interface_class,
                interface.interface_sub_class,
                interface.interface_protocol,
                _string_index(strings, interface.interface_string),
            ),
        )

    def endpoint(self, endpoint: EndpointDescriptor) -> None:
        if self._num_endpoints_mark is None:
            raise ConsistencyViolation("endpoint written outside of an interface")

        self._buf[self._num_endpoints_mark] += 1

        self.write(
            DescriptorType.ENDPOINT,
            struct.pack(
                "<BBHB",
                endpoint.address,
                endpoint.attributes,
                endpoint.max_packet_size,
                endpoint.interval,
            ),
        )

    def string(self, string: str) -> None:
        """Writes a string descriptor containing UTF-16LE text."""
        self.write(DescriptorType.STRING, string.encode("utf-16-le"))

    def languages(self, *lang_ids: int) -> None:
        """Writes string descriptor 0, the list of supported language IDs."""
        if not lang_ids:
            lang_ids = (LANG_ID_ENGLISH_US,)

        self.write(DescriptorType.STRING, struct.pack(f"<{len(lang_ids)}H", *lang_ids))

    def finish(self) -> bytes:
        """Completes pending length fields and returns the written descriptors."""
        self._update_configuration_length()
        return bytes(self._buf)


def _string_index(strings: StringTable, string: StringRef) -> int:
    index = strings.index_of(string)

    if index is None:
        raise ConsistencyViolation(f"{string!r} was never added to the string table")

    return index
