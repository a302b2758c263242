# SPDX-License-Identifier: MIT
# Copyright (c) 2024 The usbgen Authors

"""
Conversion of endpoint allocations into the values a peripheral driver
programs into the hardware.

Packet memory offsets and sizes are given in 16-bit words, which is how the
peripheral addresses its packet memory.
"""

import logging
from typing import NamedTuple, Optional, Tuple

from usbgen.allocator import (
    BUFFER_RX,
    BUFFER_TX,
    DeviceAllocator,
    EndpointAllocation,
    MemoryAllocation,
    rx_size_class,
)
from usbgen.descriptors import USB_MAX_ENDPOINTS, EndpointType
from usbgen.errors import ConsistencyViolation, DoubleBufferingNotSupportedError

logger = logging.getLogger(__name__)


class TargetBufferConfiguration(NamedTuple):
    """Location of one packet buffer."""

    offset: int
    """Offset in the packet memory in 16-bit words."""
    size: int
    """Size in 16-bit words."""
    count_rx: int = 0
    """Receive count register value (block size and number of blocks), 0 for TX."""


class TargetEndpointConfiguration(NamedTuple):
    """Everything needed to set up one hardware endpoint."""

    address_index: int
    ep_type: EndpointType
    tx_enabled: bool
    rx_enabled: bool
    descriptor_offset: int
    """Byte offset of the buffer descriptor table entry."""
    tx_buffer: Optional[TargetBufferConfiguration]
    rx_buffer: Optional[TargetBufferConfiguration]


class TargetDeviceConfiguration(NamedTuple):
    """Hardware configuration of all endpoints, ordered by endpoint number."""

    endpoints: Tuple[TargetEndpointConfiguration, ...]

    def endpoint(self, address_index: int) -> TargetEndpointConfiguration:
        """
        Gets the configuration of an endpoint number.

        Raises:
            KeyError: The endpoint number is not allocated.
        """
        for ep in self.endpoints:
            if ep.address_index == address_index:
                return ep

        raise KeyError(address_index)


def _tx_buffer(
    buffer: Optional[MemoryAllocation],
) -> Optional[TargetBufferConfiguration]:
    if buffer is None:
        return None

    return TargetBufferConfiguration(buffer.address >> 1, buffer.size >> 1)


def _rx_buffer(
    buffer: Optional[MemoryAllocation],
) -> Optional[TargetBufferConfiguration]:
    if buffer is None:
        return None

    size, count_rx = rx_size_class(buffer.size)

    if size != buffer.size:
        raise ConsistencyViolation(
            f"receive buffer at 0x{buffer.address:03X} has {buffer.size} bytes "
            f"but the receive count describes {size} bytes"
        )

    return TargetBufferConfiguration(buffer.address >> 1, buffer.size >> 1, count_rx)


def project_endpoint(ep: EndpointAllocation) -> TargetEndpointConfiguration:
    """
    Converts an endpoint allocation to a hardware configuration.

    Raises:
        DoubleBufferingNotSupportedError: The endpoint is double-buffered.
        ConsistencyViolation: The allocation is not valid for the hardware.
    """
    if ep.double_buffered:
        raise DoubleBufferingNotSupportedError(
            f"endpoint {ep.address_index} is double-buffered"
        )

    if not 0 <= ep.address_index < USB_MAX_ENDPOINTS:
        raise ConsistencyViolation(f"endpoint number out of range: {ep.address_index}")

    return TargetEndpointConfiguration(
        ep.address_index,
        ep.ep_type,
        ep.tx_enabled,
        ep.rx_enabled,
        ep.buffer_descriptor.address,
        _tx_buffer(ep.buffers[BUFFER_TX]),
        _rx_buffer(ep.buffers[BUFFER_RX]),
    )


def project(allocator: DeviceAllocator) -> TargetDeviceConfiguration:
    """
    Converts all endpoint allocations to a hardware configuration.

    Raises:
        DoubleBufferingNotSupportedError: An endpoint is double-buffered.
        ConsistencyViolation: An allocation is not valid for the hardware.
    """
    endpoints = tuple(
        project_endpoint(ep)
        for ep in sorted(allocator.endpoints, key=lambda ep: ep.address_index)
    )

    logger.debug(
        "projected %d endpoints, %d bytes of packet memory unused",
        len(endpoints),
        allocator.free_space,
    )

    return TargetDeviceConfiguration(endpoints)
