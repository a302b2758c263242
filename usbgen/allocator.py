# SPDX-License-Identifier: MIT
# Copyright (c) 2024 The usbgen Authors

"""
Endpoint resource allocation for USB peripherals with a dedicated packet
memory, such as the one found in STM32F1 microcontrollers.

The packet memory holds one 8 byte buffer descriptor table entry per hardware
endpoint and the packet buffers themselves. Table entries are taken from the
bottom of the memory upwards and buffers from the top downwards. Nothing is
ever freed, since the layout is fixed for the lifetime of the firmware.
"""

import logging
from typing import List, NamedTuple, Optional, Tuple

from usbgen.descriptors import USB_MAX_ENDPOINTS, Direction, EndpointType
from usbgen.errors import ConfigurationError, ResourceExhausted

logger = logging.getLogger(__name__)

PACKET_MEMORY_SIZE = 512
"""Size of the packet memory in bytes."""

DEVICE_ENDPOINT_COUNT = 8
"""Number of hardware endpoint slots, including the control endpoint."""

BUFFER_DESCRIPTOR_SIZE = 8
"""Size of one buffer descriptor table entry in bytes."""

MAX_PACKET_SIZE = 1024
"""Largest packet size that can be received."""

CONTROL_PACKET_SIZES = (8, 16, 32, 64)
"""Allowed maximum packet sizes for endpoint 0."""

BUFFER_TX = 0
"""Index of the transmit buffer (or the first of two double buffers)."""

BUFFER_RX = 1
"""Index of the receive buffer (or the second of two double buffers)."""

COUNT_RX_BLSIZE = 0x8000
"""Receive count flag that selects 32 byte granularity."""

COUNT_RX_NUM_BLOCK_SHIFT = 10


def rx_size_class(max_packet_size: int) -> Tuple[int, int]:
    """
    Computes the receive buffer size for a maximum packet size.

    The hardware can only describe receive buffers as a number of 2 byte
    blocks (up to 62 bytes) or as a number of 32 byte blocks (up to 1024
    bytes), so the size is rounded up to the next block.

    Args:
        max_packet_size: The largest packet the endpoint receives.

    Returns:
        Tuple of the buffer size in bytes and the value for the block size and
        number of blocks bits of the receive count register.

    Raises:
        ConfigurationError: ``max_packet_size`` is larger than 1024.
    """
    if max_packet_size < 0:
        raise ConfigurationError(f"invalid packet size: {max_packet_size}")

    if max_packet_size <= 62:
        # units of 2 bytes, 0 = 0 bytes
        size = (max_packet_size + 1) & ~0x01
        return size, (size >> 1) << COUNT_RX_NUM_BLOCK_SHIFT

    if max_packet_size <= MAX_PACKET_SIZE:
        # units of 32 bytes, 0 = 32 bytes
        size = (max_packet_size + 31) & ~0x1F
        return size, COUNT_RX_BLSIZE | (((size >> 5) - 1) << COUNT_RX_NUM_BLOCK_SHIFT)

    raise ConfigurationError(
        f"packet size is too big - {max_packet_size} bytes (max {MAX_PACKET_SIZE})"
    )


class MemoryAllocation(NamedTuple):
    """A region of the packet memory."""

    address: int
    """Byte offset from the start of the packet memory."""
    size: int
    """Size in bytes."""


class EndpointAllocation:
    """
    Hardware resources of one endpoint slot.

    A slot serves both directions of one endpoint number. It can be shared by
    an IN and an OUT endpoint of the same type unless it is double-buffered.
    """

    def __init__(
        self,
        address_index: int,
        ep_type: EndpointType,
        buffer_descriptor: MemoryAllocation,
    ) -> None:
        self.address_index = address_index
        self.ep_type = ep_type
        self.tx_enabled = False
        self.rx_enabled = False
        self.double_buffered = False
        self.buffer_descriptor = buffer_descriptor
        self.buffers: List[Optional[MemoryAllocation]] = [None, None]

    def has_direction(self, direction: Direction) -> bool:
        """Tests if the half of the slot serving ``direction`` is in use."""
        if direction == Direction.IN:
            return self.tx_enabled

        return self.rx_enabled

    def has_space(self, ep_type: EndpointType, direction: Direction) -> bool:
        """Tests if an endpoint of the given type and direction can share this slot."""
        if self.ep_type != ep_type or self.double_buffered:
            return False

        return not self.has_direction(direction)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}({self.address_index}, {self.ep_type!r}, "
            f"tx={self.tx_enabled}, rx={self.rx_enabled}, "
            f"double_buffered={self.double_buffered})"
        )


class DeviceAllocator:
    """
    Assigns endpoint numbers and packet memory to the endpoints of a device.

    Results only depend on the order of the calls, so the same sequence of
    calls always produces the same layout.
    """

    def __init__(self) -> None:
        self._endpoints: List[EndpointAllocation] = []
        self._start_address = 0
        self._end_address = PACKET_MEMORY_SIZE

    @property
    def endpoints(self) -> Tuple[EndpointAllocation, ...]:
        """Gets the allocated endpoint slots in order of allocation."""
        return tuple(self._endpoints)

    @property
    def start_address(self) -> int:
        """Gets the end of the buffer descriptor table."""
        return self._start_address

    @property
    def end_address(self) -> int:
        """Gets the start of the lowest packet buffer."""
        return self._end_address

    @property
    def free_space(self) -> int:
        """Gets the number of unallocated bytes of packet memory."""
        return self._end_address - self._start_address

    def find(self, address_index: int) -> Optional[EndpointAllocation]:
        """Gets the slot with the given endpoint number, if any."""
        for ep in self._endpoints:
            if ep.address_index == address_index:
                return ep

        return None

    def reserve_descriptor_entry(self) -> MemoryAllocation:
        """
        Reserves the next buffer descriptor table entry.

        Raises:
            ResourceExhausted: The packet memory is full.
        """
        assert self._start_address % BUFFER_DESCRIPTOR_SIZE == 0

        size = BUFFER_DESCRIPTOR_SIZE

        if size > self.free_space:
            raise ResourceExhausted(
                "can't allocate buffer descriptor: not enough packet memory"
            )

        address = self._start_address
        self._start_address += size

        return MemoryAllocation(address, size)

    def reserve_buffer(self, size: int) -> MemoryAllocation:
        """
        Reserves a packet buffer of at least ``size`` bytes.

        Buffers are 16-bit aligned, so odd sizes are rounded up.

        Raises:
            ResourceExhausted: The packet memory is full.
        """
        size = (size + 1) & ~0x01

        if size > self.free_space:
            raise ResourceExhausted(
                f"can't allocate {size} byte endpoint buffer: "
                f"only {self.free_space} bytes of packet memory left"
            )

        self._end_address -= size
        logger.debug("buffer at 0x%03X, %d bytes", self._end_address, size)

        return MemoryAllocation(self._end_address, size)

    def _buffer_size(self, direction: Direction, max_packet_size: int) -> int:
        if direction == Direction.IN:
            # TX buffers only need 16-bit alignment
            return (max_packet_size + 1) & ~0x01

        size, _ = rx_size_class(max_packet_size)
        return size

    def _reserve_buffer_for(
        self, direction: Direction, max_packet_size: int
    ) -> MemoryAllocation:
        return self.reserve_buffer(self._buffer_size(direction, max_packet_size))

    def _check_free_space(self, size: int) -> None:
        if size > self.free_space:
            raise ResourceExhausted(
                f"can't allocate endpoint: needs {size} bytes of packet memory, "
                f"only {self.free_space} bytes left"
            )

    def find_free_address(self) -> int:
        """
        Gets the lowest endpoint number that is not used by any slot.

        Endpoint 0 is never returned since it is reserved for control.

        Raises:
            ResourceExhausted: All endpoint numbers are in use.
        """
        for index in range(1, USB_MAX_ENDPOINTS):
            if self.find(index) is None:
                return index

        raise ResourceExhausted("all endpoint addresses are already allocated")

    def new_empty_slot(
        self, ep_type: EndpointType, address_index: Optional[int] = None
    ) -> EndpointAllocation:
        """
        Creates a slot with a buffer descriptor table entry and no buffers.

        The control endpoint slot counts towards :data:`DEVICE_ENDPOINT_COUNT`.

        Args:
            ep_type: The endpoint type of the slot.
            address_index: Endpoint number to use or ``None`` for the lowest
                free number.

        Raises:
            ResourceExhausted:
                All slots, endpoint numbers or packet memory are used up.
        """
        if len(self._endpoints) >= DEVICE_ENDPOINT_COUNT:
            raise ResourceExhausted(
                f"can't allocate endpoint: all {DEVICE_ENDPOINT_COUNT} "
                "endpoint slots are in use"
            )

        if address_index is None:
            address_index = self.find_free_address()

        ep = EndpointAllocation(address_index, ep_type, self.reserve_descriptor_entry())
        self._endpoints.append(ep)

        logger.debug(
            "endpoint slot %d (%s), descriptor at 0x%03X",
            address_index,
            ep_type.name,
            ep.buffer_descriptor.address,
        )

        return ep

    def _pinned_slot(
        self,
        address_index: int,
        ep_type: EndpointType,
        direction: Direction,
        double_buffered: bool,
    ) -> Optional[EndpointAllocation]:
        if address_index == 0:
            raise ConfigurationError("endpoint 0 is reserved for the control endpoint")

        if not 0 < address_index < USB_MAX_ENDPOINTS:
            raise ConfigurationError(f"endpoint number out of range: {address_index}")

        ep = self.find(address_index)

        if ep is None:
            return None

        if double_buffered or ep.double_buffered or ep.has_direction(direction):
            raise ConfigurationError(
                f"endpoint {address_index} {direction.name} already exists"
            )

        if ep.ep_type != ep_type:
            raise ConfigurationError(
                f"endpoint {address_index} is {ep.ep_type.name}, not {ep_type.name}"
            )

        return ep

    def _shared_slot(
        self, ep_type: EndpointType, direction: Direction, double_buffered: bool
    ) -> Optional[EndpointAllocation]:
        # a double-buffered endpoint needs both halves of a slot
        if double_buffered:
            return None

        for ep in self._endpoints:
            if ep.has_space(ep_type, direction):
                return ep

        return None

    def allocate(self, endpoint, double_buffered: bool = False):
        """
        Allocates resources for an endpoint.

        Nothing is reserved if the endpoint can't be allocated.

        Args:
            endpoint:
                An endpoint builder with at least the type, direction and
                maximum packet size set. If it has a number, that number is
                used, otherwise a number is chosen.
            double_buffered:
                If ``True``, two buffers are reserved for the endpoint and the
                slot is not shared with an endpoint of the opposite direction.

        Returns:
            The endpoint builder with its number set.

        Raises:
            ConfigurationError:
                A required field is not set or the requested endpoint number
                can't be used.
            ResourceExhausted:
                Slots, endpoint numbers or packet memory are used up.
        """
        spec = endpoint.spec

        if spec.ep_type is None:
            raise ConfigurationError("endpoint type is not set")

        if spec.direction is None:
            raise ConfigurationError("endpoint direction is not set")

        if spec.max_packet_size is None:
            raise ConfigurationError("max packet size is not set")

        ep_type = EndpointType(spec.ep_type)
        direction = Direction(spec.direction)
        max_packet_size = spec.max_packet_size

        if ep_type == EndpointType.CONTROL:
            raise ConfigurationError("only endpoint 0 can be a control endpoint")

        buffer_size = self._buffer_size(direction, max_packet_size)

        if spec.number is None:
            ep = self._shared_slot(ep_type, direction, double_buffered)
        else:
            ep = self._pinned_slot(spec.number, ep_type, direction, double_buffered)

        needed = buffer_size * (2 if double_buffered else 1)

        if ep is None:
            self._check_free_space(needed + BUFFER_DESCRIPTOR_SIZE)
            ep = self.new_empty_slot(ep_type, spec.number)
        else:
            self._check_free_space(needed)

        if double_buffered:
            ep.buffers[0] = self.reserve_buffer(buffer_size)
            ep.buffers[1] = self.reserve_buffer(buffer_size)
            ep.tx_enabled = direction == Direction.IN
            ep.rx_enabled = direction == Direction.OUT
            ep.double_buffered = True
        elif direction == Direction.IN:
            ep.buffers[BUFFER_TX] = self.reserve_buffer(buffer_size)
            ep.tx_enabled = True
        else:
            ep.buffers[BUFFER_RX] = self.reserve_buffer(buffer_size)
            ep.rx_enabled = True

        logger.debug(
            "allocated endpoint %d %s %s (max packet size %d%s)",
            ep.address_index,
            direction.name,
            ep_type.name,
            max_packet_size,
            ", double-buffered" if double_buffered else "",
        )

        if spec.number is None:
            return endpoint.number(ep.address_index)

        return endpoint

    def allocate_control_endpoint(self, max_packet_size_0: int) -> EndpointAllocation:
        """
        Allocates endpoint 0 for control transfers.

        Both directions share the single maximum packet size. The slot limit
        is not checked here, so endpoint 0 can always be added.

        Raises:
            ConfigurationError:
                ``max_packet_size_0`` is not valid or endpoint 0 is already
                allocated.
            ResourceExhausted: The packet memory is full.
        """
        if max_packet_size_0 not in CONTROL_PACKET_SIZES:
            raise ConfigurationError(f"invalid max_packet_size_0: {max_packet_size_0}")

        if self.find(0) is not None:
            raise ConfigurationError("endpoint 0 is already allocated")

        tx_size = self._buffer_size(Direction.IN, max_packet_size_0)
        rx_size = self._buffer_size(Direction.OUT, max_packet_size_0)
        self._check_free_space(BUFFER_DESCRIPTOR_SIZE + tx_size + rx_size)

        ep = EndpointAllocation(
            0, EndpointType.CONTROL, self.reserve_descriptor_entry()
        )
        ep.buffers[BUFFER_TX] = self.reserve_buffer(tx_size)
        ep.buffers[BUFFER_RX] = self.reserve_buffer(rx_size)
        ep.tx_enabled = True
        ep.rx_enabled = True
        self._endpoints.append(ep)

        logger.debug(
            "allocated control endpoint (max packet size %d)", max_packet_size_0
        )

        return ep
