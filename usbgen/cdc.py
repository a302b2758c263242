# SPDX-License-Identifier: MIT
# Copyright (c) 2024 The usbgen Authors

"""
USB Communications Device Class (CDC) Abstract Control Model function, the
class used by virtual serial ports.
"""

from enum import IntEnum
from typing import Tuple

from usbgen.builder import DeviceBuilder
from usbgen.descriptors import endpoint_info

USB_CLASS_CDC = 0x02
USB_CLASS_DATA = 0x0A

CDC_SUBCLASS_ACM = 0x02
CDC_PROTOCOL_AT = 0x01

CS_INTERFACE = 0x24
"""Descriptor type of class-specific interface descriptors."""

CDC_VERSION = 0x0110
"""``bcdCDC`` of the header functional descriptor."""


class CdcDescriptorSubtype(IntEnum):
    """Functional descriptor subtypes, stored in ``bDescriptorSubtype``."""

    HEADER = 0x00
    CALL_MANAGEMENT = 0x01
    ACM = 0x02
    UNION = 0x06


def create_cdc_function(
    device: DeviceBuilder, comm_ep, read_ep, write_ep
) -> Tuple[int, int]:
    """
    Adds the two interfaces of a CDC-ACM function to a device.

    Args:
        device: The device.
        comm_ep: Interrupt IN endpoint for notifications.
        read_ep: Bulk OUT endpoint for data from the host.
        write_ep: Bulk IN endpoint for data to the host.

    Returns:
        The communications and the data interface numbers.
    """
    comm_if = device.alloc_interface()
    data_if = device.alloc_interface()
    comm_if_id = comm_if.interface_number
    data_if_id = data_if.interface_number

    (
        comm_if.interface_class(USB_CLASS_CDC)
        .interface_sub_class(CDC_SUBCLASS_ACM)
        .interface_protocol(CDC_PROTOCOL_AT)
        .custom_descriptor(
            CS_INTERFACE,
            bytes([CdcDescriptorSubtype.HEADER]) + CDC_VERSION.to_bytes(2, "little"),
        )
        .custom_descriptor(
            CS_INTERFACE,
            bytes([CdcDescriptorSubtype.CALL_MANAGEMENT, 0x00, data_if_id]),
        )
        .custom_descriptor(CS_INTERFACE, bytes([CdcDescriptorSubtype.ACM, 0x00]))
        .custom_descriptor(
            CS_INTERFACE, bytes([CdcDescriptorSubtype.UNION, comm_if_id, data_if_id])
        )
        .endpoint(endpoint_info(comm_ep))
        .save(device)
    )

    (
        data_if.interface_class(USB_CLASS_DATA)
        .endpoint(endpoint_info(write_ep))
        .endpoint(endpoint_info(read_ep))
        .save(device)
    )

    return comm_if_id, data_if_id
