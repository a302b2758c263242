from usbgen.allocator import DeviceAllocator
from usbgen.builder import DeviceBuilder, EndpointBuilder
from usbgen.cdc import USB_CLASS_CDC, CdcDescriptorSubtype, create_cdc_function
from usbgen.descriptors import (
    Direction,
    EndpointAddress,
    EndpointDescriptor,
    EndpointType,
)


def _serial_device():
    allocator = DeviceAllocator()
    device = DeviceBuilder(0x1209, 0x0001).allocate(allocator)

    comm_ep = (
        EndpointBuilder()
        .ep_type(EndpointType.INTERRUPT)
        .direction(Direction.IN)
        .max_packet_size(8)
        .allocate(allocator)
    )
    read_ep = (
        EndpointBuilder()
        .ep_type(EndpointType.BULK)
        .direction(Direction.OUT)
        .max_packet_size(64)
        .allocate(allocator)
    )
    write_ep = (
        EndpointBuilder()
        .ep_type(EndpointType.BULK)
        .direction(Direction.IN)
        .max_packet_size(64)
        .allocate(allocator)
    )

    return device, comm_ep, read_ep, write_ep


def test_subtypes():
    assert CdcDescriptorSubtype.HEADER == 0x00
    assert CdcDescriptorSubtype.CALL_MANAGEMENT == 0x01
    assert CdcDescriptorSubtype.ACM == 0x02
    assert CdcDescriptorSubtype.UNION == 0x06


def test_create_cdc_function():
    device, comm_ep, read_ep, write_ep = _serial_device()

    assert create_cdc_function(device, comm_ep, read_ep, write_ep) == (0, 1)

    data = device.build().configuration_descriptor

    # fmt: off
    assert data == bytes([
        # configuration
        9, 2, 67, 0, 2, 1, 0, 0x80, 50,
        # communications interface
        9, 4, 0, 0, 1, 0x02, 0x02, 0x01, 0,
        # header
        5, 0x24, 0x00, 0x10, 0x01,
        # call management
        5, 0x24, 0x01, 0x00, 1,
        # abstract control management
        4, 0x24, 0x02, 0x00,
        # union
        5, 0x24, 0x06, 0, 1,
        # notification endpoint
        7, 5, 0x81, 3, 8, 0, 0,
        # data interface
        9, 4, 1, 0, 2, 0x0A, 0, 0, 0,
        # write endpoint
        7, 5, 0x82, 2, 64, 0, 0,
        # read endpoint
        7, 5, 0x02, 2, 64, 0, 0,
    ])
    # fmt: on


def test_interface_numbers_follow_existing_interfaces():
    device, comm_ep, read_ep, write_ep = _serial_device()
    (
        device.alloc_interface()
        .interface_class(0xFF)
        .endpoint(EndpointDescriptor(EndpointAddress(0x83), EndpointType.BULK, 64))
        .save(device)
    )

    assert create_cdc_function(device, comm_ep, read_ep, write_ep) == (1, 2)

    data = device.build().configuration_descriptor
    assert data[4] == 3

    # union descriptor names the communications and data interface
    union = data.index(bytes([5, 0x24, CdcDescriptorSubtype.UNION]))
    assert data[union + 3 : union + 5] == bytes([1, 2])


def test_device_class_untouched():
    device, comm_ep, read_ep, write_ep = _serial_device()
    create_cdc_function(device, comm_ep, read_ep, write_ep)

    config = device.build()
    assert config.device_descriptor[4] == 0
    assert config.configuration_descriptor[9 + 5] == USB_CLASS_CDC
