# SPDX-License-Identifier: MIT
# Copyright (c) 2024 The usbgen Authors

"""
Exceptions raised while building descriptors and endpoint layouts.

All of these are fatal for a firmware build. None of them describe a
transient condition, so callers should not retry.
"""


class Error(Exception):
    """Exception base class for this package."""


class ConfigurationError(Error, ValueError):
    """The device description given by the caller is invalid."""


class ResourceExhausted(Error):
    """Packet memory, endpoint slots or endpoint addresses have run out."""


class ConsistencyViolation(Error):
    """An internal invariant does not hold. This is a bug in this package."""


class UnsupportedFeatureError(Error, NotImplementedError):
    """The requested feature is not implemented for the target hardware."""


class DoubleBufferingNotSupportedError(UnsupportedFeatureError):
    """Double-buffered endpoints cannot be projected to a target configuration yet."""
