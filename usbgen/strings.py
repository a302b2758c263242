# SPDX-License-Identifier: MIT
# Copyright (c) 2024 The usbgen Authors

"""
String descriptor index allocation.
"""

import logging
from typing import Iterator, List, Optional

from usbgen.descriptors import UNSET, StringRef
from usbgen.errors import ConfigurationError

logger = logging.getLogger(__name__)

MAX_STRING_INDEX = 0xFF
"""String indexes are stored in single byte descriptor fields."""


class StringTable:
    """
    Ordered registry that assigns string descriptor indexes.

    Index 0 is always taken by the unset reference, which is where the host
    finds the list of supported languages. Equal references share an index,
    so the order of :meth:`intern` calls alone determines the final indexes.
    """

    def __init__(self) -> None:
        self._strings: List[StringRef] = [UNSET]

    def intern(self, string: StringRef) -> int:
        """
        Gets the index of ``string``, adding it to the table if needed.

        Raises:
            ConfigurationError: The table has no indexes left.
        """
        index = self.index_of(string)

        if index is not None:
            return index

        index = len(self._strings)

        if index > MAX_STRING_INDEX:
            raise ConfigurationError("too many distinct strings")

        self._strings.append(string)
        logger.debug("string %d: %r", index, string)

        return index

    def index_of(self, string: StringRef) -> Optional[int]:
        """Gets the index of ``string`` or ``None`` if it was never interned."""
        try:
            return self._strings.index(string)
        except ValueError:
            return None

    def __len__(self) -> int:
        return len(self._strings)

    def __iter__(self) -> Iterator[StringRef]:
        return iter(self._strings)

    def __getitem__(self, index: int) -> StringRef:
        return self._strings[index]
