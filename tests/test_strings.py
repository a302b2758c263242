import pytest

from usbgen.descriptors import UNSET, StringRef
from usbgen.errors import ConfigurationError
from usbgen.strings import StringTable


def test_unset_is_index_zero():
    strings = StringTable()
    assert len(strings) == 1
    assert strings[0] is UNSET
    assert strings.intern(UNSET) == 0
    assert strings.intern(StringRef.unset()) == 0
    assert len(strings) == 1


def test_intern_is_idempotent():
    strings = StringTable()
    assert strings.intern(StringRef.literal("ACME")) == 1
    assert strings.intern(StringRef.literal("Widget")) == 2
    assert strings.intern(StringRef.literal("ACME")) == 1
    assert len(strings) == 3


def test_external_strings_are_keyed_by_id():
    strings = StringTable()
    assert strings.intern(StringRef.external(7)) == 1
    assert strings.intern(StringRef.external(8)) == 2
    assert strings.intern(StringRef.external(7)) == 1
    # same value, different kind
    assert strings.intern(StringRef.literal("7")) == 3


def test_index_of():
    strings = StringTable()
    strings.intern(StringRef.literal("a"))
    assert strings.index_of(UNSET) == 0
    assert strings.index_of(StringRef.literal("a")) == 1
    assert strings.index_of(StringRef.literal("b")) is None


def test_iteration_order():
    strings = StringTable()
    strings.intern(StringRef.literal("b"))
    strings.intern(StringRef.literal("a"))
    assert list(strings) == [UNSET, StringRef.literal("b"), StringRef.literal("a")]


def test_table_full():
    strings = StringTable()

    for i in range(1, 256):
        assert strings.intern(StringRef.literal(str(i))) == i

    with pytest.raises(ConfigurationError):
        strings.intern(StringRef.literal("one too many"))

    # existing strings can still be looked up
    assert strings.intern(StringRef.literal("1")) == 1
