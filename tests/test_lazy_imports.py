"""Tests for perch.__init__ — every public name resolves lazily."""

import pytest

import perch
from perch.router import Router


@pytest.mark.parametrize("name", perch.__all__)
def test_all_names_resolve(name: str) -> None:
    obj = getattr(perch, name)
    assert obj is not None, f"perch.{name} resolved to None"


def test_resolves_to_defining_module() -> None:
    assert perch.Router is Router


def test_unknown_name_raises_attribute_error() -> None:
    with pytest.raises(AttributeError, match="no attribute"):
        perch.__getattr__("ThisDoesNotExist")
