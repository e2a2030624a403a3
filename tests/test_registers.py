import pytest

from a64lens.lib.registers import (
    RegisterKind,
    full_width_name,
    is_zero_register,
    lookup_register,
    register_role,
    resolve_alias,
)


@pytest.mark.parametrize(
    "name, width, kind",
    [
        ("x0", 64, RegisterKind.GENERAL),
        ("W5", 32, RegisterKind.GENERAL),
        ("x29", 64, RegisterKind.FRAME),
        ("lr", 64, RegisterKind.LINK),
        ("sp", 64, RegisterKind.STACK),
        ("wzr", 32, RegisterKind.ZERO),
        ("d3", 64, RegisterKind.VECTOR),
        ("q31", 128, RegisterKind.VECTOR),
    ],
)
def test_lookup_register(name, width, kind):
    reg = lookup_register(name)
    assert reg is not None
    assert reg.name == name.lower()
    assert reg.width == width
    assert reg.kind == kind


def test_lookup_register_unknown():
    assert lookup_register("x31") is None
    assert lookup_register("w32") is None
    assert lookup_register("loop") is None
    assert lookup_register("") is None


def test_resolve_alias():
    assert resolve_alias(lookup_register("w3")).name == "x3"
    assert resolve_alias(lookup_register("fp")).name == "x29"
    assert resolve_alias(lookup_register("wsp")).name == "sp"
    assert resolve_alias(lookup_register("s7")).name == "v7"
    assert resolve_alias(lookup_register("x9")).name == "x9"


def test_zero_registers_never_alias_general_registers():
    wzr = lookup_register("wzr")
    xzr = lookup_register("xzr")
    assert is_zero_register(wzr)
    assert is_zero_register(xzr)
    assert wzr.alias_of is None
    assert resolve_alias(wzr) is xzr
    assert not is_zero_register(lookup_register("x30"))
    assert not is_zero_register(lookup_register("sp"))


def test_register_roles():
    assert register_role(lookup_register("x29")) == "frame pointer"
    assert register_role(lookup_register("fp")) == "frame pointer"
    assert register_role(lookup_register("lr")) == "link register"
    assert register_role(lookup_register("sp")) == "stack pointer"
    assert register_role(lookup_register("x0")) is None
    assert full_width_name(lookup_register("w30")) == "x30"
