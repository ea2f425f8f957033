"""Checks on address cells, register layout and bus-specific addressing."""

from __future__ import annotations

import string
import struct
from dataclasses import dataclass
from typing import Optional

from devtree.checks_base import Check, is_multiple_of
from devtree.data import CELL_SIZE
from devtree.tree import DtInfo, Node, Property

I2C_OWN_SLAVE_ADDRESS = 1 << 30
I2C_TEN_BIT_ADDRESS = 1 << 31

_CELL_MASK = 0xFFFFFFFF


@dataclass(frozen=True)
class BusType:
    """A kind of bus a node can be detected to bridge to."""

    name: str


PCI_BUS = BusType("PCI")
SIMPLE_BUS = BusType("simple-bus")
I2C_BUS = BusType("i2c-bus")
SPI_BUS = BusType("spi-bus")


def _prefixeq(name: str, length: int, prefix: str) -> bool:
    """True if the first ``length`` characters of name are exactly prefix."""
    return len(prefix) == length and name[:length] == prefix


def _cells(prop: Property) -> list[int]:
    """All complete 32-bit cells of a property value."""
    raw = bytes(prop.val)
    usable = len(raw) - len(raw) % CELL_SIZE
    return [value for (value,) in struct.iter_unpack(">I", raw[:usable])]


def check_reg_format(check: Check, dti: DtInfo, node: Node) -> None:
    prop = node.get_property("reg")
    if prop is None:
        return

    if node.parent is None:
        check.fail(dti, node, 'Root node has a "reg" property')
        return

    length = len(prop.val)
    if length == 0:
        check.fail(dti, node, "property is empty", prop)

    addr_cells = node.parent.addr_cells_or_default()
    size_cells = node.parent.size_cells_or_default()
    entrylen = (addr_cells + size_cells) * CELL_SIZE

    if not is_multiple_of(length, entrylen):
        check.fail(
            dti,
            node,
            f"property has invalid length ({length} bytes) "
            f"(#address-cells == {addr_cells}, #size-cells == {size_cells})",
            prop,
        )


def check_ranges_format(check: Check, dti: DtInfo, node: Node) -> None:
    """Validate the ranges-style property named by check.data."""
    ranges = check.data
    prop = node.get_property(ranges)
    if prop is None:
        return

    if node.parent is None:
        check.fail(dti, node, f'Root node has a "{ranges}" property', prop)
        return

    p_addr_cells = node.parent.addr_cells_or_default()
    p_size_cells = node.parent.size_cells_or_default()
    c_addr_cells = node.addr_cells_or_default()
    c_size_cells = node.size_cells_or_default()
    entrylen = (p_addr_cells + c_addr_cells + c_size_cells) * CELL_SIZE
    length = len(prop.val)

    if length == 0:
        if p_addr_cells != c_addr_cells:
            check.fail(
                dti,
                node,
                f'empty "{ranges}" property but its #address-cells '
                f"({c_addr_cells}) differs from {node.parent.fullpath} "
                f"({p_addr_cells})",
                prop,
            )
        if p_size_cells != c_size_cells:
            check.fail(
                dti,
                node,
                f'empty "{ranges}" property but its #size-cells '
                f"({c_size_cells}) differs from {node.parent.fullpath} "
                f"({p_size_cells})",
                prop,
            )
    elif not is_multiple_of(length, entrylen):
        check.fail(
            dti,
            node,
            f'"{ranges}" property has invalid length ({length} bytes) '
            f"(parent #address-cells == {p_addr_cells}, "
            f"child #address-cells == {c_addr_cells}, "
            f"#size-cells == {c_size_cells})",
            prop,
        )


def check_pci_bridge(check: Check, dti: DtInfo, node: Node) -> None:
    prop = node.get_property("device_type")
    if prop is None or prop.as_string() != "pci":
        return

    node.bus = PCI_BUS

    basenamelen = node.basenamelen
    if not _prefixeq(node.name, basenamelen, "pci") and not _prefixeq(
        node.name, basenamelen, "pcie"
    ):
        check.fail(dti, node, 'node name is not "pci" or "pcie"')

    if node.get_property("ranges") is None:
        check.fail(dti, node, "missing ranges for PCI bridge (or not a bridge)")

    if node.addr_cells_or_default() != 3:
        check.fail(dti, node, "incorrect #address-cells for PCI bridge")
    if node.size_cells_or_default() != 2:
        check.fail(dti, node, "incorrect #size-cells for PCI bridge")

    prop = node.get_property("bus-range")
    if prop is None:
        return

    if len(prop.val) != CELL_SIZE * 2:
        check.fail(dti, node, "value must be 2 cells", prop)
        return

    first, second = _cells(prop)
    if first > second:
        check.fail(
            dti, node, "1st cell must be less than or equal to 2nd cell", prop
        )
    if second > 0xFF:
        check.fail(dti, node, "maximum bus number must be less than 256", prop)


def check_pci_device_bus_num(check: Check, dti: DtInfo, node: Node) -> None:
    if node.parent is None or node.parent.bus is not PCI_BUS:
        return

    prop = node.get_property("reg")
    if prop is None:
        return
    reg_cells = _cells(prop)
    if not reg_cells:
        return
    bus_num = (reg_cells[0] & 0x00FF0000) >> 16

    range_prop: Optional[Property] = node.parent.get_property("bus-range")
    if range_prop is None:
        min_bus = max_bus = 0
    else:
        range_cells = _cells(range_prop)
        if len(range_cells) < 2:
            return
        min_bus, max_bus = range_cells[0], range_cells[1]

    if bus_num < min_bus or bus_num > max_bus:
        check.fail(
            dti,
            node,
            f"PCI bus number {bus_num} out of range, "
            f"expected ({min_bus} - {max_bus})",
            range_prop,
        )


def check_pci_device_reg(check: Check, dti: DtInfo, node: Node) -> None:
    if node.parent is None or node.parent.bus is not PCI_BUS:
        return

    prop = node.get_property("reg")
    if prop is None:
        return
    cells = _cells(prop)
    if len(cells) < 3:
        return

    if cells[1] or cells[2]:
        check.fail(
            dti, node, "PCI reg config space address cells 2 and 3 must be 0", prop
        )

    reg = cells[0]
    dev = (reg & 0xF800) >> 11
    func = (reg & 0x700) >> 8

    if reg & 0xFF000000:
        check.fail(dti, node, "PCI reg address is not configuration space", prop)
    if reg & 0x000000FF:
        check.fail(
            dti,
            node,
            "PCI reg config space address register number must be 0",
            prop,
        )

    unitname = node.unitname
    if func == 0 and unitname == f"{dev:x}":
        return

    expected = f"{dev:x},{func:x}"
    if unitname == expected:
        return

    check.fail(dti, node, f'PCI unit address format error, expected "{expected}"')


def node_is_compatible(node: Node, compat: str) -> bool:
    """True if the node's compatible list contains the given string."""
    prop = node.get_property("compatible")
    if prop is None:
        return False
    raw = bytes(prop.val)
    if not raw:
        return False
    entries = raw.split(b"\0")
    if raw.endswith(b"\0"):
        entries = entries[:-1]
    wanted = compat.encode()
    return any(entry == wanted for entry in entries)


def check_simple_bus_bridge(check: Check, dti: DtInfo, node: Node) -> None:
    if node_is_compatible(node, "simple-bus"):
        node.bus = SIMPLE_BUS


def check_simple_bus_reg(check: Check, dti: DtInfo, node: Node) -> None:
    if node.parent is None or node.parent.bus is not SIMPLE_BUS:
        return

    cells: Optional[list[int]] = None
    prop = node.get_property("reg")
    if prop is not None:
        if len(prop.val):
            cells = _cells(prop)
    else:
        prop = node.get_property("ranges")
        if prop is not None and len(prop.val):
            # Skip over the child address.
            cells = _cells(prop)[node.addr_cells_or_default():]

    if cells is None:
        if node.parent.parent is not None and node.bus is not SIMPLE_BUS:
            check.fail(dti, node, "missing or empty reg/ranges property")
        return

    size = node.parent.addr_cells_or_default()
    if len(cells) < size:
        return
    reg = 0
    for cell in cells[:size]:
        reg = ((reg << 32) | cell) & 0xFFFFFFFFFFFFFFFF

    expected = f"{reg:x}"
    if node.unitname != expected:
        check.fail(
            dti,
            node,
            f'simple-bus unit address format error, expected "{expected}"',
        )


def check_i2c_bus_bridge(check: Check, dti: DtInfo, node: Node) -> None:
    basenamelen = node.basenamelen
    if _prefixeq(node.name, basenamelen, "i2c-bus") or _prefixeq(
        node.name, basenamelen, "i2c-arb"
    ):
        node.bus = I2C_BUS
    elif _prefixeq(node.name, basenamelen, "i2c"):
        if any(
            _prefixeq(child.name, basenamelen, "i2c-bus") for child in node.children
        ):
            return
        node.bus = I2C_BUS
    else:
        return

    if not node.children:
        return

    if node.addr_cells_or_default() != 1:
        check.fail(dti, node, "incorrect #address-cells for I2C bus")
    if node.size_cells_or_default() != 0:
        check.fail(dti, node, "incorrect #size-cells for I2C bus")


def check_i2c_bus_reg(check: Check, dti: DtInfo, node: Node) -> None:
    if node.parent is None or node.parent.bus is not I2C_BUS:
        return

    prop = node.get_property("reg")
    cells = _cells(prop) if prop is not None else []
    if prop is None or not cells:
        check.fail(dti, node, "missing or empty reg property")
        return

    keep = _CELL_MASK ^ I2C_OWN_SLAVE_ADDRESS
    expected = f"{cells[0] & keep:x}"
    if node.unitname != expected:
        check.fail(
            dti, node, f'I2C bus unit address format error, expected "{expected}"'
        )

    for cell in cells:
        reg = cell & keep
        if reg & I2C_TEN_BIT_ADDRESS:
            if (reg & (_CELL_MASK ^ I2C_TEN_BIT_ADDRESS)) > 0x3FF:
                check.fail(
                    dti,
                    node,
                    f'I2C address must be less than 10-bits, got "0x{reg:x}"',
                    prop,
                )
        elif reg > 0x7F:
            check.fail(
                dti,
                node,
                f'I2C address must be less than 7-bits, got "0x{reg:x}". '
                "Set I2C_TEN_BIT_ADDRESS for 10 bit addresses or fix the property",
                prop,
            )


def check_spi_bus_bridge(check: Check, dti: DtInfo, node: Node) -> None:
    spi_addr_cells = 1

    if _prefixeq(node.name, node.basenamelen, "spi"):
        node.bus = SPI_BUS
    else:
        # Try to detect SPI buses which lack the proper node name.
        if node.addr_cells_or_default() != 1 or node.size_cells_or_default() != 0:
            return
        if any(
            prop.name.startswith("spi-")
            for child in node.children
            for prop in child.properties
        ):
            node.bus = SPI_BUS
        if node.bus is SPI_BUS and node.get_property("reg") is not None:
            check.fail(dti, node, "node name for SPI buses should be 'spi'")

    if node.bus is not SPI_BUS or not node.children:
        return

    if node.get_property("spi-slave") is not None:
        spi_addr_cells = 0
    if node.addr_cells_or_default() != spi_addr_cells:
        check.fail(dti, node, "incorrect #address-cells for SPI bus")
    if node.size_cells_or_default() != 0:
        check.fail(dti, node, "incorrect #size-cells for SPI bus")


def check_spi_bus_reg(check: Check, dti: DtInfo, node: Node) -> None:
    if node.parent is None or node.parent.bus is not SPI_BUS:
        return

    if node.parent.get_property("spi-slave") is not None:
        return

    prop = node.get_property("reg")
    cells = _cells(prop) if prop is not None else []
    if not cells:
        check.fail(dti, node, "missing or empty reg property")
        return

    expected = f"{cells[0]:x}"
    if node.unitname != expected:
        check.fail(
            dti, node, f'SPI bus unit address format error, expected "{expected}"'
        )


def check_unit_address_format(check: Check, dti: DtInfo, node: Node) -> None:
    if node.parent is not None and node.parent.bus is not None:
        return

    unitname = node.unitname
    if not unitname:
        return

    if unitname.startswith("0x"):
        check.fail(dti, node, 'unit name should not have leading "0x"')
        unitname = unitname[2:]
    if (
        len(unitname) > 1
        and unitname[0] == "0"
        and unitname[1] in string.hexdigits
    ):
        check.fail(dti, node, "unit name should not have leading 0s")


def check_avoid_default_addr_size(check: Check, dti: DtInfo, node: Node) -> None:
    if node.parent is None:
        return

    if node.get_property("reg") is None and node.get_property("ranges") is None:
        return

    if node.parent.addr_cells == -1:
        check.fail(dti, node, "Relying on default #address-cells value")
    if node.parent.size_cells == -1:
        check.fail(dti, node, "Relying on default #size-cells value")


def check_avoid_unnecessary_addr_size(
    check: Check, dti: DtInfo, node: Node
) -> None:
    if node.parent is None or node.addr_cells < 0 or node.size_cells < 0:
        return

    if (
        node.get_property("ranges") is not None
        or node.get_property("dma-ranges") is not None
        or not node.children
    ):
        return

    if not any(child.get_property("reg") is not None for child in node.children):
        check.fail(
            dti,
            node,
            "unnecessary #address-cells/#size-cells without "
            '"ranges", "dma-ranges" or child "reg" property',
        )


def node_is_disabled(node: Node) -> bool:
    """True if the node's status property says "disabled"."""
    prop = node.get_property("status")
    return prop is not None and prop.as_string() == "disabled"


def _check_unique_unit_address_common(
    check: Check, dti: DtInfo, node: Node, disable_check: bool
) -> None:
    if node.addr_cells < 0 or node.size_cells < 0:
        return

    children = node.children
    for childa in children:
        addr_a = childa.unitname
        if not addr_a:
            continue
        if disable_check and node_is_disabled(childa):
            continue
        for childb in children:
            if childb is childa:
                break
            if disable_check and node_is_disabled(childb):
                continue
            if childb.unitname == addr_a:
                check.fail(
                    dti,
                    childb,
                    f"duplicate unit-address (also used in node {childa.fullpath})",
                )


def check_unique_unit_address(check: Check, dti: DtInfo, node: Node) -> None:
    _check_unique_unit_address_common(check, dti, node, False)


def check_unique_unit_address_if_enabled(
    check: Check, dti: DtInfo, node: Node
) -> None:
    _check_unique_unit_address_common(check, dti, node, True)