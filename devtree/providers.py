"""Checks on /chosen, phandle-with-arguments properties, interrupts and graphs."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from devtree.buses import BusType
from devtree.checks_base import Check, is_multiple_of
from devtree.data import CELL_SIZE, MarkerType
from devtree.structural import check_is_string
from devtree.tree import DtInfo, Node, Property, phandle_is_valid

GRAPH_PORT_BUS = BusType("graph-port")
GRAPH_PORTS_BUS = BusType("graph-ports")


@dataclass(frozen=True)
class Provider:
    """A consumer property and the provider property giving its argument count."""

    prop_name: str
    cell_name: str
    optional: bool = False


# Consumer properties checked against their providers, keyed by check prefix.
PHANDLE_PROVIDERS: dict[str, Provider] = {
    "clocks": Provider("clocks", "#clock-cells"),
    "cooling_device": Provider("cooling-device", "#cooling-cells"),
    "dmas": Provider("dmas", "#dma-cells"),
    "hwlocks": Provider("hwlocks", "#hwlock-cells"),
    "interrupts_extended": Provider("interrupts-extended", "#interrupt-cells"),
    "io_channels": Provider("io-channels", "#io-channel-cells"),
    "iommus": Provider("iommus", "#iommu-cells"),
    "mboxes": Provider("mboxes", "#mbox-cells"),
    "msi_parent": Provider("msi-parent", "#msi-cells", True),
    "mux_controls": Provider("mux-controls", "#mux-control-cells"),
    "phys": Provider("phys", "#phy-cells"),
    "power_domains": Provider("power-domains", "#power-domain-cells"),
    "pwms": Provider("pwms", "#pwm-cells"),
    "resets": Provider("resets", "#reset-cells"),
    "sound_dai": Provider("sound-dai", "#sound-dai-cells"),
    "thermal_sensors": Provider("thermal-sensors", "#thermal-sensor-cells"),
}


def _prefixeq(name: str, length: int, prefix: str) -> bool:
    return len(prefix) == length and name[:length] == prefix


def _signed(value: int) -> int:
    return value - (1 << 32) if value & 0x80000000 else value


def check_obsolete_chosen_interrupt_controller(
    check: Check, dti: DtInfo, node: Node
) -> None:
    if node is not dti.dt:
        return
    chosen = dti.get_node_by_path("/chosen")
    if chosen is None:
        return
    prop = chosen.get_property("interrupt-controller")
    if prop is not None:
        check.fail(
            dti, node, '/chosen has obsolete "interrupt-controller" property', prop
        )


def check_chosen_node_is_root(check: Check, dti: DtInfo, node: Node) -> None:
    if node.name != "chosen":
        return
    if node.parent is not dti.dt:
        check.fail(dti, node, "chosen node must be at root node")


def check_chosen_node_bootargs(check: Check, dti: DtInfo, node: Node) -> None:
    if node.name != "chosen":
        return
    prop = node.get_property("bootargs")
    if prop is None:
        return
    check.data = prop.name
    check_is_string(check, dti, node)


def check_chosen_node_stdout_path(check: Check, dti: DtInfo, node: Node) -> None:
    if node.name != "chosen":
        return
    prop = node.get_property("stdout-path")
    if prop is None:
        prop = node.get_property("linux,stdout-path")
        if prop is None:
            return
        check.fail(dti, node, "Use 'stdout-path' instead", prop)
    check.data = prop.name
    check_is_string(check, dti, node)


def check_property_phandle_args(
    check: Check, dti: DtInfo, node: Node, prop: Property, provider: Provider
) -> None:
    """Walk a list of phandles, each followed by its provider's argument cells."""
    length = len(prop.val)
    if not is_multiple_of(length, CELL_SIZE):
        check.fail(
            dti,
            node,
            f"property size ({length}) is invalid, expected multiple of {CELL_SIZE}",
            prop,
        )
        return

    ncells = length // CELL_SIZE
    cell = 0
    while cell < ncells:
        phandle = prop.cell(cell)
        # A value of 0 or -1 may skip an optional entry.
        if not phandle_is_valid(phandle):
            if dti.plugin:
                break
            cell += 1
            continue

        if prop.val.markers:
            refs = prop.val.markers_of_type(MarkerType.REF_PHANDLE)
            if not any(m.offset == cell * CELL_SIZE for m in refs):
                check.fail(dti, node, f"cell {cell} is not a phandle reference", prop)

        provider_node = dti.get_node_by_phandle(phandle)
        if provider_node is None:
            check.fail(
                dti, node, f"Could not get phandle node for (cell {cell})", prop
            )
            break

        cellprop = provider_node.get_property(provider.cell_name)
        if cellprop is not None:
            cellsize = cellprop.cell()
        elif provider.optional:
            cellsize = 0
        else:
            check.fail(
                dti,
                node,
                f"Missing property '{provider.cell_name}' in node "
                f"{provider_node.fullpath} or bad phandle "
                f"(referred from {prop.name}[{cell}])",
            )
            break

        expected = (cell + cellsize + 1) * CELL_SIZE
        if length < expected:
            check.fail(
                dti,
                node,
                f"property size ({length}) too small for cell size {cellsize}",
                prop,
            )
            break
        cell += cellsize + 1


def check_provider_cells_property(check: Check, dti: DtInfo, node: Node) -> None:
    """Check the consumer property described by the Provider in check.data."""
    provider: Provider = check.data
    prop = node.get_property(provider.prop_name)
    if prop is None:
        return
    check_property_phandle_args(check, dti, node, prop, provider)


def prop_is_gpio(prop: Property) -> bool:
    """True if the property name denotes a GPIO specifier list."""
    name = prop.name
    # '-gpios' also ends some unrelated names.
    if name.endswith(",nr-gpios"):
        return False
    return (
        name.endswith("-gpios")
        or name == "gpios"
        or name.endswith("-gpio")
        or name == "gpio"
    )


def check_gpios_property(check: Check, dti: DtInfo, node: Node) -> None:
    # GPIO hog nodes have a 'gpios' property of a different form.
    if node.get_property("gpio-hog") is not None:
        return
    for prop in node.properties:
        if prop_is_gpio(prop):
            provider = Provider(prop.name, "#gpio-cells", False)
            check_property_phandle_args(check, dti, node, prop, provider)


def check_deprecated_gpio_property(check: Check, dti: DtInfo, node: Node) -> None:
    for prop in node.properties:
        if prop_is_gpio(prop) and prop.name.endswith("gpio"):
            check.fail(
                dti, node, "'[*-]gpio' is deprecated, use '[*-]gpios' instead", prop
            )


def node_is_interrupt_provider(node: Node) -> bool:
    """True if the node is an interrupt controller or nexus."""
    return (
        node.get_property("interrupt-controller") is not None
        or node.get_property("interrupt-map") is not None
    )


def check_interrupt_provider(check: Check, dti: DtInfo, node: Node) -> None:
    irq_provider = node_is_interrupt_provider(node)
    prop = node.get_property("#interrupt-cells")
    if irq_provider and prop is None:
        check.fail(dti, node, "Missing '#interrupt-cells' in interrupt provider")
    elif not irq_provider and prop is not None:
        check.fail(
            dti, node, "'#interrupt-cells' found, but node is not an interrupt provider"
        )


def check_interrupt_map(check: Check, dti: DtInfo, node: Node) -> None:
    irq_map_prop = node.get_property("interrupt-map")
    if irq_map_prop is None:
        return

    if node.addr_cells < 0:
        check.fail(dti, node, "Missing '#address-cells' in interrupt-map provider")
        return
    irq_cells_prop = node.get_property("#interrupt-cells")
    if irq_cells_prop is None:
        # Reported by the interrupt_provider check.
        return
    cellsize = node.addr_cells_or_default() + irq_cells_prop.cell()

    mask = node.get_property("interrupt-map-mask")
    if mask is not None and len(mask.val) != cellsize * CELL_SIZE:
        check.fail(
            dti,
            node,
            f"property size ({len(mask.val)}) is invalid, "
            f"expected {cellsize * CELL_SIZE}",
            mask,
        )

    length = len(irq_map_prop.val)
    if not is_multiple_of(length, CELL_SIZE):
        check.fail(
            dti,
            node,
            f"property size ({length}) is invalid, expected multiple of {CELL_SIZE}",
            irq_map_prop,
        )
        return

    map_cells = length // CELL_SIZE
    cell = 0
    while cell < map_cells:
        if cell + cellsize >= map_cells:
            check.fail(
                dti,
                node,
                f"property size ({length}) too small, "
                f"expected > {(cell + cellsize) * CELL_SIZE}",
                irq_map_prop,
            )
            break
        cell += cellsize

        phandle = irq_map_prop.cell(cell)
        if not phandle_is_valid(phandle):
            # Overlays may carry unresolved external references.
            if not dti.plugin:
                check.fail(
                    dti,
                    node,
                    f"Cell {cell} is not a phandle({_signed(phandle)})",
                    irq_map_prop,
                )
            break

        provider_node = dti.get_node_by_phandle(phandle)
        if provider_node is None:
            check.fail(
                dti,
                node,
                f"Could not get phandle({_signed(phandle)}) node for (cell {cell})",
                irq_map_prop,
            )
            break

        cellprop = provider_node.get_property("#interrupt-cells")
        if cellprop is None:
            check.fail(
                dti,
                node,
                "Missing property '#interrupt-cells' in node "
                f"{provider_node.fullpath} or bad phandle "
                f"(referred from interrupt-map[{cell}])",
            )
            break
        parent_cellsize = cellprop.cell()

        cellprop = provider_node.get_property("#address-cells")
        if cellprop is not None:
            parent_cellsize += cellprop.cell()

        cell += 1 + parent_cellsize
        if cell > map_cells:
            check.fail(
                dti,
                node,
                f"property size ({length}) mismatch, expected {cell * CELL_SIZE}",
                irq_map_prop,
            )


def check_interrupts_property(check: Check, dti: DtInfo, node: Node) -> None:
    irq_prop = node.get_property("interrupts")
    if irq_prop is None:
        return

    length = len(irq_prop.val)
    if not is_multiple_of(length, CELL_SIZE):
        check.fail(
            dti,
            node,
            f"size ({length}) is invalid, expected multiple of {CELL_SIZE}",
            irq_prop,
        )

    irq_node: Optional[Node] = None
    parent: Optional[Node] = node
    while parent is not None:
        if parent is not node and node_is_interrupt_provider(parent):
            irq_node = parent
            break

        prop = parent.get_property("interrupt-parent")
        if prop is not None:
            phandle = prop.cell()
            if not phandle_is_valid(phandle):
                # Overlays may carry unresolved external references.
                if dti.plugin:
                    return
                check.fail(dti, parent, "Invalid phandle", prop)
                break

            irq_node = dti.get_node_by_phandle(phandle)
            if irq_node is None:
                check.fail(dti, parent, "Bad phandle", prop)
                return
            if not node_is_interrupt_provider(irq_node):
                check.fail(
                    dti,
                    irq_node,
                    "Missing interrupt-controller or interrupt-map property",
                )
            break

        parent = parent.parent

    if irq_node is None:
        check.fail(dti, node, "Missing interrupt-parent")
        return

    prop = irq_node.get_property("#interrupt-cells")
    if prop is None:
        # Reported by another check.
        return

    irq_cells = prop.cell()
    if not is_multiple_of(length, irq_cells * CELL_SIZE):
        check.fail(
            dti,
            node,
            f"size is ({length}), expected multiple of {irq_cells * CELL_SIZE}",
            prop,
        )


def check_graph_nodes(check: Check, dti: DtInfo, node: Node) -> None:
    for child in node.children:
        if not (
            _prefixeq(child.name, child.basenamelen, "endpoint")
            or child.get_property("remote-endpoint") is not None
        ):
            continue

        # The root node cannot be a port.
        if node.parent is None:
            check.fail(
                dti,
                node,
                f"root node contains endpoint node '{child.name}', "
                "potentially misplaced remote-endpoint property",
            )
            continue
        node.bus = GRAPH_PORT_BUS

        # The parent of a port is either a 'ports' node or a device.
        if node.parent.bus is None and (
            node.parent.name == "ports" or node.get_property("reg") is not None
        ):
            node.parent.bus = GRAPH_PORTS_BUS
        break


def _check_graph_reg(check: Check, dti: DtInfo, node: Node) -> None:
    prop = node.get_property("reg")
    if prop is None:
        return

    if len(prop.val) != CELL_SIZE:
        check.fail(dti, node, "graph node malformed 'reg' property")
        return

    expected = f"{prop.cell():x}"
    if node.unitname != expected:
        check.fail(dti, node, f'graph node unit address error, expected "{expected}"')

    parent = node.parent
    if parent is None:
        return
    if parent.addr_cells != 1:
        check.fail(
            dti,
            node,
            f"graph node '#address-cells' is {parent.addr_cells}, must be 1",
            node.get_property("#address-cells"),
        )
    if parent.size_cells != 0:
        check.fail(
            dti,
            node,
            f"graph node '#size-cells' is {parent.size_cells}, must be 0",
            node.get_property("#size-cells"),
        )


def check_graph_port(check: Check, dti: DtInfo, node: Node) -> None:
    if node.bus is not GRAPH_PORT_BUS:
        return
    _check_graph_reg(check, dti, node)
    if dti.plugin:
        return
    if not _prefixeq(node.name, node.basenamelen, "port"):
        check.fail(dti, node, "graph port node name should be 'port'")


def _get_remote_endpoint(check: Check, dti: DtInfo, endpoint: Node) -> Optional[Node]:
    prop = endpoint.get_property("remote-endpoint")
    if prop is None:
        return None
    phandle = prop.cell()
    # Overlays may carry unresolved external references.
    if not phandle_is_valid(phandle):
        return None
    remote = dti.get_node_by_phandle(phandle)
    if remote is None:
        check.fail(dti, endpoint, "graph phandle is not valid", prop)
    return remote


def check_graph_endpoint(check: Check, dti: DtInfo, node: Node) -> None:
    if node.parent is None or node.parent.bus is not GRAPH_PORT_BUS:
        return
    _check_graph_reg(check, dti, node)
    if dti.plugin:
        return
    if not _prefixeq(node.name, node.basenamelen, "endpoint"):
        check.fail(dti, node, "graph endpoint node name should be 'endpoint'")

    remote = _get_remote_endpoint(check, dti, node)
    if remote is None:
        return
    if _get_remote_endpoint(check, dti, remote) is not node:
        check.fail(
            dti,
            node,
            f"graph connection to node '{remote.fullpath}' is not bidirectional",
        )


def check_graph_child_address(check: Check, dti: DtInfo, node: Node) -> None:
    if node.bus is not GRAPH_PORTS_BUS and node.bus is not GRAPH_PORT_BUS:
        return

    children = node.children
    for child in children:
        prop = child.get_property("reg")
        # Any non-zero unit address makes the cells necessary.
        if prop is not None and prop.cell() != 0:
            return

    if len(children) == 1 and node.addr_cells != -1:
        check.fail(
            dti,
            node,
            f"graph node has single child node '{children[0].name}', "
            "#address-cells/#size-cells are not necessary",
        )