"""Structural checks and reference fixups applied to each node."""

from __future__ import annotations

import string
from typing import Optional

from devtree.checks_base import Check
from devtree.data import CELL_SIZE, Marker, MarkerType
from devtree.tree import DtInfo, Node, Property, phandle_is_valid

LOWERCASE = string.ascii_lowercase
UPPERCASE = string.ascii_uppercase
DIGITS = string.digits
NODECHARS = LOWERCASE + UPPERCASE + DIGITS + ",._+-@"
PROPCHARS = LOWERCASE + UPPERCASE + DIGITS + ",._+*#?-"
PROPNODECHARSSTRICT = LOWERCASE + UPPERCASE + DIGITS + ",-"
ALIASCHARS = LOWERCASE + DIGITS + "-"

_UNRESOLVED = 0xFFFFFFFF


def _span(text: str, allowed: str) -> int:
    """Length of the leading run of characters drawn from allowed."""
    for index, ch in enumerate(text):
        if ch not in allowed:
            return index
    return len(text)


def check_always_fail(check: Check, dti: DtInfo, node: Node) -> None:
    """Fail unconditionally; used to exercise the check machinery."""
    check.fail(dti, node, "always_fail check")


def _string_prop(check: Check, dti: DtInfo, node: Node, propname: str) -> None:
    prop = node.get_property(propname)
    if prop is None:
        return
    if not prop.val.is_one_string():
        check.fail(dti, node, "property is not a string", prop)


def _string_list_prop(check: Check, dti: DtInfo, node: Node, propname: str) -> None:
    prop = node.get_property(propname)
    if prop is None:
        return
    raw = prop.val.val
    if raw and raw[-1] != 0:
        check.fail(dti, node, "property is not a string list", prop)


def check_is_string(check: Check, dti: DtInfo, node: Node) -> None:
    """The property named by check.data, if present, is one string."""
    _string_prop(check, dti, node, check.data)


def check_is_string_list(check: Check, dti: DtInfo, node: Node) -> None:
    """The property named by check.data, if present, is a list of strings."""
    _string_list_prop(check, dti, node, check.data)


def check_is_cell(check: Check, dti: DtInfo, node: Node) -> None:
    """The property named by check.data, if present, is a single cell."""
    prop = node.get_property(check.data)
    if prop is None:
        return
    if len(prop.val) != CELL_SIZE:
        check.fail(dti, node, "property is not a single cell", prop)


def check_duplicate_node_names(check: Check, dti: DtInfo, node: Node) -> None:
    children = node.children
    for index, child in enumerate(children):
        for other in children[index + 1:]:
            if other.name == child.name:
                check.fail(dti, other, "Duplicate node name")


def check_duplicate_property_names(check: Check, dti: DtInfo, node: Node) -> None:
    props = node.properties
    for index, prop in enumerate(props):
        for other in props[index + 1:]:
            if other.name == prop.name:
                check.fail(dti, node, "Duplicate property name", prop)


def check_node_name_chars(check: Check, dti: DtInfo, node: Node) -> None:
    n = _span(node.name, check.data)
    if n < len(node.name):
        check.fail(dti, node, f"Bad character '{node.name[n]}' in node name")


def check_node_name_chars_strict(check: Check, dti: DtInfo, node: Node) -> None:
    n = _span(node.name, check.data)
    if n < node.basenamelen:
        check.fail(
            dti, node, f"Character '{node.name[n]}' not recommended in node name"
        )


def check_node_name_format(check: Check, dti: DtInfo, node: Node) -> None:
    if "@" in node.unitname:
        check.fail(dti, node, "multiple '@' characters in node name")


def check_node_name_vs_property_name(check: Check, dti: DtInfo, node: Node) -> None:
    if node.parent is None:
        return
    if node.parent.get_property(node.name) is not None:
        check.fail(dti, node, "node name and property name conflict")


def check_unit_address_vs_reg(check: Check, dti: DtInfo, node: Node) -> None:
    if node.get_subnode("__overlay__") is not None:
        # Overlay fragments are a special case.
        return

    prop = node.get_property("reg")
    if prop is None:
        prop = node.get_property("ranges")
        if prop is not None and not len(prop.val):
            prop = None

    unitname = node.unitname
    if prop is not None:
        if not unitname:
            check.fail(
                dti, node, "node has a reg or ranges property, but no unit name"
            )
    elif unitname:
        check.fail(dti, node, "node has a unit name, but no reg or ranges property")


def check_property_name_chars(check: Check, dti: DtInfo, node: Node) -> None:
    for prop in node.properties:
        n = _span(prop.name, check.data)
        if n < len(prop.name):
            check.fail(
                dti, node, f"Bad character '{prop.name[n]}' in property name", prop
            )


def check_property_name_chars_strict(check: Check, dti: DtInfo, node: Node) -> None:
    for prop in node.properties:
        name = prop.name
        n = _span(name, check.data)
        if n == len(name):
            continue
        if name == "device_type":
            continue
        # '#' may only start a name, not counting a vendor prefix.
        if name[n] == "#" and (n == 0 or name[n - 1] == ","):
            name = name[n + 1:]
            n = _span(name, check.data)
        if n < len(name):
            check.fail(
                dti,
                node,
                f"Character '{name[n]}' not recommended in property name",
                prop,
            )


def _describe(node: Node, prop: Optional[Property], mark: Optional[Marker]) -> str:
    text = "value of " if mark is not None else ""
    if prop is not None:
        text += f"'{prop.name}' in "
    return text + node.fullpath


def _check_duplicate_label(
    check: Check,
    dti: DtInfo,
    label: str,
    node: Node,
    prop: Optional[Property],
    mark: Optional[Marker],
) -> None:
    othernode = dti.get_node_by_label(label)
    otherprop: Optional[Property] = None
    othermark: Optional[Marker] = None
    if othernode is None:
        found = dti.get_property_by_label(label)
        if found is not None:
            othernode, otherprop = found
    if othernode is None:
        found_mark = dti.get_marker_label(label)
        if found_mark is not None:
            othernode, otherprop, othermark = found_mark
    if othernode is None:
        return

    if othernode is not node or otherprop is not prop or othermark is not mark:
        check.fail(
            dti,
            node,
            f"Duplicate label '{label}' on {_describe(node, prop, mark)}"
            f" and {_describe(othernode, otherprop, othermark)}",
        )


def check_duplicate_label_node(check: Check, dti: DtInfo, node: Node) -> None:
    for label in node.labels:
        _check_duplicate_label(check, dti, label, node, None, None)
    for prop in node.properties:
        for label in prop.labels:
            _check_duplicate_label(check, dti, label, node, prop, None)
        for marker in prop.val.markers_of_type(MarkerType.LABEL):
            _check_duplicate_label(check, dti, marker.ref, node, prop, marker)


def _check_phandle_prop(check: Check, dti: DtInfo, node: Node, propname: str) -> int:
    prop = node.get_property(propname)
    if prop is None:
        return 0

    if len(prop.val) != CELL_SIZE:
        check.fail(
            dti, node, f"bad length ({len(prop.val)}) {prop.name} property", prop
        )
        return 0

    for marker in prop.val.markers_of_type(MarkerType.REF_PHANDLE):
        if dti.get_node_by_ref(marker.ref) is not node:
            # Pointing this node's phandle at another node is nonsensical.
            check.fail(dti, node, f"{prop.name} is a reference to another node")
        # A reference to itself asks for a phandle to be allocated later.
        return 0

    phandle = prop.cell()
    if not phandle_is_valid(phandle):
        check.fail(dti, node, f"bad value (0x{phandle:x}) in {prop.name} property", prop)
        return 0
    return phandle


def check_explicit_phandles(check: Check, dti: DtInfo, node: Node) -> None:
    phandle = _check_phandle_prop(check, dti, node, "phandle")
    linux_phandle = _check_phandle_prop(check, dti, node, "linux,phandle")

    if not phandle and not linux_phandle:
        return

    if linux_phandle and phandle and phandle != linux_phandle:
        check.fail(dti, node, "mismatching 'phandle' and 'linux,phandle' properties")

    if linux_phandle and not phandle:
        phandle = linux_phandle

    other = dti.get_node_by_phandle(phandle)
    if other is not None and other is not node:
        check.fail(
            dti,
            node,
            f"duplicated phandle 0x{phandle:x} (seen before at {other.fullpath})",
        )
        return

    node.phandle = phandle


def check_name_properties(check: Check, dti: DtInfo, node: Node) -> None:
    prop = node.get_property("name")
    if prop is None:
        return

    basename = node.basename.encode()
    raw = bytes(prop.val)
    if len(raw) != len(basename) + 1 or raw[: len(basename)] != basename:
        check.fail(
            dti,
            node,
            f'"name" property is incorrect ("{prop.as_string()}"'
            " instead of base node name)",
        )
    else:
        # A correct name property is redundant, so drop it.
        prop.deleted = True


def _reference(node: Node) -> None:
    for descendant in node.walk():
        descendant.is_referenced = True


def fixup_phandle_references(check: Check, dti: DtInfo, node: Node) -> None:
    for prop in node.properties:
        for marker in list(prop.val.markers_of_type(MarkerType.REF_PHANDLE)):
            start, end = marker.offset, marker.offset + CELL_SIZE
            refnode = dti.get_node_by_ref(marker.ref)
            if refnode is None:
                if not dti.plugin:
                    check.fail(
                        dti,
                        node,
                        f'Reference to non-existent node or label "{marker.ref}"',
                    )
                else:
                    prop.val.val[start:end] = _UNRESOLVED.to_bytes(CELL_SIZE, "big")
                continue

            phandle = dti.get_node_phandle(refnode)
            prop.val.val[start:end] = phandle.to_bytes(CELL_SIZE, "big")
            _reference(refnode)


def fixup_path_references(check: Check, dti: DtInfo, node: Node) -> None:
    for prop in node.properties:
        for marker in list(prop.val.markers_of_type(MarkerType.REF_PATH)):
            refnode = dti.get_node_by_ref(marker.ref)
            if refnode is None:
                check.fail(
                    dti, node, f'Reference to non-existent node or label "{marker.ref}"'
                )
                continue
            prop.val.insert_at_marker(marker, refnode.fullpath.encode() + b"\0")
            _reference(refnode)


def fixup_omit_unused_nodes(check: Check, dti: DtInfo, node: Node) -> None:
    if dti.generate_symbols and node.labels:
        return
    if node.omit_if_unused and not node.is_referenced:
        node.delete()


def check_names_is_string_list(check: Check, dti: DtInfo, node: Node) -> None:
    for prop in node.properties:
        if prop.name.endswith("-names"):
            _string_list_prop(check, dti, node, prop.name)


def check_alias_paths(check: Check, dti: DtInfo, node: Node) -> None:
    if node.name != "aliases":
        return

    for prop in node.properties:
        if prop.name in ("phandle", "linux,phandle"):
            continue

        target = prop.as_string()
        if not len(prop.val) or dti.get_node_by_path(target) is None:
            check.fail(
                dti, node, f"aliases property is not a valid node ({target})", prop
            )
            continue
        if _span(prop.name, ALIASCHARS) != len(prop.name):
            check.fail(
                dti, node, "aliases property name must include only lowercase and '-'"
            )


def fixup_addr_size_cells(check: Check, dti: DtInfo, node: Node) -> None:
    node.addr_cells = -1
    node.size_cells = -1

    prop = node.get_property("#address-cells")
    if prop is not None:
        node.addr_cells = prop.cell()

    prop = node.get_property("#size-cells")
    if prop is not None:
        node.size_cells = prop.cell()