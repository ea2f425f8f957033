import pytest

from devtree.data import Data, MarkerType
from devtree.tree import DtInfo, Node, PhandleFormat, Property, phandle_is_valid


def _build():
    root = Node("")
    soc = root.add_child(Node("soc@0", labels=["soc"]))
    uart = soc.add_child(Node("serial@1000", labels=["uart0"]))
    uart.add_property(Property("compatible", Data().append(b"ns16550\0")))
    uart.add_property(Property("status", Data().append(b"okay\0"), labels=["st"]))
    chosen = root.add_child(Node("chosen"))
    return root, soc, uart, chosen


@pytest.mark.parametrize(
    "phandle, expected",
    [(0, False), (0xFFFFFFFF, False), (-1, False), (1, True), (0xFFFFFFFE, True)],
)
def test_phandle_is_valid(phandle, expected):
    assert phandle_is_valid(phandle) is expected


def test_fullpath_and_name_parts():
    root, soc, uart, chosen = _build()
    assert root.fullpath == "/"
    assert soc.fullpath == "/soc@0"
    assert uart.fullpath == "/soc@0/serial@1000"
    assert uart.basename == "serial"
    assert uart.basenamelen == len("serial")
    assert uart.unitname == "1000"
    assert chosen.unitname == ""


def test_get_property_and_subnode():
    root, soc, uart, _ = _build()
    assert uart.get_property("status").as_string() == "okay"
    assert uart.get_property("missing") is None
    assert root.get_subnode("soc@0") is soc
    assert root.get_subnode("soc") is None


def test_deleted_property_is_hidden():
    _, _, uart, _ = _build()
    uart.get_property("status").deleted = True
    assert uart.get_property("status") is None
    assert [p.name for p in uart.properties] == ["compatible"]


def test_delete_hides_subtree():
    root, soc, uart, _ = _build()
    soc.delete()
    assert soc.deleted and uart.deleted
    assert soc.labels == [] and uart.labels == []
    assert [n.name for n in root.walk()] == ["", "chosen"]


def test_walk_is_preorder():
    root, *_ = _build()
    assert [n.name for n in root.walk()] == ["", "soc@0", "serial@1000", "chosen"]


def test_cell_defaults_and_explicit_values():
    node = Node("bus")
    assert node.addr_cells_or_default() == 2
    assert node.size_cells_or_default() == 1
    node.addr_cells, node.size_cells = 1, 0
    assert node.addr_cells_or_default() == 1
    assert node.size_cells_or_default() == 0


def test_property_cell_reads_and_rejects_short_values():
    prop = Property("reg", Data().append_cell(7).append_cell(9))
    assert prop.cell(0) == 7
    assert prop.cell(1) == 9
    with pytest.raises(ValueError):
        prop.cell(2)


def test_lookups_by_path_label_and_ref():
    root, soc, uart, chosen = _build()
    dti = DtInfo(root)
    assert dti.get_node_by_path("/") is root
    assert dti.get_node_by_path("/soc@0/serial@1000") is uart
    assert dti.get_node_by_path("/nope") is None
    assert dti.get_node_by_label("uart0") is uart
    assert dti.get_node_by_ref("/chosen") is chosen
    assert dti.get_node_by_ref("uart0") is uart
    assert dti.get_node_by_ref("soc/serial@1000") is uart
    assert dti.get_node_by_ref("missing") is None


def test_property_and_marker_labels():
    root, _, uart, _ = _build()
    prop = uart.get_property("compatible")
    prop.val.add_marker(MarkerType.LABEL, "inside")
    dti = DtInfo(root)
    assert dti.get_property_by_label("st") == (uart, uart.get_property("status"))
    node, found_prop, marker = dti.get_marker_label("inside")
    assert node is uart and found_prop is prop and marker.ref == "inside"
    assert dti.get_marker_label("absent") is None


def test_get_node_phandle_allocates_unused_value():
    root, soc, uart, _ = _build()
    soc.phandle = 1
    dti = DtInfo(root)
    phandle = dti.get_node_phandle(uart)
    assert phandle_is_valid(phandle)
    assert phandle != soc.phandle
    assert uart.get_property("phandle").cell() == phandle
    assert uart.get_property("linux,phandle") is None
    assert dti.get_node_phandle(uart) == phandle
    assert dti.get_node_by_phandle(phandle) is uart


def test_get_node_phandle_legacy_format():
    root, _, uart, _ = _build()
    dti = DtInfo(root, phandle_format=PhandleFormat.BOTH)
    phandle = dti.get_node_phandle(uart)
    assert uart.get_property("linux,phandle").cell() == phandle
    assert uart.get_property("phandle").cell() == phandle


def test_get_node_by_phandle_invalid():
    root, *_ = _build()
    dti = DtInfo(root)
    assert dti.get_node_by_phandle(0) is None
    assert dti.get_node_by_phandle(0xFFFFFFFF) is None