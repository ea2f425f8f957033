import io

import pytest

from devtree import structural as s
from devtree.checks_base import Check, CheckStatus
from devtree.data import Data, MarkerType
from devtree.tree import DtInfo, Node, Property, phandle_is_valid


def _check(fn, data=None, *, error=True, warn=False):
    return Check(fn.__name__, fn, data, warn=warn, error=error, stream=io.StringIO())


def _run(fn, dti, data=None):
    check = _check(fn, data)
    check.run(dti)
    return check


def _raw(name, raw):
    return Property(name, Data().append(raw))


def _cell(name, value):
    return Property(name, Data().append_cell(value))


def _str(name, text):
    return _raw(name, text.encode() + b"\0")


def _tree():
    root = Node()
    return DtInfo(root), root


def test_always_fail():
    dti, _ = _tree()
    check = _run(s.check_always_fail, dti)
    assert check.status is CheckStatus.FAILED
    assert check.messages == [
        "<stdout>: ERROR (check_always_fail): /: always_fail check\n"
    ]


@pytest.mark.parametrize(
    "raw, status",
    [
        (b"abc\0", CheckStatus.PASSED),
        (b"ab", CheckStatus.FAILED),
        (b"a\0b\0", CheckStatus.FAILED),
        (b"", CheckStatus.FAILED),
    ],
)
def test_is_string(raw, status):
    dti, root = _tree()
    root.add_property(_raw("model", raw))
    assert _run(s.check_is_string, dti, "model").status is status


def test_is_string_missing_property_passes():
    dti, _ = _tree()
    assert _run(s.check_is_string, dti, "model").status is CheckStatus.PASSED


@pytest.mark.parametrize(
    "raw, status",
    [
        (b"a\0b\0", CheckStatus.PASSED),
        (b"", CheckStatus.PASSED),
        (b"a\0b", CheckStatus.FAILED),
    ],
)
def test_is_string_list(raw, status):
    dti, root = _tree()
    root.add_property(_raw("compatible", raw))
    check = _run(s.check_is_string_list, dti, "compatible")
    assert check.status is status


def test_is_cell():
    dti, root = _tree()
    root.add_property(_cell("#address-cells", 1))
    assert _run(s.check_is_cell, dti, "#address-cells").status is CheckStatus.PASSED
    root.add_property(Property("#size-cells", Data().append_addr(1)))
    check = _run(s.check_is_cell, dti, "#size-cells")
    assert check.status is CheckStatus.FAILED
    assert "property is not a single cell" in check.messages[0]


def test_duplicate_node_names():
    dti, root = _tree()
    for name in ("x", "x", "y"):
        root.add_child(Node(name))
    check = _run(s.check_duplicate_node_names, dti)
    assert check.status is CheckStatus.FAILED
    assert len(check.messages) == 1
    assert "/x: Duplicate node name" in check.messages[0]


def test_duplicate_property_names_ignores_deleted():
    dti, root = _tree()
    root.add_property(_cell("a", 1))
    second = root.add_property(_cell("a", 2))
    assert _run(s.check_duplicate_property_names, dti).status is CheckStatus.FAILED
    second.deleted = True
    assert _run(s.check_duplicate_property_names, dti).status is CheckStatus.PASSED


def test_node_name_chars():
    dti, root = _tree()
    root.add_child(Node("foo@1"))
    assert _run(s.check_node_name_chars, dti, s.NODECHARS).status is CheckStatus.PASSED
    root.add_child(Node("foo$bar"))
    check = _run(s.check_node_name_chars, dti, s.NODECHARS)
    assert check.status is CheckStatus.FAILED
    assert "Bad character '$' in node name" in check.messages[0]


@pytest.mark.parametrize(
    "name, status",
    [
        ("foo_bar", CheckStatus.FAILED),
        ("foo-bar@1_0", CheckStatus.PASSED),
        ("Foo,bar", CheckStatus.PASSED),
    ],
)
def test_node_name_chars_strict(name, status):
    dti, root = _tree()
    root.add_child(Node(name))
    check = _run(s.check_node_name_chars_strict, dti, s.PROPNODECHARSSTRICT)
    assert check.status is status


def test_node_name_format():
    dti, root = _tree()
    root.add_child(Node("a@1"))
    assert _run(s.check_node_name_format, dti).status is CheckStatus.PASSED
    root.add_child(Node("a@1@2"))
    check = _run(s.check_node_name_format, dti)
    assert "multiple '@' characters in node name" in check.messages[0]


def test_node_name_vs_property_name():
    dti, root = _tree()
    root.add_property(Property("x"))
    root.add_child(Node("x"))
    check = _run(s.check_node_name_vs_property_name, dti)
    assert check.status is CheckStatus.FAILED
    assert "/x: node name and property name conflict" in check.messages[0]


@pytest.mark.parametrize(
    "name, props, status",
    [
        ("dev@10", [], CheckStatus.FAILED),
        ("dev", [_cell("reg", 16)], CheckStatus.FAILED),
        ("dev@10", [_cell("reg", 16)], CheckStatus.PASSED),
        ("dev@10", [Property("ranges")], CheckStatus.FAILED),
        ("dev@10", [_cell("ranges", 16)], CheckStatus.PASSED),
    ],
)
def test_unit_address_vs_reg(name, props, status):
    dti, root = _tree()
    node = root.add_child(Node(name))
    for prop in props:
        node.add_property(prop)
    assert _run(s.check_unit_address_vs_reg, dti).status is status


def test_unit_address_vs_reg_skips_overlay_fragment():
    dti, root = _tree()
    fragment = root.add_child(Node("fragment@0"))
    fragment.add_child(Node("__overlay__"))
    assert _run(s.check_unit_address_vs_reg, dti).status is CheckStatus.PASSED


def test_property_name_chars():
    dti, root = _tree()
    root.add_property(Property("foo$"))
    check = _run(s.check_property_name_chars, dti, s.PROPCHARS)
    assert check.status is CheckStatus.FAILED
    assert "/:foo$: Bad character '$' in property name" in check.messages[0]


@pytest.mark.parametrize(
    "name, status",
    [
        ("#address-cells", CheckStatus.PASSED),
        ("vendor,#foo", CheckStatus.PASSED),
        ("device_type", CheckStatus.PASSED),
        ("foo#bar", CheckStatus.FAILED),
        ("my_prop", CheckStatus.FAILED),
    ],
)
def test_property_name_chars_strict(name, status):
    dti, root = _tree()
    root.add_property(Property(name))
    check = _run(s.check_property_name_chars_strict, dti, s.PROPNODECHARSSTRICT)
    assert check.status is status


def test_duplicate_label_on_nodes():
    dti, root = _tree()
    root.add_child(Node("a", labels=["lbl"]))
    root.add_child(Node("b", labels=["lbl"]))
    check = _run(s.check_duplicate_label_node, dti)
    assert check.status is CheckStatus.FAILED
    assert "Duplicate label 'lbl' on /b and /a" in check.messages[0]


def test_duplicate_label_on_property():
    dti, root = _tree()
    root.add_child(Node("a", labels=["lbl"]))
    b = root.add_child(Node("b"))
    b.add_property(Property("p", labels=["lbl"]))
    check = _run(s.check_duplicate_label_node, dti)
    assert "Duplicate label 'lbl' on 'p' in /b and /a" in check.messages[0]


def test_unique_label_passes():
    dti, root = _tree()
    root.add_child(Node("a", labels=["one"]))
    root.add_child(Node("b", labels=["two"]))
    assert _run(s.check_duplicate_label_node, dti).status is CheckStatus.PASSED


def test_explicit_phandle_is_recorded():
    dti, root = _tree()
    a = root.add_child(Node("a"))
    a.add_property(_cell("phandle", 5))
    b = root.add_child(Node("b"))
    b.add_property(_cell("linux,phandle", 7))
    assert _run(s.check_explicit_phandles, dti).status is CheckStatus.PASSED
    assert a.phandle == 5
    assert b.phandle == 7


def test_explicit_phandle_mismatch():
    dti, root = _tree()
    a = root.add_child(Node("a"))
    a.add_property(_cell("phandle", 1))
    a.add_property(_cell("linux,phandle", 2))
    check = _run(s.check_explicit_phandles, dti)
    assert "mismatching 'phandle' and 'linux,phandle' properties" in check.messages[0]


def test_explicit_phandle_duplicate():
    dti, root = _tree()
    for name in ("a", "b"):
        root.add_child(Node(name)).add_property(_cell("phandle", 5))
    check = _run(s.check_explicit_phandles, dti)
    assert check.status is CheckStatus.FAILED
    assert "duplicated phandle 0x5 (seen before at /a)" in check.messages[0]
    assert root.get_subnode("b").phandle == 0


def test_explicit_phandle_bad_value_and_length():
    dti, root = _tree()
    root.add_child(Node("a")).add_property(_cell("phandle", 0))
    root.add_child(Node("b")).add_property(
        Property("phandle", Data().append_addr(1))
    )
    check = _run(s.check_explicit_phandles, dti)
    assert "bad value (0x0) in phandle property" in check.messages[0]
    assert "bad length (8) phandle property" in check.messages[1]


def test_explicit_phandle_self_reference_allowed():
    dti, root = _tree()
    a = root.add_child(Node("a", labels=["a"]))
    a.add_property(
        Property("phandle", Data().add_marker(MarkerType.REF_PHANDLE, "a").append_cell(0))
    )
    assert _run(s.check_explicit_phandles, dti).status is CheckStatus.PASSED
    assert a.phandle == 0


def test_explicit_phandle_reference_to_other_node():
    dti, root = _tree()
    root.add_child(Node("other", labels=["other"]))
    a = root.add_child(Node("a"))
    a.add_property(
        Property(
            "phandle", Data().add_marker(MarkerType.REF_PHANDLE, "other").append_cell(0)
        )
    )
    check = _run(s.check_explicit_phandles, dti)
    assert "phandle is a reference to another node" in check.messages[0]


def test_correct_name_property_is_removed():
    dti, root = _tree()
    node = root.add_child(Node("foo@1"))
    node.add_property(_str("name", "foo"))
    assert _run(s.check_name_properties, dti).status is CheckStatus.PASSED
    assert node.get_property("name") is None


def test_incorrect_name_property():
    dti, root = _tree()
    node = root.add_child(Node("foo@1"))
    node.add_property(_str("name", "bar"))
    check = _run(s.check_name_properties, dti)
    assert check.status is CheckStatus.FAILED
    assert '"name" property is incorrect ("bar" instead of base node name)' in (
        check.messages[0]
    )
    assert node.get_property("name") is not None


def _ref_tree(kind, ref="t"):
    dti, root = _tree()
    target = root.add_child(Node("t", labels=["t"]))
    user = root.add_child(Node("u"))
    val = Data().add_marker(kind, ref)
    if kind is MarkerType.REF_PHANDLE:
        val.append_cell(0)
    prop = user.add_property(Property("p", val))
    return dti, target, prop


def test_phandle_reference_is_resolved():
    dti, target, prop = _ref_tree(MarkerType.REF_PHANDLE)
    assert _run(s.fixup_phandle_references, dti).status is CheckStatus.PASSED
    assert phandle_is_valid(target.phandle)
    assert prop.cell() == target.phandle
    assert target.get_property("phandle").cell() == target.phandle
    assert target.is_referenced


def test_phandle_reference_missing():
    dti, _, prop = _ref_tree(MarkerType.REF_PHANDLE, "nope")
    check = _run(s.fixup_phandle_references, dti)
    assert check.status is CheckStatus.FAILED
    assert 'Reference to non-existent node or label "nope"' in check.messages[0]
    assert prop.cell() == 0


def test_phandle_reference_missing_in_plugin_is_unresolved():
    dti, _, prop = _ref_tree(MarkerType.REF_PHANDLE, "nope")
    dti.plugin = True
    assert _run(s.fixup_phandle_references, dti).status is CheckStatus.PASSED
    assert prop.cell() == 0xFFFFFFFF


def test_path_reference_is_inserted():
    dti, target, prop = _ref_tree(MarkerType.REF_PATH)
    prop.val.add_marker(MarkerType.TYPE_NONE)
    assert _run(s.fixup_path_references, dti).status is CheckStatus.PASSED
    expected = target.fullpath.encode() + b"\0"
    assert bytes(prop.val) == expected
    assert prop.val.markers[1].offset == len(expected)
    assert target.is_referenced


def test_path_reference_missing():
    dti, _, prop = _ref_tree(MarkerType.REF_PATH, "nope")
    check = _run(s.fixup_path_references, dti)
    assert check.status is CheckStatus.FAILED
    assert bytes(prop.val) == b""


def test_omit_unused_nodes():
    dti, root = _tree()
    unused = root.add_child(Node("unused"))
    unused.omit_if_unused = True
    used = root.add_child(Node("used"))
    used.omit_if_unused = True
    used.is_referenced = True
    _run(s.fixup_omit_unused_nodes, dti)
    assert root.get_subnode("unused") is None
    assert root.get_subnode("used") is used


def test_omit_unused_keeps_labelled_nodes_with_symbols():
    dti, root = _tree()
    dti.generate_symbols = True
    node = root.add_child(Node("n", labels=["n"]))
    node.omit_if_unused = True
    _run(s.fixup_omit_unused_nodes, dti)
    assert root.get_subnode("n") is node


def test_names_is_string_list():
    dti, root = _tree()
    root.add_property(_raw("foo", b"a\0b"))
    assert _run(s.check_names_is_string_list, dti).status is CheckStatus.PASSED
    root.add_property(_raw("clock-names", b"a\0b"))
    check = _run(s.check_names_is_string_list, dti)
    assert "/:clock-names: property is not a string list" in check.messages[0]


def _aliases(name, value):
    dti, root = _tree()
    root.add_child(Node("t"))
    aliases = root.add_child(Node("aliases"))
    aliases.add_property(_cell("phandle", 3))
    aliases.add_property(_str(name, value))
    return dti


def test_alias_paths_valid():
    assert _run(s.check_alias_paths, _aliases("serial0", "/t")).status is (
        CheckStatus.PASSED
    )


def test_alias_paths_bad_target():
    check = _run(s.check_alias_paths, _aliases("serial0", "/missing"))
    assert "aliases property is not a valid node (/missing)" in check.messages[0]


def test_alias_paths_bad_name():
    check = _run(s.check_alias_paths, _aliases("Serial", "/t"))
    assert (
        "aliases property name must include only lowercase and '-'"
        in check.messages[0]
    )


def test_addr_size_cells():
    dti, root = _tree()
    root.add_property(_cell("#address-cells", 1))
    root.add_property(_cell("#size-cells", 0))
    child = root.add_child(Node("c"))
    assert _run(s.fixup_addr_size_cells, dti).status is CheckStatus.PASSED
    assert (root.addr_cells, root.size_cells) == (1, 0)
    assert (child.addr_cells, child.size_cells) == (-1, -1)
    assert child.addr_cells_or_default() == 2
    assert child.size_cells_or_default() == 1