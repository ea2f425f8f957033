"""In-memory device tree: nodes, properties and tree-wide lookups."""

from __future__ import annotations

import enum
from typing import Iterable, Iterator, Optional

from devtree.data import CELL_SIZE, Data, Marker, MarkerType

_CELL_MASK = 0xFFFFFFFF


def phandle_is_valid(phandle: int) -> bool:
    """A phandle is valid unless it is 0 or all ones."""
    return (phandle & _CELL_MASK) not in (0, _CELL_MASK)


class PhandleFormat(enum.IntFlag):
    """Which properties carry a generated phandle."""

    LEGACY = 1
    EPAPR = 2
    BOTH = 3


class Property:
    """A named property value attached to a node."""

    def __init__(
        self,
        name: str,
        val: Optional[Data] = None,
        labels: Iterable[str] = (),
        srcpos: Iterable[str] = (),
    ) -> None:
        self.name = name
        self.val = val if val is not None else Data()
        self.labels = list(labels)
        self.srcpos = list(srcpos)
        self.deleted = False

    def __repr__(self) -> str:
        return f"Property({self.name!r}, {bytes(self.val)!r})"

    def cell(self, index: int = 0) -> int:
        """Return the 32-bit big-endian cell at the given index."""
        start = index * CELL_SIZE
        end = start + CELL_SIZE
        if index < 0 or len(self.val) < end:
            raise ValueError(
                f"property {self.name!r} has no cell {index} "
                f"(length {len(self.val)})"
            )
        return int.from_bytes(self.val.val[start:end], "big")

    def as_string(self) -> str:
        """Return the value up to its first NUL byte as text."""
        raw = bytes(self.val.val)
        nul = raw.find(b"\0")
        if nul >= 0:
            raw = raw[:nul]
        return raw.decode("utf-8", errors="replace")


class Node:
    """A device tree node holding properties and child nodes."""

    def __init__(
        self,
        name: str = "",
        labels: Iterable[str] = (),
        srcpos: Iterable[str] = (),
    ) -> None:
        self.name = name
        self.parent: Optional[Node] = None
        self._properties: list[Property] = []
        self._children: list[Node] = []
        self.labels = list(labels)
        self.srcpos = list(srcpos)
        self.phandle = 0
        self.addr_cells = -1
        self.size_cells = -1
        self.bus = None
        self.omit_if_unused = False
        self.is_referenced = False
        self.deleted = False

    def __repr__(self) -> str:
        return f"Node({self.fullpath!r})"

    @property
    def properties(self) -> list[Property]:
        """Properties that have not been deleted, in order."""
        return [p for p in self._properties if not p.deleted]

    @property
    def children(self) -> list["Node"]:
        """Child nodes that have not been deleted, in order."""
        return [c for c in self._children if not c.deleted]

    @property
    def basename(self) -> str:
        return self.name.partition("@")[0]

    @property
    def basenamelen(self) -> int:
        return len(self.basename)

    @property
    def unitname(self) -> str:
        return self.name.partition("@")[2]

    @property
    def fullpath(self) -> str:
        if self.parent is None:
            return "/"
        if self.parent.parent is None:
            return "/" + self.name
        return f"{self.parent.fullpath}/{self.name}"

    def add_property(self, prop: Property) -> Property:
        """Append a property and return it."""
        self._properties.append(prop)
        return prop

    def add_child(self, child: "Node") -> "Node":
        """Append a child node and return it."""
        child.parent = self
        self._children.append(child)
        return child

    def get_property(self, name: str) -> Optional[Property]:
        """Return the first live property with the given name."""
        return next((p for p in self.properties if p.name == name), None)

    def get_subnode(self, name: str) -> Optional["Node"]:
        """Return the live child whose full name matches exactly."""
        return next((c for c in self.children if c.name == name), None)

    def delete(self) -> None:
        """Mark this node, its subtree and its properties as deleted."""
        for child in self.children:
            child.delete()
        for prop in self.properties:
            prop.deleted = True
            prop.labels.clear()
        self.labels.clear()
        self.deleted = True

    def walk(self) -> Iterator["Node"]:
        """Yield this node and all live descendants, depth first."""
        yield self
        for child in self.children:
            yield from child.walk()

    def addr_cells_or_default(self) -> int:
        return 2 if self.addr_cells == -1 else self.addr_cells

    def size_cells_or_default(self) -> int:
        return 1 if self.size_cells == -1 else self.size_cells


def _find_path(node: Optional[Node], path: str) -> Optional[Node]:
    for segment in path.split("/"):
        if node is None:
            return None
        if segment:
            node = node.get_subnode(segment)
    return node


class DtInfo:
    """A whole tree together with the settings that apply to it."""

    def __init__(
        self,
        dt: Node,
        outname: str = "-",
        plugin: bool = False,
        generate_symbols: bool = False,
        phandle_format: PhandleFormat = PhandleFormat.EPAPR,
    ) -> None:
        self.dt = dt
        self.outname = outname
        self.plugin = plugin
        self.generate_symbols = generate_symbols
        self.phandle_format = phandle_format
        self._next_phandle = 1

    def get_node_by_path(self, path: str) -> Optional[Node]:
        """Look up a node by its absolute path."""
        return _find_path(self.dt, path)

    def get_node_by_label(self, label: str) -> Optional[Node]:
        return next((n for n in self.dt.walk() if label in n.labels), None)

    def get_property_by_label(self, label: str) -> Optional[tuple[Node, Property]]:
        for node in self.dt.walk():
            for prop in node.properties:
                if label in prop.labels:
                    return node, prop
        return None

    def get_marker_label(
        self, label: str
    ) -> Optional[tuple[Node, Property, Marker]]:
        for node in self.dt.walk():
            for prop in node.properties:
                for marker in prop.val.markers_of_type(MarkerType.LABEL):
                    if marker.ref == label:
                        return node, prop, marker
        return None

    def get_node_by_phandle(self, phandle: int) -> Optional[Node]:
        if not phandle_is_valid(phandle):
            return None
        phandle &= _CELL_MASK
        return next((n for n in self.dt.walk() if n.phandle == phandle), None)

    def get_node_by_ref(self, ref: str) -> Optional[Node]:
        """Resolve a path, a label, or a label followed by a relative path."""
        if ref == "/":
            return self.dt
        if ref.startswith("/"):
            return self.get_node_by_path(ref)
        label, sep, path = ref.partition("/")
        target = self.get_node_by_label(label)
        if target is None or not sep:
            return target
        return _find_path(target, path)

    def get_node_phandle(self, node: Node) -> int:
        """Return a node's phandle, allocating one and its property if needed."""
        if phandle_is_valid(node.phandle):
            return node.phandle
        while self.get_node_by_phandle(self._next_phandle) is not None:
            self._next_phandle += 1
        phandle = self._next_phandle
        node.phandle = phandle

        def cell_value() -> Data:
            return Data().add_marker(MarkerType.TYPE_UINT32).append_cell(phandle)

        if (
            self.phandle_format & PhandleFormat.LEGACY
            and node.get_property("linux,phandle") is None
        ):
            node.add_property(Property("linux,phandle", cell_value()))
        if (
            self.phandle_format & PhandleFormat.EPAPR
            and node.get_property("phandle") is None
        ):
            node.add_property(Property("phandle", cell_value()))
        return phandle