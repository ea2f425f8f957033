# devtree

`devtree` holds a device tree in memory, the raw bytes of its property
values, and the semantic checks that are run on a tree before it is
written out: naming rules, phandle and path reference fixups, address
and size cell layout, bus addressing, interrupts, graph endpoints and
more.

## Modules

- `devtree.data`: `Data` is a property value as a `bytearray` (`val`)
  plus an ordered list of `Marker`s. A `Marker` has an `offset`, a
  `MarkerType` (`TYPE_NONE`, `REF_PHANDLE`, `REF_PATH`, `LABEL`,
  `TYPE_UINT8` … `TYPE_UINT64`, `TYPE_STRING`) and an optional `ref`.
  `Data` methods change the value in place and return it, so they chain:
  `append`, `append_cell` (32 bits), `append_addr` (64 bits),
  `append_byte`, `append_integer(value, bits)` for 8, 16, 32 or 64 bits
  (any other size raises `ValueError`), `append_re(address, size)` for a
  memory reservation entry, `append_zeroes`, `append_align`, `merge`,
  `add_marker`, `insert_at_marker`. `markers_of_type` yields markers of
  one type, `is_one_string` tells whether the value is exactly one
  NUL-terminated string, and `Data.from_file(stream, maxlen)` reads a
  binary stream. All integers are big-endian.
- `devtree.tree`: `Node`, `Property` and `DtInfo`.
  - `Node(name)` has `add_property`, `add_child`, `get_property`,
    `get_subnode`, `delete`, `walk`, and the derived `fullpath`,
    `basename`, `unitname`, `properties` and `children` (deleted entries
    left out).
  - `Property(name, val)` has `cell(index)` and `as_string()`.
  - `DtInfo(dt, outname="-", plugin=False, generate_symbols=False,
    phandle_format=PhandleFormat.EPAPR)` wraps the root node and looks
    nodes up by path, label, phandle or reference (`get_node_by_ref`
    accepts a path, a label, or a label followed by a relative path).
    `get_node_phandle` allocates a phandle and adds the `phandle` and/or
    `linux,phandle` property as `phandle_format` says.
  - `phandle_is_valid(phandle)` is false for 0 and 0xffffffff.
- `devtree.checks_base`: `Check`, `CheckStatus` and `is_multiple_of`.
  A check runs its function on every node, after its prerequisite
  checks; each message it writes is also kept in `Check.messages`, and
  its outcome in `Check.status`.
- `devtree.structural`, `devtree.buses`, `devtree.providers`: the check
  functions. They cover node and property name characters, duplicate
  names and labels, explicit phandles, `name` properties, phandle and
  path reference fixups, nodes marked to be omitted when unused,
  aliases, `reg`/`ranges`/`dma-ranges` layout, PCI, simple-bus, I2C and
  SPI bus addressing, unit address format and uniqueness, `/chosen`,
  phandle-plus-arguments properties such as `clocks`, `resets` and
  `*-gpios`, `interrupts`, `interrupt-map` and graph ports and
  endpoints.
- `devtree.registry`: `CheckSet` builds the full table of checks, each
  with its default level (warning, error or off), and runs them.
  `TreeErrors` is raised when an error-level check fails.

## Installing

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Using it

Build a tree, then run the checks on it:

```python
import sys

from devtree.data import Data
from devtree.tree import DtInfo, Node, Property
from devtree.registry import CheckSet, TreeErrors

root = Node("")
root.add_property(Property("#address-cells", Data().append_cell(1)))
root.add_property(Property("#size-cells", Data().append_cell(1)))

uart = Node("serial@1000")
uart.add_property(Property("reg", Data().append_cell(0x1000).append_cell(0x100)))
root.add_child(uart)

dti = DtInfo(root)

checks = CheckSet(quiet=0, stream=sys.stderr)
checks.parse_option(True, False, "no-unit_address_vs_reg")
try:
    had_errors = checks.process(dti, force=False)
except TreeErrors:
    print("tree has errors")
```

`CheckSet` can be iterated in run order, and `get(name)` returns one
check (`KeyError` if there is none).

`parse_option(warn, error, name)` raises the named check to warning
and/or error level, and raises its prerequisites with it. A name that
starts with `no-` or `no_` lowers the level instead, and also lowers the
checks that depend on it. An unknown name raises `ValueError`.

`process(dti, force=False)` runs every check that is at warning or error
level and returns whether an error-level check failed. Messages go to
`stream` (standard error by default); `quiet` at 1 silences warnings, at
2 also errors, and at 3 also the closing summary. If an error-level check
failed, `process` raises `TreeErrors`, unless `force` is true, in which
case it writes a warning and returns `True`.

Some checks change the tree as they run: phandle references are filled
in, path references are inserted into property values, redundant `name`
properties and unused nodes marked `omit_if_unused` are deleted, and
nodes get their `addr_cells`, `size_cells`, `phandle` and `bus` set.

## What it does not do

The package works on a tree built in Python. It does not read device
tree source text, does not read or write flattened binary blobs, does
not apply overlays, and has no command-line tool.