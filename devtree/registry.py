"""The full set of tree checks, their default levels and how they are run."""

from __future__ import annotations

import sys
from typing import Any, Iterator, Optional, Sequence, TextIO

from devtree import buses, providers, structural
from devtree.checks_base import Check, CheckFn
from devtree.tree import DtInfo


class TreeErrors(Exception):
    """Raised when enabled error-level checks fail and output is not forced."""


# (name, function, data, warn, error, prerequisite names)
_Spec = tuple[str, Optional[CheckFn], Any, bool, bool, Sequence[str]]


def _warning(name: str, fn: CheckFn, data: Any = None, *prereqs: str) -> _Spec:
    return (name, fn, data, True, False, prereqs)


def _error(name: str, fn: CheckFn, data: Any = None, *prereqs: str) -> _Spec:
    return (name, fn, data, False, True, prereqs)


def _silent(name: str, fn: CheckFn, data: Any = None, *prereqs: str) -> _Spec:
    return (name, fn, data, False, False, prereqs)


def _definitions() -> list[_Spec]:
    """Every check, listed so that prerequisites come before their users."""
    specs: list[_Spec] = [
        _silent("always_fail", structural.check_always_fail),
        _error("duplicate_node_names", structural.check_duplicate_node_names),
        _error("duplicate_property_names", structural.check_duplicate_property_names),
        _error("node_name_chars", structural.check_node_name_chars, structural.NODECHARS),
        _silent(
            "node_name_chars_strict",
            structural.check_node_name_chars_strict,
            structural.PROPNODECHARSSTRICT,
        ),
        _error(
            "node_name_format", structural.check_node_name_format, None, "node_name_chars"
        ),
        _warning(
            "node_name_vs_property_name",
            structural.check_node_name_vs_property_name,
            None,
            "node_name_chars",
        ),
        _warning("unit_address_vs_reg", structural.check_unit_address_vs_reg),
        _error(
            "property_name_chars",
            structural.check_property_name_chars,
            structural.PROPCHARS,
        ),
        _silent(
            "property_name_chars_strict",
            structural.check_property_name_chars_strict,
            structural.PROPNODECHARSSTRICT,
        ),
        _error("duplicate_label", structural.check_duplicate_label_node),
        _error("explicit_phandles", structural.check_explicit_phandles),
        _error("name_is_string", structural.check_is_string, "name"),
        _error(
            "name_properties", structural.check_name_properties, None, "name_is_string"
        ),
        _error(
            "phandle_references",
            structural.fixup_phandle_references,
            None,
            "duplicate_node_names",
            "explicit_phandles",
        ),
        _error(
            "path_references",
            structural.fixup_path_references,
            None,
            "duplicate_node_names",
        ),
        _error(
            "omit_unused_nodes",
            structural.fixup_omit_unused_nodes,
            None,
            "phandle_references",
            "path_references",
        ),
        _warning("address_cells_is_cell", structural.check_is_cell, "#address-cells"),
        _warning("size_cells_is_cell", structural.check_is_cell, "#size-cells"),
        _warning("device_type_is_string", structural.check_is_string, "device_type"),
        _warning("model_is_string", structural.check_is_string, "model"),
        _warning("status_is_string", structural.check_is_string, "status"),
        _warning("label_is_string", structural.check_is_string, "label"),
        _warning(
            "compatible_is_string_list", structural.check_is_string_list, "compatible"
        ),
        _warning("names_is_string_list", structural.check_names_is_string_list),
        _warning("alias_paths", structural.check_alias_paths),
        _warning(
            "addr_size_cells",
            structural.fixup_addr_size_cells,
            None,
            "address_cells_is_cell",
            "size_cells_is_cell",
        ),
        _warning("reg_format", buses.check_reg_format, None, "addr_size_cells"),
        _warning("ranges_format", buses.check_ranges_format, "ranges", "addr_size_cells"),
        _warning(
            "dma_ranges_format",
            buses.check_ranges_format,
            "dma-ranges",
            "addr_size_cells",
        ),
        _warning(
            "pci_bridge",
            buses.check_pci_bridge,
            None,
            "device_type_is_string",
            "addr_size_cells",
        ),
        _warning(
            "pci_device_bus_num",
            buses.check_pci_device_bus_num,
            None,
            "reg_format",
            "pci_bridge",
        ),
        _warning(
            "pci_device_reg",
            buses.check_pci_device_reg,
            None,
            "reg_format",
            "pci_bridge",
        ),
        _warning(
            "simple_bus_bridge",
            buses.check_simple_bus_bridge,
            None,
            "addr_size_cells",
            "compatible_is_string_list",
        ),
        _warning(
            "simple_bus_reg",
            buses.check_simple_bus_reg,
            None,
            "reg_format",
            "simple_bus_bridge",
        ),
        _warning(
            "i2c_bus_bridge", buses.check_i2c_bus_bridge, None, "addr_size_cells"
        ),
        _warning(
            "i2c_bus_reg",
            buses.check_i2c_bus_reg,
            None,
            "reg_format",
            "i2c_bus_bridge",
        ),
        _warning(
            "spi_bus_bridge", buses.check_spi_bus_bridge, None, "addr_size_cells"
        ),
        _warning(
            "spi_bus_reg",
            buses.check_spi_bus_reg,
            None,
            "reg_format",
            "spi_bus_bridge",
        ),
        _warning(
            "unit_address_format",
            buses.check_unit_address_format,
            None,
            "node_name_format",
            "pci_bridge",
            "simple_bus_bridge",
        ),
        _warning(
            "avoid_default_addr_size",
            buses.check_avoid_default_addr_size,
            None,
            "addr_size_cells",
        ),
        _warning(
            "avoid_unnecessary_addr_size",
            buses.check_avoid_unnecessary_addr_size,
            None,
            "avoid_default_addr_size",
        ),
        _warning(
            "unique_unit_address",
            buses.check_unique_unit_address,
            None,
            "avoid_default_addr_size",
        ),
        _silent(
            "unique_unit_address_if_enabled",
            buses.check_unique_unit_address_if_enabled,
            None,
            "avoid_default_addr_size",
        ),
        _warning(
            "obsolete_chosen_interrupt_controller",
            providers.check_obsolete_chosen_interrupt_controller,
        ),
        _warning("chosen_node_is_root", providers.check_chosen_node_is_root),
        _warning("chosen_node_bootargs", providers.check_chosen_node_bootargs),
        _warning("chosen_node_stdout_path", providers.check_chosen_node_stdout_path),
    ]

    for prefix, provider in providers.PHANDLE_PROVIDERS.items():
        specs.append(
            _warning(f"{prefix}_is_cell", structural.check_is_cell, provider.cell_name)
        )
        specs.append(
            _warning(
                f"{prefix}_property",
                providers.check_provider_cells_property,
                provider,
                f"{prefix}_is_cell",
                "phandle_references",
            )
        )

    specs += [
        _warning(
            "gpios_property",
            providers.check_gpios_property,
            None,
            "phandle_references",
        ),
        _silent("deprecated_gpio_property", providers.check_deprecated_gpio_property),
        _warning(
            "interrupt_provider",
            providers.check_interrupt_provider,
            None,
            "interrupts_extended_is_cell",
        ),
        _warning(
            "interrupt_map",
            providers.check_interrupt_map,
            None,
            "phandle_references",
            "addr_size_cells",
            "interrupt_provider",
        ),
        _warning("interrupts_property", providers.check_interrupts_property),
        _warning("graph_nodes", providers.check_graph_nodes),
        _warning("graph_port", providers.check_graph_port, None, "graph_nodes"),
        _warning("graph_endpoint", providers.check_graph_endpoint, None, "graph_nodes"),
        _warning(
            "graph_child_address",
            providers.check_graph_child_address,
            None,
            "graph_nodes",
            "graph_port",
            "graph_endpoint",
        ),
    ]
    return specs


def _table_order() -> list[str]:
    """The order in which checks are run."""
    order = [
        "duplicate_node_names", "duplicate_property_names",
        "node_name_chars", "node_name_format", "property_name_chars",
        "name_is_string", "name_properties", "node_name_vs_property_name",
        "duplicate_label",
        "explicit_phandles",
        "phandle_references", "path_references",
        "omit_unused_nodes",
        "address_cells_is_cell", "size_cells_is_cell",
        "device_type_is_string", "model_is_string", "status_is_string",
        "label_is_string",
        "compatible_is_string_list", "names_is_string_list",
        "property_name_chars_strict",
        "node_name_chars_strict",
        "addr_size_cells", "reg_format", "ranges_format", "dma_ranges_format",
        "unit_address_vs_reg",
        "unit_address_format",
        "pci_bridge", "pci_device_reg", "pci_device_bus_num",
        "simple_bus_bridge", "simple_bus_reg",
        "i2c_bus_bridge", "i2c_bus_reg",
        "spi_bus_bridge", "spi_bus_reg",
        "avoid_default_addr_size",
        "avoid_unnecessary_addr_size",
        "unique_unit_address",
        "unique_unit_address_if_enabled",
        "obsolete_chosen_interrupt_controller",
        "chosen_node_is_root", "chosen_node_bootargs", "chosen_node_stdout_path",
    ]
    for prefix in providers.PHANDLE_PROVIDERS:
        order += [f"{prefix}_property", f"{prefix}_is_cell"]
    order += [
        "deprecated_gpio_property",
        "gpios_property",
        "interrupts_property",
        "interrupt_provider",
        "interrupt_map",
        "alias_paths",
        "graph_nodes", "graph_child_address", "graph_port", "graph_endpoint",
        "always_fail",
    ]
    return order


class CheckSet:
    """A fresh, independently configurable set of all tree checks."""

    def __init__(self, quiet: int = 0, stream: Optional[TextIO] = None) -> None:
        self.quiet = quiet
        self.stream = stream
        by_name: dict[str, Check] = {}
        for name, fn, data, warn, error, prereq_names in _definitions():
            by_name[name] = Check(
                name=name,
                fn=fn,
                data=data,
                warn=warn,
                error=error,
                prereqs=[by_name[p] for p in prereq_names],
                quiet=quiet,
                stream=stream,
            )
        self._by_name = by_name
        self._table = [by_name[name] for name in _table_order()]

    def __iter__(self) -> Iterator[Check]:
        return iter(self._table)

    def __len__(self) -> int:
        return len(self._table)

    def get(self, name: str) -> Check:
        """The check with the given name; KeyError if there is none."""
        return self._by_name[name]

    def _enable(self, check: Check, warn: bool, error: bool) -> None:
        # Raising a level also raises it for the prerequisites.
        if (warn and not check.warn) or (error and not check.error):
            for prereq in check.prereqs:
                self._enable(prereq, warn, error)
        check.warn = check.warn or warn
        check.error = check.error or error

    def _disable(self, check: Check, warn: bool, error: bool) -> None:
        # Lowering a level also lowers it for the checks depending on this one.
        if (warn and check.warn) or (error and check.error):
            for other in self._table:
                if any(p is check for p in other.prereqs):
                    self._disable(other, warn, error)
        check.warn = check.warn and not warn
        check.error = check.error and not error

    def parse_option(self, warn: bool, error: bool, arg: str) -> None:
        """Enable a check by name, or disable it with a "no-" or "no_" prefix."""
        name = arg
        enable = True
        if arg.startswith(("no-", "no_")):
            name = arg[3:]
            enable = False

        check = self._by_name.get(name)
        if check is None:
            raise ValueError(f'Unrecognized check name "{name}"')
        if enable:
            self._enable(check, warn, error)
        else:
            self._disable(check, warn, error)

    def process(self, dti: DtInfo, force: bool = False) -> bool:
        """Run every enabled check over the tree.

        Returns True if an error-level check failed. Raises TreeErrors in
        that case unless ``force`` is set.
        """
        error = False
        for check in self._table:
            if check.warn or check.error:
                error = error or check.run(dti)

        if error:
            if not force:
                raise TreeErrors(
                    "Input tree has errors, aborting (use -f to force output)"
                )
            if self.quiet < 3:
                stream = self.stream if self.stream is not None else sys.stderr
                stream.write("Warning: Input tree has errors, output forced\n")
        return error