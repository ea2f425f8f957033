"""Machinery for running tree checks that depend on one another."""

from __future__ import annotations

import enum
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, TextIO

from devtree.tree import DtInfo, Node, Property


class CheckStatus(enum.Enum):
    """Outcome of a check."""

    UNCHECKED = 0
    PREREQ = 1
    PASSED = 2
    FAILED = 3


CheckFn = Callable[["Check", DtInfo, Node], None]


def is_multiple_of(multiple: int, divisor: int) -> bool:
    """True if multiple divides evenly; a zero divisor only divides zero."""
    if divisor == 0:
        return multiple == 0
    return multiple % divisor == 0


@dataclass(eq=False)
class Check:
    """A named check applied to every node, with prerequisite checks.

    ``warn`` and ``error`` select how failures are reported; ``quiet``
    suppresses warnings (at 1 and above) and errors (at 2 and above).
    Every message written is also kept in ``messages``.
    """

    name: str
    fn: Optional[CheckFn] = None
    data: Any = None
    warn: bool = False
    error: bool = False
    prereqs: list["Check"] = field(default_factory=list)
    status: CheckStatus = CheckStatus.UNCHECKED
    inprogress: bool = False
    quiet: int = 0
    stream: Optional[TextIO] = None
    messages: list[str] = field(default_factory=list)

    def _report(
        self,
        dti: DtInfo,
        node: Optional[Node],
        message: str,
        prop: Optional[Property] = None,
    ) -> None:
        if not (self.warn and self.quiet < 1) and not (self.error and self.quiet < 2):
            return

        pos: Optional[str] = None
        if prop is not None and prop.srcpos:
            pos = prop.srcpos[0]
        elif node is not None and node.srcpos:
            pos = node.srcpos[0]

        if pos is not None:
            head = pos
        elif dti.outname == "-":
            head = "<stdout>"
        else:
            head = dti.outname

        level = "ERROR" if self.error else "Warning"
        text = f"{head}: {level} ({self.name}): "
        if node is not None:
            if prop is not None:
                text += f"{node.fullpath}:{prop.name}: "
            else:
                text += f"{node.fullpath}: "
        text += message + "\n"

        if prop is None and pos is not None and node is not None:
            for extra in node.srcpos[1:]:
                text += f"  also defined at {extra}\n"

        self.messages.append(text)
        stream = self.stream if self.stream is not None else sys.stderr
        stream.write(text)

    def fail(
        self,
        dti: DtInfo,
        node: Optional[Node],
        message: str,
        prop: Optional[Property] = None,
    ) -> None:
        """Mark the check as failed and report the message."""
        self.status = CheckStatus.FAILED
        self._report(dti, node, message, prop)

    def _visit(self, dti: DtInfo, node: Node) -> None:
        if self.fn is not None:
            self.fn(self, dti, node)
        for child in node.children:
            if not child.deleted:
                self._visit(dti, child)

    def run(self, dti: DtInfo) -> bool:
        """Run the check once, after its prerequisites.

        Returns True if this check or a prerequisite produced an error.
        """
        if self.inprogress:
            raise RuntimeError(f"check {self.name!r} depends on itself")

        error = False
        if self.status is CheckStatus.UNCHECKED:
            self.inprogress = True
            try:
                for prereq in self.prereqs:
                    error = error or prereq.run(dti)
                    if prereq.status is not CheckStatus.PASSED:
                        self.status = CheckStatus.PREREQ
                        self._report(
                            dti, None, f"Failed prerequisite '{prereq.name}'"
                        )
                if self.status is CheckStatus.UNCHECKED:
                    self._visit(dti, dti.dt)
                    if self.status is CheckStatus.UNCHECKED:
                        self.status = CheckStatus.PASSED
            finally:
                self.inprogress = False

        if self.status is not CheckStatus.PASSED and self.error:
            error = True
        return error