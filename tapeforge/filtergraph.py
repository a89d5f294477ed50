"""Typed builder for ffmpeg ``-filter_complex`` graphs.

Stages are validated as they are added, so a dangling or duplicated label is
caught while the graph is built rather than when ffmpeg parses it.
"""

from dataclasses import dataclass

from tapeforge.errors import FormatError


class DanglingLabelError(FormatError):
    pass


class DuplicateLabelError(FormatError):
    pass


@dataclass(frozen=True)
class Stage:
    """A filter chain reading ``inputs`` and writing ``outputs``."""

    inputs: tuple[str, ...]
    filters: tuple[str, ...]
    outputs: tuple[str, ...]

    def render(self) -> str:
        ins = "".join(f"[{label}]" for label in self.inputs)
        outs = "".join(f"[{label}]" for label in self.outputs)
        chain = ", ".join(self.filters)
        return " ".join(part for part in (ins, chain, outs) if part)


class FilterGraph:
    """An ordered list of stages forming a DAG of stream labels.

    ``sources`` are input-file stream specifiers such as ``0:v``; they may be
    read by any number of stages. Every other label must be produced exactly
    once and consumed at most once, after it is produced.
    """

    def __init__(self, sources: tuple[str, ...] = ()):
        self.sources = tuple(sources)
        self.stages: list[Stage] = []
        self._produced: set[str] = set()
        self._consumed: set[str] = set()

    def add(self, inputs, filters, outputs) -> "FilterGraph":
        stage = Stage(tuple(inputs), tuple(filters), tuple(outputs))
        if not stage.filters:
            raise FormatError("Filter stage needs at least one filter")
        if not stage.outputs:
            raise DanglingLabelError(f"Stage {stage.render()!r} has no output label")

        for label in stage.inputs:
            if label in self.sources:
                continue
            if label not in self._produced:
                raise DanglingLabelError(f"Label [{label}] is consumed before it is produced")
            if label in self._consumed:
                raise DuplicateLabelError(f"Label [{label}] is consumed twice")

        seen: set[str] = set()
        for label in stage.outputs:
            if label in self._produced or label in self.sources or label in seen:
                raise DuplicateLabelError(f"Label [{label}] is produced twice")
            seen.add(label)

        self._consumed.update(l for l in stage.inputs if l not in self.sources)
        self._produced.update(stage.outputs)
        self.stages.append(stage)
        return self

    def extend(self, other: "FilterGraph") -> "FilterGraph":
        """Append ``other``'s stages, validating them against this graph."""
        for stage in other.stages:
            self.add(stage.inputs, stage.filters, stage.outputs)
        return self

    def copy(self) -> "FilterGraph":
        return FilterGraph(self.sources).extend(self)

    @property
    def outputs(self) -> list[str]:
        """Labels produced but not yet consumed, in production order."""
        return [
            label
            for stage in self.stages
            for label in stage.outputs
            if label not in self._consumed
        ]

    def require_output(self, label: str) -> None:
        if label not in self.outputs:
            raise DanglingLabelError(f"Graph has no unconsumed output [{label}]")

    def render(self) -> str:
        return ";\n".join(stage.render() for stage in self.stages)

    def __eq__(self, other) -> bool:
        if not isinstance(other, FilterGraph):
            return NotImplemented
        return self.sources == other.sources and self.stages == other.stages

    def __repr__(self) -> str:
        return f"FilterGraph({self.render()!r})"
