"""
Shape resolution for embedding models.

Reads the declared inputs/outputs of an ``ov.Model`` once at load time and
decides how the encoder treats the output:

    rank 2  [B, H]     -- already pooled sentence vectors
    rank 3  [B, T, H]  -- per-token hidden states, mean pooled by the encoder

The result is fixed for the lifetime of the encoder.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from embedder.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Dimension value used for axes the model leaves undeclared (dynamic).
DYNAMIC = -1

# Extra inputs the encoder knows how to fill on its own.
ZERO_FILLED_INPUTS = ("token_type_ids",)


@dataclass(frozen=True)
class PortInfo:
    """Declared name, element type and dims of one model input or output."""
    name: str
    names: Tuple[str, ...]
    element_type: str
    dims: Optional[Tuple[int, ...]]  # None when the rank itself is dynamic

    @property
    def rank(self) -> Optional[int]:
        return None if self.dims is None else len(self.dims)

    def matches(self, name: str) -> bool:
        return name == self.name or name in self.names


@dataclass(frozen=True)
class ModelOutputSpec:
    output_name: str
    rank: int
    hidden_size: int
    extra_inputs: Tuple[str, ...] = ()

    @property
    def pooled(self) -> bool:
        """True if the model already emits one vector per input."""
        return self.rank == 2

    def output_shape(self, batch_size: int, seq_len: int) -> Tuple[int, ...]:
        if self.pooled:
            return (batch_size, self.hidden_size)
        return (batch_size, seq_len, self.hidden_size)


def _port_info(port) -> PortInfo:
    pshape = port.get_partial_shape()
    if pshape.rank.is_dynamic:
        dims = None
    else:
        dims = tuple(d.get_length() if d.is_static else DYNAMIC for d in pshape)
    names = tuple(sorted(port.get_names()))
    return PortInfo(
        name=port.get_any_name(),
        names=names,
        element_type=str(port.get_element_type()),
        dims=dims,
    )


def describe_ports(model) -> Tuple[List[PortInfo], List[PortInfo]]:
    """Return (inputs, outputs) as declared by ``model``."""
    inputs = [_port_info(p) for p in model.inputs]
    outputs = [_port_info(p) for p in model.outputs]
    return inputs, outputs


def _find(ports: Sequence[PortInfo], name: str) -> Optional[PortInfo]:
    for port in ports:
        if port.matches(name):
            return port
    return None


def resolve_output_spec(
    model,
    input_ids_name: str,
    attention_mask_name: str,
    output_name: str,
) -> ModelOutputSpec:
    """
    Validate the configured port names and resolve the output layout.

    Raises:
        ConfigurationError : if a configured port is missing, the output
                             rank is not 2 or 3, or H is not declared.
    """
    inputs, outputs = describe_ports(model)

    logger.debug("== Inputs ==")
    for p in inputs:
        logger.debug("- name=%r type=%s dims=%s", p.name, p.element_type, p.dims)
    logger.debug("== Outputs ==")
    for p in outputs:
        logger.debug("- name=%r type=%s dims=%s", p.name, p.element_type, p.dims)

    for name in (input_ids_name, attention_mask_name):
        if _find(inputs, name) is None:
            raise ConfigurationError(
                f"input {name!r} not found in model (declared: {[p.name for p in inputs]})"
            )

    out = _find(outputs, output_name)
    if out is None:
        raise ConfigurationError(
            f"output {output_name!r} not found in model (declared: {[p.name for p in outputs]})"
        )

    if out.dims is None:
        raise ConfigurationError(f"output {output_name!r} has a dynamic rank, want 2 or 3")
    rank = len(out.dims)
    if rank not in (2, 3):
        raise ConfigurationError(
            f"unexpected output rank {rank} (dims={list(out.dims)}), want 2 or 3"
        )
    hidden = out.dims[rank - 1]
    if hidden <= 0:
        raise ConfigurationError(f"can't resolve hidden size from dims {list(out.dims)}")

    extra = []
    for p in inputs:
        if p.matches(input_ids_name) or p.matches(attention_mask_name):
            continue
        known = [n for n in ZERO_FILLED_INPUTS if p.matches(n)]
        if not known:
            raise ConfigurationError(
                f"model declares input {p.name!r} that the encoder cannot provide"
            )
        extra.append(known[0])

    spec = ModelOutputSpec(
        output_name=output_name,
        rank=rank,
        hidden_size=hidden,
        extra_inputs=tuple(extra),
    )
    logger.info(
        "Resolved output %r: rank=%d hidden=%d pooled=%s extra_inputs=%s",
        output_name, rank, hidden, spec.pooled, list(spec.extra_inputs),
    )
    return spec
