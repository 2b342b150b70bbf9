"""
Inference session bound to one compiled model.

Each ``run`` call acquires a fresh infer request plus its input/output
tensors inside a ``TensorScope``.  The scope drops every reference when the
call ends, whether it returned or raised, so tensor memory never outlives a
single ``encode`` call.
"""

import logging
from typing import Any, List, Sequence, Tuple

import numpy as np

from embedder.errors import InferenceError

logger = logging.getLogger(__name__)


class TensorScope:
    """Holds the tensors (and backing arrays) of one inference call."""

    def __init__(self, backend):
        self._backend = backend
        self._held: List[Any] = []

    def __enter__(self) -> "TensorScope":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def hold(self, obj):
        self._held.append(obj)
        return obj

    def from_array(self, array: np.ndarray):
        """Wrap an int64 matrix as an engine tensor of the same shape."""
        data = self.hold(np.ascontiguousarray(array, dtype=np.int64))
        try:
            return self.hold(self._backend.Tensor(data))
        except Exception as exc:
            raise InferenceError(f"tensor allocation {list(data.shape)}: {exc}") from exc

    def empty(self, shape: Sequence[int]):
        """Allocate an uninitialised f32 tensor with an explicit shape."""
        try:
            tensor = self._backend.Tensor(self._backend.Type.f32, self._backend.Shape(list(shape)))
        except Exception as exc:
            raise InferenceError(f"alloc out tensor {list(shape)}: {exc}") from exc
        return self.hold(tensor)

    def release(self) -> None:
        self._held.clear()

    @property
    def held(self) -> int:
        return len(self._held)


class InferenceSession:
    """
    Synchronous request/response handle on a compiled model.

    Usage::

        session = InferenceSession.bind(env, model, "input_ids",
                                        "attention_mask", "last_hidden_state")
        out = session.run(ids, mask, output_shape=(B, T, H))
        session.destroy()
    """

    def __init__(
        self,
        compiled_model,
        backend,
        input_ids_name: str,
        attention_mask_name: str,
        output_name: str,
        extra_inputs: Sequence[str] = (),
    ):
        self._compiled = compiled_model
        self._backend = backend
        self.input_ids_name = input_ids_name
        self.attention_mask_name = attention_mask_name
        self.output_name = output_name
        self.extra_inputs: Tuple[str, ...] = tuple(extra_inputs)

    @classmethod
    def bind(
        cls,
        environment,
        model,
        input_ids_name: str,
        attention_mask_name: str,
        output_name: str,
        device: str = "CPU",
        extra_inputs: Sequence[str] = (),
    ) -> "InferenceSession":
        """Compile ``model`` on ``device`` through ``environment``."""
        try:
            compiled = environment.compile_model(model, device)
        except Exception as exc:
            raise InferenceError(f"compile model on {device}: {exc}") from exc
        logger.info(
            "Bound session on %s inputs=%s output=%s",
            device,
            [input_ids_name, attention_mask_name, *extra_inputs],
            output_name,
        )
        return cls(
            compiled,
            environment.backend,
            input_ids_name,
            attention_mask_name,
            output_name,
            extra_inputs,
        )

    @property
    def is_open(self) -> bool:
        return self._compiled is not None

    def run(self, ids: np.ndarray, mask: np.ndarray, output_shape: Sequence[int]) -> np.ndarray:
        """
        Run one synchronous inference.

        Args:
            ids          : [B, T] token ids
            mask         : [B, T] attention mask
            output_shape : requested output shape, [B, H] or [B, T, H]

        Returns:
            float32 array with exactly ``output_shape``.

        Raises:
            InferenceError : session destroyed, allocation or run failure,
                             or the engine produced a different shape.
        """
        if self._compiled is None:
            raise InferenceError("encoder not initialized")

        expected = tuple(int(d) for d in output_shape)
        with TensorScope(self._backend) as scope:
            try:
                request = scope.hold(self._compiled.create_infer_request())
            except Exception as exc:
                raise InferenceError(f"create infer request: {exc}") from exc

            inputs = {
                self.input_ids_name: scope.from_array(ids),
                self.attention_mask_name: scope.from_array(mask),
            }
            for name in self.extra_inputs:
                inputs[name] = scope.from_array(np.zeros_like(ids))
            out_tensor = scope.empty(expected)

            try:
                for name, tensor in inputs.items():
                    request.set_tensor(name, tensor)
                request.set_tensor(self.output_name, out_tensor)
                request.infer()
                result = request.get_tensor(self.output_name)
            except Exception as exc:
                raise InferenceError(f"OpenVINO infer: {exc}") from exc

            got = tuple(int(d) for d in result.shape)
            if got != expected:
                raise InferenceError(f"output shape mismatch: got {list(got)}, want {list(expected)}")
            return np.array(result.data, dtype=np.float32, copy=True)

    def destroy(self) -> None:
        """Drop the compiled model.  Safe to call repeatedly."""
        if self._compiled is None:
            return
        self._compiled = None
        logger.debug("Session for output %r destroyed", self.output_name)
