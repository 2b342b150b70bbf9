"""Test fixtures: an in-memory stand-in for the OpenVINO API and a toy tokenizer."""

import weakref
from pathlib import Path
from types import SimpleNamespace
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np
import pytest

from embedder.config import EncoderConfig
from embedder.embeddings.encoder import EmbeddingEncoder
from embedder.runtime.environment import RuntimeEnvironment, shutdown_global_environment


# ---------------------------------------------------------------------------
# Fake OpenVINO objects
# ---------------------------------------------------------------------------

class FakeDimension:
    def __init__(self, value: int):
        self._value = value

    @property
    def is_static(self) -> bool:
        return self._value >= 0

    def get_length(self) -> int:
        if self._value < 0:
            raise RuntimeError("dynamic dimension")
        return self._value


class FakePartialShape:
    def __init__(self, dims: Optional[Sequence[int]]):
        self._dims = None if dims is None else [FakeDimension(d) for d in dims]
        self.rank = SimpleNamespace(is_dynamic=dims is None)

    def __iter__(self):
        return iter(self._dims or [])


class FakePort:
    def __init__(
        self,
        name: str,
        dims: Optional[Sequence[int]],
        element_type: str = "i64",
        aliases: Sequence[str] = (),
    ):
        self._name = name
        self._aliases = set(aliases)
        self._dims = dims
        self._element_type = element_type

    def get_any_name(self) -> str:
        return self._name

    def get_names(self):
        return {self._name} | self._aliases

    def get_partial_shape(self) -> FakePartialShape:
        return FakePartialShape(self._dims)

    def get_element_type(self) -> str:
        return self._element_type


class FakeModel:
    def __init__(self, inputs: List[FakePort], outputs: List[FakePort]):
        self.inputs = inputs
        self.outputs = outputs


class FakeTensor:
    """Either ``Tensor(array)`` or ``Tensor(element_type, shape)``."""

    def __init__(self, *args):
        if len(args) == 1:
            self.data = args[0]
        else:
            self.data = np.zeros(tuple(args[1]), dtype=np.float32)

    @property
    def shape(self):
        return tuple(self.data.shape)


class FakeInferRequest:
    def __init__(self, compiled: "FakeCompiledModel"):
        self._compiled = compiled
        self._tensors: Dict[str, FakeTensor] = {}

    def set_tensor(self, name: str, tensor: FakeTensor) -> None:
        self._tensors[name] = tensor

    def infer(self) -> None:
        compiled = self._compiled
        inputs = {
            name: t.data for name, t in self._tensors.items() if name != compiled.output_name
        }
        compiled.calls.append(inputs)
        result = np.asarray(compiled.fn(inputs), dtype=np.float32)
        out = self._tensors.get(compiled.output_name)
        if out is not None and out.shape == result.shape:
            out.data[...] = result
        else:
            self._tensors[compiled.output_name] = FakeTensor(result)

    def get_tensor(self, name: str) -> FakeTensor:
        return self._tensors[name]


class FakeCompiledModel:
    def __init__(self, fn: Callable, output_name: str):
        self.fn = fn
        self.output_name = output_name
        self.calls: List[dict] = []
        self.requests: List[weakref.ref] = []

    def create_infer_request(self) -> FakeInferRequest:
        request = FakeInferRequest(self)
        self.requests.append(weakref.ref(request))
        return request


class FakeCore:
    def __init__(self, model: FakeModel, fn: Callable, output_name: str, devices=("CPU",)):
        self.model = model
        self.fn = fn
        self.output_name = output_name
        self.available_devices = list(devices)
        self.read_paths: List[str] = []
        self.compiled: List[FakeCompiledModel] = []

    def read_model(self, model: str) -> FakeModel:
        self.read_paths.append(model)
        return self.model

    def compile_model(self, model, device_name: str) -> FakeCompiledModel:
        compiled = FakeCompiledModel(self.fn, self.output_name)
        compiled.device = device_name
        self.compiled.append(compiled)
        return compiled

    def get_property(self, device: str, key: str):
        if key == "FULL_DEVICE_NAME":
            return f"Fake {device}"
        raise RuntimeError(f"unsupported property {key}")


class FakeBackend:
    """Module-like object standing in for ``openvino``."""

    Tensor = FakeTensor
    Type = SimpleNamespace(f32="f32")

    def __init__(self, core: FakeCore):
        self.core = core
        self.cores_created = 0

    @staticmethod
    def Shape(dims):
        return tuple(dims)

    def Core(self) -> FakeCore:
        self.cores_created += 1
        return self.core


def make_model(
    rank: int,
    hidden: int,
    output_name: str = "last_hidden_state",
    extra_inputs: Sequence[str] = (),
) -> FakeModel:
    inputs = [FakePort("input_ids", [-1, -1]), FakePort("attention_mask", [-1, -1])]
    inputs += [FakePort(name, [-1, -1]) for name in extra_inputs]
    dims = [-1, hidden] if rank == 2 else [-1, -1, hidden]
    return FakeModel(inputs, [FakePort(output_name, dims, "f32")])


def make_backend(
    rank: int,
    hidden: int,
    fn: Callable,
    output_name: str = "last_hidden_state",
    extra_inputs: Sequence[str] = (),
    devices=("CPU",),
) -> FakeBackend:
    model = make_model(rank, hidden, output_name, extra_inputs)
    return FakeBackend(FakeCore(model, fn, output_name, devices))


# ---------------------------------------------------------------------------
# Fake tokenizer
# ---------------------------------------------------------------------------

class FakeTokenizer:
    """
    Maps known texts to fixed ids; otherwise [CLS] + one id per word + [SEP].

    Texts listed in ``reject`` raise ValueError.
    """

    def __init__(self, vocab: Optional[Dict[str, List[int]]] = None, pad_id: int = 0, reject=()):
        self.vocab = vocab or {}
        self.pad_id = pad_id
        self.reject = set(reject)

    def encode_single(self, text: str) -> List[int]:
        if text in self.reject:
            raise ValueError(f"cannot tokenize {text!r}")
        if text in self.vocab:
            return list(self.vocab[text])
        return [101] + [1000 + len(word) for word in text.split()] + [102]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def model_dir(tmp_path: Path) -> Path:
    """A model directory holding an (empty) ONNX artifact."""
    d = tmp_path / "model"
    d.mkdir()
    (d / "model.onnx").write_bytes(b"")
    return d


@pytest.fixture(autouse=True)
def reset_global_environment():
    yield
    shutdown_global_environment()


@pytest.fixture
def build_encoder(model_dir: Path):
    """Factory: encoder over a fake engine with the given output rank and H."""
    created: List[EmbeddingEncoder] = []

    def _build(
        rank: int,
        hidden: int,
        fn: Callable,
        tokenizer=None,
        environment: Optional[RuntimeEnvironment] = None,
        **config_kwargs,
    ) -> EmbeddingEncoder:
        config_kwargs.setdefault("output_name", "last_hidden_state")
        if environment is None:
            backend = make_backend(rank, hidden, fn, output_name=config_kwargs["output_name"])
            environment = RuntimeEnvironment(backend=backend)
        config = EncoderConfig(model_path=str(model_dir), **config_kwargs)
        encoder = EmbeddingEncoder(config, tokenizer=tokenizer or FakeTokenizer(), environment=environment)
        created.append(encoder)
        return encoder

    yield _build
    for encoder in created:
        encoder.close()
