"""
OpenVINO Runtime Environment
=============================
Owns the ``openvino.Core`` instance that every session in the process
compiles models with, and decides who is allowed to tear it down.

States::

    UNINITIALIZED --initialize()--> READY --destroy()--> CLOSED

``initialize()`` is idempotent while READY.  CLOSED is terminal: a closed
environment cannot be re-initialised; ``global_environment()`` hands out a
fresh one instead.

Ownership:
    An encoder configured with ``shared_runtime=True`` borrows the
    process-wide environment from ``global_environment()`` and never
    destroys it.  The application calls ``shutdown_global_environment()``
    once, after every sharing encoder has closed its session.  Encoders
    with ``shared_runtime=False`` own a private environment and destroy it
    in ``close()``.

Devices:
    CPU  -- always available, baseline performance
    GPU  -- Intel integrated GPU (iGPU)
    NPU  -- Neural Processing Unit on Meteor Lake+
    AUTO / MULTI:<devs> -- virtual devices handled by ``select_device``
"""

import enum
import logging
import threading
from typing import Any, Dict, List, Optional

from embedder.errors import ConfigurationError, LifecycleError

logger = logging.getLogger(__name__)


class EnvironmentState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    CLOSED = "closed"


def _default_backend():
    try:
        import openvino as ov
    except ImportError as exc:
        raise ConfigurationError(
            "openvino is required. Install: pip install openvino"
        ) from exc
    return ov


class RuntimeEnvironment:
    """
    Lifecycle wrapper around an OpenVINO ``Core``.

    ``backend`` is the module-like object providing ``Core``, ``Tensor``,
    ``Type`` and ``Shape``; it defaults to the ``openvino`` package.

    Usage::

        env = RuntimeEnvironment()
        env.initialize()
        model = env.read_model("models/minilm/model.onnx")
        ...
        env.destroy()
    """

    def __init__(self, backend: Any = None):
        self._backend = backend
        self._core = None
        self._state = EnvironmentState.UNINITIALIZED
        self._lock = threading.Lock()

    @property
    def state(self) -> EnvironmentState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is EnvironmentState.READY

    @property
    def backend(self):
        """The OpenVINO module (or substitute) tensors are created with."""
        if self._backend is None:
            self._backend = _default_backend()
        return self._backend

    @property
    def core(self):
        """Access the underlying Core, initialising on first use."""
        self.initialize()
        return self._core

    def initialize(self) -> "RuntimeEnvironment":
        """Create the Core.  No-op if already READY."""
        with self._lock:
            if self._state is EnvironmentState.READY:
                return self
            if self._state is EnvironmentState.CLOSED:
                raise LifecycleError("runtime environment already closed")
            try:
                self._core = self.backend.Core()
            except ConfigurationError:
                raise
            except Exception as exc:
                raise ConfigurationError(f"Failed to initialise OpenVINO Core: {exc}") from exc
            self._state = EnvironmentState.READY
            logger.info("OpenVINO runtime environment initialised")
            return self

    def destroy(self) -> None:
        """
        Release the Core and move to CLOSED.

        Destroying a CLOSED environment is a no-op.

        Raises:
            LifecycleError : if the teardown itself fails (the environment
                             is still marked CLOSED).
        """
        with self._lock:
            if self._state is EnvironmentState.CLOSED:
                return
            core, self._core = self._core, None
            self._state = EnvironmentState.CLOSED
            try:
                self._teardown(core)
            except Exception as exc:
                raise LifecycleError(f"runtime environment teardown failed: {exc}") from exc
            logger.info("OpenVINO runtime environment destroyed")

    def _teardown(self, core) -> None:
        """
        Release ``core``.

        ``ov.Core`` has no close call.  The engine unloads its plugins when
        the last reference is dropped, so releasing the reference that
        ``destroy`` took from the environment is the whole teardown.
        """
        del core

    def read_model(self, model_path: str):
        """Parse a model artifact (ONNX or IR) into an ``ov.Model``."""
        try:
            return self.core.read_model(model=str(model_path))
        except Exception as exc:
            raise ConfigurationError(f"Failed to read model {model_path}: {exc}") from exc

    def compile_model(self, model, device: str):
        return self.core.compile_model(model=model, device_name=device)

    # ------------------------------------------------------------------
    # Devices
    # ------------------------------------------------------------------

    def list_devices(self) -> List[str]:
        """Return a list of available device strings (e.g. ['CPU', 'GPU'])."""
        return list(self.core.available_devices)

    def device_properties(self, device: str) -> Dict[str, str]:
        """Return the readable properties of a device (name, architecture)."""
        props: Dict[str, str] = {}
        for key in (
            "FULL_DEVICE_NAME",
            "DEVICE_ARCHITECTURE",
            "OPTIMAL_NUMBER_OF_INFER_REQUESTS",
        ):
            try:
                props[key] = str(self.core.get_property(device, key))
            except Exception as exc:
                logger.debug("Property %s unavailable on %s: %s", key, device, exc)
        return props

    def select_device(self, preferred: str = "CPU") -> str:
        """
        Select an inference device.

        AUTO is returned as-is.  MULTI:<a>,<b> keeps the available
        sub-devices (collapsing to a single device if only one remains).
        Any other unavailable device falls back to CPU.
        """
        devices = self.list_devices()

        if preferred.upper() == "AUTO":
            logger.info("Selected device: AUTO (available devices: %s)", devices)
            return "AUTO"

        if preferred.upper().startswith("MULTI:"):
            sub_devices = preferred.split(":", 1)[1].split(",")
            valid_subs = [d for d in sub_devices if d in devices]
            if len(valid_subs) >= 2:
                multi_str = "MULTI:" + ",".join(valid_subs)
                logger.info("Selected device: %s", multi_str)
                return multi_str
            if valid_subs:
                logger.warning(
                    "MULTI requested but only '%s' available, using single device",
                    valid_subs[0],
                )
                return valid_subs[0]
            logger.warning("No MULTI sub-devices available, falling back to CPU")
            return "CPU"

        if preferred in devices:
            logger.info("Selected device: %s", preferred)
            return preferred

        logger.warning(
            "Preferred device '%s' not available (have: %s). Falling back to CPU.",
            preferred,
            devices,
        )
        return "CPU"


# ---------------------------------------------------------------------------
# Process-wide shared environment
# ---------------------------------------------------------------------------

_global_lock = threading.Lock()
_global_env: Optional[RuntimeEnvironment] = None


def global_environment(backend: Any = None) -> RuntimeEnvironment:
    """
    Return the process-wide environment, initialised.

    A new environment replaces the previous one once that has been CLOSED.
    ``backend`` is only used when a new environment is created.
    """
    global _global_env
    with _global_lock:
        if _global_env is None or _global_env.state is EnvironmentState.CLOSED:
            _global_env = RuntimeEnvironment(backend=backend)
        env = _global_env
    return env.initialize()


def shutdown_global_environment() -> None:
    """Tear down the process-wide environment.  Safe to call repeatedly."""
    global _global_env
    with _global_lock:
        env, _global_env = _global_env, None
    if env is not None:
        env.destroy()


def close_resources(session, environment: Optional[RuntimeEnvironment], owns_environment: bool) -> None:
    """
    Destroy ``session`` and, if owned, ``environment``.

    The environment teardown is attempted even when the session teardown
    fails.  If both fail, one LifecycleError carries both failures.
    """
    errors: List[BaseException] = []

    if session is not None:
        try:
            session.destroy()
        except Exception as exc:
            logger.error("Session teardown failed: %s", exc)
            errors.append(exc)

    if owns_environment and environment is not None:
        try:
            environment.destroy()
        except Exception as exc:
            logger.error("Environment teardown failed: %s", exc)
            errors.append(exc)

    if len(errors) == 1:
        if isinstance(errors[0], LifecycleError):
            raise errors[0]
        raise LifecycleError(f"teardown failed: {errors[0]}", errors) from errors[0]
    if errors:
        raise LifecycleError("session and environment teardown failed", errors)
