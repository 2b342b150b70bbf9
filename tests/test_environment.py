"""Tests for the runtime environment lifecycle and teardown aggregation."""

import numpy as np
import pytest

from conftest import make_backend
from embedder.errors import ConfigurationError, LifecycleError
from embedder.runtime.environment import (
    EnvironmentState,
    RuntimeEnvironment,
    close_resources,
    global_environment,
    shutdown_global_environment,
)


def _backend(devices=("CPU",)):
    return make_backend(3, 4, lambda inputs: np.zeros(1), devices=devices)


class _BrokenTeardownEnvironment(RuntimeEnvironment):
    def _teardown(self, core) -> None:
        raise RuntimeError("core refused to die")


class _Session:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.destroyed = 0

    def destroy(self) -> None:
        self.destroyed += 1
        if self.fail:
            raise RuntimeError("session refused to die")


class TestRuntimeEnvironment:
    def test_state_transitions(self) -> None:
        env = RuntimeEnvironment(backend=_backend())
        assert env.state is EnvironmentState.UNINITIALIZED
        env.initialize()
        assert env.state is EnvironmentState.READY
        env.destroy()
        assert env.state is EnvironmentState.CLOSED

    def test_initialize_is_idempotent(self) -> None:
        backend = _backend()
        env = RuntimeEnvironment(backend=backend)
        env.initialize()
        env.initialize()
        assert backend.cores_created == 1

    def test_closed_is_terminal(self) -> None:
        env = RuntimeEnvironment(backend=_backend())
        env.initialize()
        env.destroy()
        with pytest.raises(LifecycleError):
            env.initialize()

    def test_destroy_is_idempotent(self) -> None:
        env = RuntimeEnvironment(backend=_backend())
        env.initialize()
        env.destroy()
        env.destroy()
        assert env.state is EnvironmentState.CLOSED

    def test_destroy_without_initialize(self) -> None:
        env = RuntimeEnvironment(backend=_backend())
        env.destroy()
        assert env.state is EnvironmentState.CLOSED

    def test_destroy_releases_core_reference(self) -> None:
        released = []

        class _Recording(RuntimeEnvironment):
            def _teardown(self, core) -> None:
                released.append(core)
                super()._teardown(core)

        backend = _backend()
        env = _Recording(backend=backend).initialize()
        env.destroy()
        assert released == [backend.core]
        assert env._core is None

    def test_teardown_failure(self) -> None:
        env = _BrokenTeardownEnvironment(backend=_backend()).initialize()
        with pytest.raises(LifecycleError, match="refused"):
            env.destroy()
        assert env.state is EnvironmentState.CLOSED

    def test_core_failure_is_configuration_error(self) -> None:
        class _NoCore:
            @staticmethod
            def Core():
                raise RuntimeError("no plugins")

        with pytest.raises(ConfigurationError, match="no plugins"):
            RuntimeEnvironment(backend=_NoCore).initialize()


class TestDevices:
    def test_list_devices(self) -> None:
        env = RuntimeEnvironment(backend=_backend(("CPU", "GPU")))
        assert env.list_devices() == ["CPU", "GPU"]

    def test_select_available(self) -> None:
        env = RuntimeEnvironment(backend=_backend(("CPU", "GPU")))
        assert env.select_device("GPU") == "GPU"

    def test_select_falls_back_to_cpu(self) -> None:
        env = RuntimeEnvironment(backend=_backend(("CPU",)))
        assert env.select_device("NPU") == "CPU"

    def test_select_auto(self) -> None:
        env = RuntimeEnvironment(backend=_backend(("CPU",)))
        assert env.select_device("auto") == "AUTO"

    def test_select_multi(self) -> None:
        env = RuntimeEnvironment(backend=_backend(("CPU", "GPU")))
        assert env.select_device("MULTI:CPU,GPU,NPU") == "MULTI:CPU,GPU"
        assert env.select_device("MULTI:GPU,NPU") == "GPU"
        assert env.select_device("MULTI:NPU") == "CPU"

    def test_device_properties(self) -> None:
        env = RuntimeEnvironment(backend=_backend(("CPU",)))
        assert env.device_properties("CPU") == {"FULL_DEVICE_NAME": "Fake CPU"}


class TestGlobalEnvironment:
    def test_shared_instance(self) -> None:
        backend = _backend()
        first = global_environment(backend=backend)
        second = global_environment()
        assert first is second
        assert first.is_ready
        assert backend.cores_created == 1

    def test_replaced_after_shutdown(self) -> None:
        first = global_environment(backend=_backend())
        shutdown_global_environment()
        assert first.state is EnvironmentState.CLOSED
        second = global_environment(backend=_backend())
        assert second is not first
        assert second.is_ready

    def test_shutdown_twice(self) -> None:
        global_environment(backend=_backend())
        shutdown_global_environment()
        shutdown_global_environment()


class TestCloseResources:
    def test_destroys_session_and_owned_environment(self) -> None:
        env = RuntimeEnvironment(backend=_backend()).initialize()
        session = _Session()
        close_resources(session, env, owns_environment=True)
        assert session.destroyed == 1
        assert env.state is EnvironmentState.CLOSED

    def test_shared_environment_left_running(self) -> None:
        env = RuntimeEnvironment(backend=_backend()).initialize()
        close_resources(_Session(), env, owns_environment=False)
        assert env.is_ready

    def test_no_session(self) -> None:
        env = RuntimeEnvironment(backend=_backend()).initialize()
        close_resources(None, env, owns_environment=True)
        assert env.state is EnvironmentState.CLOSED

    def test_environment_destroyed_even_if_session_fails(self) -> None:
        env = RuntimeEnvironment(backend=_backend()).initialize()
        with pytest.raises(LifecycleError) as excinfo:
            close_resources(_Session(fail=True), env, owns_environment=True)
        assert env.state is EnvironmentState.CLOSED
        assert len(excinfo.value.errors) == 1

    def test_both_failures_reported(self) -> None:
        env = _BrokenTeardownEnvironment(backend=_backend()).initialize()
        with pytest.raises(LifecycleError) as excinfo:
            close_resources(_Session(fail=True), env, owns_environment=True)
        errors = excinfo.value.errors
        assert len(errors) == 2
        message = str(excinfo.value)
        assert "session refused to die" in message
        assert "core refused to die" in message

    def test_environment_failure_alone(self) -> None:
        env = _BrokenTeardownEnvironment(backend=_backend()).initialize()
        with pytest.raises(LifecycleError, match="core refused"):
            close_resources(_Session(), env, owns_environment=True)
