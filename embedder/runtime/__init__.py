"""
Runtime subpackage -- OpenVINO engine integration.

Modules:
    environment -- process-wide Core lifecycle, device selection, teardown
    shapes      -- declared port inspection and output layout resolution
    session     -- compiled-model session with per-call tensor scopes
"""

from embedder.runtime.environment import (
    EnvironmentState,
    RuntimeEnvironment,
    close_resources,
    global_environment,
    shutdown_global_environment,
)
from embedder.runtime.session import InferenceSession, TensorScope
from embedder.runtime.shapes import ModelOutputSpec, PortInfo, describe_ports, resolve_output_spec
