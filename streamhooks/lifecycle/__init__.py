"""
Process lifecycle: startup, post-bind activation and shutdown.
"""

from streamhooks.lifecycle.activation import ActivationHook
from streamhooks.lifecycle.phases import LifecycleError, LifecyclePhase, PhaseTracker
from streamhooks.lifecycle.resources import (
    DatabaseResource,
    ListenerBindError,
    ListenerResource,
    ManagedResource,
    ManagerResource,
    ResourceState,
    ResourceStateError,
)
from streamhooks.lifecycle.runner import Orchestrator, run
from streamhooks.lifecycle.shutdown import (
    ShutdownReport,
    ShutdownSequencer,
    ShutdownStepResult,
    ShutdownStepTimeout,
)
from streamhooks.lifecycle.startup import (
    Runtime,
    StartupCollaborators,
    StartupError,
    StartupSequencer,
)
from streamhooks.lifecycle.tls import TLSMaterialBundle, TLSMaterialError, load_tls_material

__all__ = [
    "ActivationHook",
    "DatabaseResource",
    "LifecycleError",
    "LifecyclePhase",
    "ListenerBindError",
    "ListenerResource",
    "ManagedResource",
    "ManagerResource",
    "Orchestrator",
    "PhaseTracker",
    "ResourceState",
    "ResourceStateError",
    "Runtime",
    "ShutdownReport",
    "ShutdownSequencer",
    "ShutdownStepResult",
    "ShutdownStepTimeout",
    "StartupCollaborators",
    "StartupError",
    "StartupSequencer",
    "TLSMaterialBundle",
    "TLSMaterialError",
    "load_tls_material",
    "run",
]
