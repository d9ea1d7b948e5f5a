# -----------------------------------------------------------------------------
# CORE LAYER
# -----------------------------------------------------------------------------
# Configuration, feature combinations, manifest editing and restore,
# toolchain resolution and the execution orchestrator.
# -----------------------------------------------------------------------------

from .config import MatrixConfig, build_config, find_config_file, load_config_file
from .features import FeatureGraph, feature_deps, feature_powerset, powerset
from .manifest import ManifestEditor, strip_sections
from .orchestrator import ExecutionOrchestrator, KeepGoing, Progress
from .restore import EditHandle, RestoreManager
from .toolchain import ToolchainResolver

__all__ = [
    "MatrixConfig", "build_config", "find_config_file", "load_config_file",
    "FeatureGraph", "feature_deps", "feature_powerset", "powerset",
    "ManifestEditor", "strip_sections",
    "ExecutionOrchestrator", "KeepGoing", "Progress",
    "EditHandle", "RestoreManager",
    "ToolchainResolver",
]
