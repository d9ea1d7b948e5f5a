# -----------------------------------------------------------------------------
# DOMAIN LAYER
# -----------------------------------------------------------------------------
# Workspace metadata, feature flags, toolchain versions, the run plan and
# the error taxonomy shared by every other layer.
# -----------------------------------------------------------------------------

from .errors import (
    ConfigurationError,
    ExternalCommandFailure,
    FailedRunsError,
    ManifestFormatError,
    ManifestIOError,
    MatrixError,
    RangeSpecError,
    RestoreFailure,
    ToolchainInstallFailure,
    VersionDetectionFailure,
)
from .models import (
    Dependency,
    Feature,
    FeatureKind,
    LogGroup,
    Package,
    Partition,
    RunPlanEntry,
    RunRecord,
    RunState,
    RunVariant,
    Version,
    VersionBound,
    VersionRange,
    Workspace,
)

__all__ = [
    "ConfigurationError", "ExternalCommandFailure", "FailedRunsError",
    "ManifestFormatError", "ManifestIOError", "MatrixError", "RangeSpecError",
    "RestoreFailure", "ToolchainInstallFailure", "VersionDetectionFailure",
    "Dependency", "Feature", "FeatureKind", "LogGroup", "Package", "Partition",
    "RunPlanEntry", "RunRecord", "RunState", "RunVariant",
    "Version", "VersionBound", "VersionRange", "Workspace",
]
