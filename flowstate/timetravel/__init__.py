"""
Time-travel run artifacts: run manifest, series index, manifest metadata,
retry kernel policy and mode validation.
"""
from .run_reader import (
    RunArtifactReader,
    RunManifest,
    SeriesIndex,
    SeriesMetadata,
    SeriesReference,
    TimeGrid,
)
from .manifest_reader import (
    RunManifestReader,
    RunManifestMetadata,
    RunSchemaMetadata,
    RunStorageDescriptor,
)
from .retry_kernel import RetryKernelPolicy, RetryKernelPolicyResult, DEFAULT_KERNEL
from .mode_validator import (
    ModeValidator,
    ModeValidationContext,
    ModeValidationResult,
    ModeValidationWarning,
)

__all__ = [
    "RunArtifactReader",
    "RunManifest",
    "SeriesIndex",
    "SeriesMetadata",
    "SeriesReference",
    "TimeGrid",
    "RunManifestReader",
    "RunManifestMetadata",
    "RunSchemaMetadata",
    "RunStorageDescriptor",
    "RetryKernelPolicy",
    "RetryKernelPolicyResult",
    "DEFAULT_KERNEL",
    "ModeValidator",
    "ModeValidationContext",
    "ModeValidationResult",
    "ModeValidationWarning",
]
