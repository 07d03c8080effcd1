"""
Pipeline Exceptions
===================

Error taxonomy shared by every pipeline stage.

Classes:
    - PipelineError: Base class, carries the stage that raised it
    - AcquisitionError: Network or archive failure
    - NoDataFileError: No spreadsheet or CSV found after extraction
    - SchemaError: Required column absent
    - TrainingError: Not enough rows for a model's training protocol
    - ConfigurationError: Invalid pipeline or model parameters
    - DimensionMismatchError: Predicted/observed length mismatch
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for all pipeline failures."""

    default_stage = "pipeline"

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.stage = stage or self.default_stage

    @property
    def kind(self) -> str:
        return type(self).__name__


class AcquisitionError(PipelineError):
    default_stage = "acquisition"


class NoDataFileError(PipelineError):
    default_stage = "acquisition"


class SchemaError(PipelineError):
    default_stage = "cleaning"


class TrainingError(PipelineError):
    default_stage = "training"


class ConfigurationError(PipelineError):
    default_stage = "configuration"


class DimensionMismatchError(PipelineError):
    default_stage = "evaluation"
