"""Pipeline orchestration for submission verification.

- VerificationOrchestrator: creates, runs and exposes verification pipelines
- PipelineHandle: awaitable handle returned by start_verification
"""

from terra_verify.pipeline.verification_pipeline import (
    PipelineHandle,
    VerificationOrchestrator,
)

__all__ = ["PipelineHandle", "VerificationOrchestrator"]
