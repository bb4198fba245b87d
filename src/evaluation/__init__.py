"""
src/evaluation: batch passive-liveness evaluation pipeline.

Module layout
-------------
config.py    - supported extensions, diagnostic texts, export columns
models.py    - ImageInfo, PreviewRef, EvaluationItem, BatchJobState, enums
images.py    - decoding (Pillow), base64 helpers, size formatting, previews
pipeline.py  - BatchEvaluationPipeline and PipelineObserver
export.py    - CSV / JSON export of results
runner.py    - command-line entry point (python -m src.evaluation.runner)

Public interface
----------------
Run a batch:
    pipeline = BatchEvaluationPipeline(IdentityClientState().init())
    job = pipeline.run(paths)
    export_results_csv(job.items, Path("results.csv"))
    pipeline.clear()
"""

from .export import export_raw_responses_json, export_results_csv, results_to_dataframe
from .models import (
    BatchJobState,
    EvaluationItem,
    ImageInfo,
    ItemOutcome,
    ItemPhase,
    JobStatus,
    PreviewRef,
)
from .pipeline import BatchEvaluationPipeline, PipelineObserver

__all__ = [
    # Pipeline
    "BatchEvaluationPipeline",
    "PipelineObserver",
    # Data model
    "BatchJobState",
    "EvaluationItem",
    "ImageInfo",
    "ItemOutcome",
    "ItemPhase",
    "JobStatus",
    "PreviewRef",
    # Export
    "export_results_csv",
    "export_raw_responses_json",
    "results_to_dataframe",
]
