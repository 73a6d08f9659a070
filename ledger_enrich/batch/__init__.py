"""
Batch enrichment runs.
"""

from .enrichment_job import EnrichmentJob, build_default_pipeline

__all__ = ["EnrichmentJob", "build_default_pipeline"]
