"""
Step framework and enrichment pipeline.
"""

from .pipeline import EnrichmentPipeline
from .step import BaseStep, Step

__all__ = ["BaseStep", "EnrichmentPipeline", "Step"]
