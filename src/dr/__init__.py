"""
dr - AI-assisted news research pipelines.

Two pipeline variants share one engine:
- Fast pipeline: collect, curate, analyze in batches, render a digest report
- Deep research pipeline: outline, per-section research with refinement,
  optional human article review, compile, render
"""

__version__ = "0.3.0"
