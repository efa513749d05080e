"""
Storyforge Pipelines Module

The panel pipeline: image queue, scene expansion and video jobs.
"""

from .panel_pipeline import PanelPipeline, ExpansionStaging, classify_failure

__all__ = [
    'PanelPipeline',
    'ExpansionStaging',
    'classify_failure',
]
