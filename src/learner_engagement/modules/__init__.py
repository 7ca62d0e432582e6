"""
Inference Modules

One subpackage per modality. Every modality has a primary torch model and a
built-in fallback estimator behind the common ``InferenceModule`` interface.
"""

from .base import FaceRegion, InferenceModule, ModuleInput, ModuleResult, select_module
from .model_store import ModelStore, create_model_store
from .resources import BufferScope, ResourceTracker
from .suite import InferenceSuite, create_inference_suite

__all__ = [
    'FaceRegion', 'InferenceModule', 'ModuleInput', 'ModuleResult', 'select_module',
    'ModelStore', 'create_model_store', 'BufferScope', 'ResourceTracker',
    'InferenceSuite', 'create_inference_suite'
]
