"""
Construction of the seven inference modules used by a tracking session.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional

from .base import InferenceModule, select_module
from .cognitive_load import CognitiveLoadEstimator, EyeSignalCognitiveEstimator
from .emotion import EmotionClassifier, HeuristicEmotionEstimator
from .engagement import EngagementEstimator, GatedFusionEstimator
from .face import DnnFaceDetector, HaarFaceDetector
from .gaze import GazeEstimator, PupilGazeEstimator
from .micro_expression import MicroExpressionDetector, SpikeMicroExpressionDetector
from .model_store import ModelStore, create_model_store, resolve_device
from .posture import GeometricPostureAnalyzer, PostureAnalyzer

logger = logging.getLogger(__name__)


@dataclass
class InferenceSuite:
    """One module per modality, each either primary or fallback."""
    face: InferenceModule
    emotion: InferenceModule
    gaze: InferenceModule
    posture: InferenceModule
    micro_expression: InferenceModule
    cognitive_load: InferenceModule
    engagement: InferenceModule

    def __iter__(self) -> Iterator[InferenceModule]:
        return iter((
            self.face, self.emotion, self.gaze, self.posture,
            self.micro_expression, self.cognitive_load, self.engagement
        ))

    @property
    def parallel_modules(self):
        """Modules that run concurrently after face detection."""
        return (self.emotion, self.gaze, self.posture, self.micro_expression, self.cognitive_load)

    def models_loaded(self) -> Dict[str, str]:
        """Map module name to 'primary' or 'fallback'."""
        return {module.name: module.source for module in self}

    def close(self):
        for module in self:
            module.close()


def create_inference_suite(config: Dict[str, Any],
                           store: Optional[ModelStore] = None) -> InferenceSuite:
    """
    Load every inference module, falling back per module where needed.

    Args:
        config: Full configuration dictionary
        store: Model store to resolve artifacts from (built from config if None)

    Returns:
        InferenceSuite

    Raises:
        InitializationError: If a module has neither a primary nor a fallback
    """
    store = store or create_model_store(config)
    device = resolve_device(config.get('models', {}).get('device', 'auto'))
    analysis = config.get('analysis', {})
    interval_s = analysis.get('interval_ms', 100) / 1000.0

    suite = InferenceSuite(
        face=select_module(
            DnnFaceDetector, HaarFaceDetector, store, device,
            confidence_threshold=analysis.get('face_confidence', 0.5)
        ),
        emotion=select_module(EmotionClassifier, HeuristicEmotionEstimator, store, device),
        gaze=select_module(GazeEstimator, PupilGazeEstimator, store, device, interval_s=interval_s),
        posture=select_module(PostureAnalyzer, GeometricPostureAnalyzer, store, device),
        micro_expression=select_module(
            MicroExpressionDetector, SpikeMicroExpressionDetector, store, device,
            duration_ms=2 * analysis.get('interval_ms', 100)
        ),
        cognitive_load=select_module(
            CognitiveLoadEstimator, EyeSignalCognitiveEstimator, store, device,
            interval_s=interval_s
        ),
        engagement=select_module(EngagementEstimator, GatedFusionEstimator, store, device)
    )

    fallbacks = [name for name, source in suite.models_loaded().items() if source == 'fallback']
    if fallbacks:
        logger.warning(f"Running with fallback estimators for: {', '.join(fallbacks)}")
    else:
        logger.info("All primary models loaded")
    return suite
