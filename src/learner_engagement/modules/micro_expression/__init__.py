"""
Micro-expression Detection Module
"""

from .micro_detector import (
    MicroExpressionDetector, MicroExpressionEstimate, MicroExpressionModule,
    SpikeMicroExpressionDetector
)
from .models import MicroExpressionNet

__all__ = [
    'MicroExpressionDetector', 'MicroExpressionEstimate', 'MicroExpressionModule',
    'MicroExpressionNet', 'SpikeMicroExpressionDetector'
]
