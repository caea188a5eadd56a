from taxguard.utils.evaluation import ModelEvaluator, ModelPerformanceReport
from taxguard.utils.model_utils import ModelRegistry, load_model_with_metadata, save_model_with_metadata

__all__ = [
    'ModelEvaluator',
    'ModelPerformanceReport',
    'ModelRegistry',
    'load_model_with_metadata',
    'save_model_with_metadata',
]
