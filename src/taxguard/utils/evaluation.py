"""
Model Evaluation Utilities

Classification metrics, threshold stability checks and performance reports
for tax abuse classifiers.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from sklearn.metrics import (
    accuracy_score, classification_report, confusion_matrix, f1_score,
    precision_score, recall_score, roc_auc_score,
)

logger = logging.getLogger(__name__)


@dataclass
class ModelPerformanceReport:
    """Model performance report."""
    model_name: str
    metrics: Dict[str, float]
    confusion_matrix: Optional[np.ndarray]
    feature_importance: Optional[Dict[str, float]]
    threshold_stability: Dict[str, float]
    recommendations: List[str]
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'model_name': self.model_name,
            'metrics': {k: float(v) for k, v in self.metrics.items()},
            'confusion_matrix': self.confusion_matrix.tolist() if self.confusion_matrix is not None else None,
            'feature_importance': self.feature_importance,
            'threshold_stability': self.threshold_stability,
            'recommendations': self.recommendations,
            'timestamp': self.timestamp.isoformat(),
        }


class ModelEvaluator:
    """Evaluation helpers for binary tax abuse classifiers."""

    def __init__(self):
        """Initialize model evaluator."""
        self.evaluation_history = []

    def evaluate_classification(self,
                                y_true: np.ndarray,
                                y_pred: np.ndarray,
                                y_pred_proba: Optional[np.ndarray] = None) -> Dict[str, float]:
        """Binary classification metrics; ``auc_roc`` only when both classes are present."""
        y_true = np.asarray(y_true)
        y_pred = np.asarray(y_pred)

        metrics = {
            'accuracy': float(accuracy_score(y_true, y_pred)),
            'precision': float(precision_score(y_true, y_pred, zero_division=0)),
            'recall': float(recall_score(y_true, y_pred, zero_division=0)),
            'f1_score': float(f1_score(y_true, y_pred, zero_division=0)),
        }

        if len(np.unique(y_true)) == 2 and y_pred_proba is not None:
            proba = np.asarray(y_pred_proba)
            if proba.ndim == 2:
                proba = proba[:, 1]
            metrics['auc_roc'] = float(roc_auc_score(y_true, proba))

        self.evaluation_history.append({'metrics': metrics, 'timestamp': datetime.now()})
        return metrics

    def classification_report(self, y_true: np.ndarray, y_pred: np.ndarray) -> Dict[str, Any]:
        return classification_report(
            y_true, y_pred, labels=[0, 1], target_names=['safe', 'abusive'],
            output_dict=True, zero_division=0,
        )

    def threshold_stability(self,
                            y_true: np.ndarray,
                            y_pred_proba: np.ndarray,
                            thresholds: Sequence[float] = (0.4, 0.5, 0.6)) -> Dict[str, float]:
        """
        How much decisions move when the decision threshold moves.

        Returns the accuracy at each threshold and the fraction of samples
        whose predicted class is the same at every threshold.
        """
        y_true = np.asarray(y_true)
        proba = np.asarray(y_pred_proba, dtype=float)
        if proba.ndim == 2:
            proba = proba[:, 1]

        decisions = np.array([(proba >= t).astype(int) for t in thresholds])
        stability = {
            f'accuracy@{t:g}': float(accuracy_score(y_true, d)) for t, d in zip(thresholds, decisions)
        }
        if len(proba):
            stability['agreement'] = float(np.mean(np.all(decisions == decisions[0], axis=0)))
        else:
            stability['agreement'] = 1.0
        return stability

    def create_performance_report(self,
                                  model_name: str,
                                  y_true: np.ndarray,
                                  y_pred: np.ndarray,
                                  y_pred_proba: Optional[np.ndarray] = None,
                                  feature_names: Optional[List[str]] = None,
                                  model: Optional[Any] = None) -> ModelPerformanceReport:
        """Create a performance report with recommendations."""
        metrics = self.evaluate_classification(y_true, y_pred, y_pred_proba)
        conf_matrix = confusion_matrix(y_true, y_pred, labels=[0, 1])

        feature_importance = None
        if model is not None and hasattr(model, 'feature_importances_') and feature_names:
            feature_importance = {
                name: float(value) for name, value in zip(feature_names, model.feature_importances_)
            }

        stability = {}
        if y_pred_proba is not None:
            stability = self.threshold_stability(y_true, y_pred_proba)

        recommendations = []
        if metrics['recall'] < 0.8:
            recommendations.append("Recall below 0.8: abusive contracts are being missed, add labeled abuse samples")
        if metrics['precision'] < 0.8:
            recommendations.append("Precision below 0.8: review false positives among ordinary fee tokens")
        if stability and stability['agreement'] < 0.9:
            recommendations.append("Decisions are threshold sensitive: many contracts sit near the boundary")
        if not recommendations:
            recommendations.append("Model performance is within targets")

        return ModelPerformanceReport(
            model_name=model_name,
            metrics=metrics,
            confusion_matrix=conf_matrix,
            feature_importance=feature_importance,
            threshold_stability=stability,
            recommendations=recommendations,
        )
