"""
Tax Abuse Detection Model

Supervised classifier over static token contract features. A trained
detector turns the feature vector of a contract into the probability that
its fee logic is abusive; the risk scorer maps that probability onto the
0-100 scale and the safe / suspicious / tax_abuse_candidate labels.

Features:
- RandomForest or Gradient Boosting classifiers from scikit-learn
- Stratified validation split with accuracy, precision, recall, F1 and AUC
- Occlusion-based per-feature explanations against training medians
- joblib persistence with model metadata
"""

import logging
import math
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Union

import numpy as np
import pandas as pd
from sklearn.ensemble import GradientBoostingClassifier, RandomForestClassifier
from sklearn.model_selection import train_test_split
from sklearn.preprocessing import StandardScaler

from taxguard.data.features.tax_features import FEATURE_NAMES, TaxFeatures, extract_tax_features
from taxguard.data.preprocessing.solidity_source import SoliditySource
from taxguard.models.security.risk_scorer import TaxRiskScore, TaxRiskScorer
from taxguard.utils.evaluation import ModelEvaluator
from taxguard.utils.model_utils import load_model_with_metadata, save_model_with_metadata

MODEL_TYPES = ('random_forest', 'gradient_boosting')

POSITIVE_LABELS = {'suspicious', 'tax_abuse_candidate', 'abusive', 'scam', 'honeypot', '1', 'true'}
NEGATIVE_LABELS = {'safe', 'legit', 'legitimate', 'benign', '0', 'false'}


def encode_labels(labels: Iterable[Any]) -> np.ndarray:
    """
    Map labels to 0/1.

    ``safe`` is the negative class; ``suspicious`` and ``tax_abuse_candidate``
    are both positive. Integers and booleans pass through.
    """
    encoded = []
    for label in labels:
        if isinstance(label, (bool, np.bool_)):
            encoded.append(int(label))
        elif isinstance(label, (int, np.integer)):
            if label not in (0, 1):
                raise ValueError(f"Numeric labels must be 0 or 1, got {label}")
            encoded.append(int(label))
        elif isinstance(label, str) and label.strip().lower() in POSITIVE_LABELS:
            encoded.append(1)
        elif isinstance(label, str) and label.strip().lower() in NEGATIVE_LABELS:
            encoded.append(0)
        else:
            raise ValueError(f"Unknown label: {label!r}")
    return np.array(encoded, dtype=int)


class TaxAbuseDetector:
    """
    Token tax abuse classifier built on scikit-learn tree ensembles.
    """

    def __init__(self,
                 model_type: str = 'random_forest',
                 random_state: int = 42,
                 **params):
        """
        Initialize the detector.

        Args:
            model_type: 'random_forest' or 'gradient_boosting'
            random_state: Seed for the split and the estimator
            **params: Extra estimator parameters
        """
        if model_type not in MODEL_TYPES:
            raise ValueError(f"Unknown model type {model_type!r}, expected one of {MODEL_TYPES}")

        self.model_type = model_type
        self.random_state = random_state
        self.params = params

        self.classifier = None
        self.scaler = StandardScaler()
        self.feature_columns: List[str] = []
        self.training_medians: Dict[str, float] = {}
        self.training_metrics: Dict[str, Any] = {}

        self.model_version = "1.0.0"
        self.last_trained: Optional[datetime] = None

        self.risk_scorer = TaxRiskScorer()
        self.logger = logging.getLogger(__name__)

    @property
    def is_trained(self) -> bool:
        return self.classifier is not None

    def _build_classifier(self):
        if self.model_type == 'random_forest':
            defaults = {
                'n_estimators': 200,
                'min_samples_leaf': 1,
                'class_weight': 'balanced',
                'random_state': self.random_state,
                'n_jobs': -1,
            }
            return RandomForestClassifier(**{**defaults, **self.params})

        defaults = {
            'n_estimators': 200,
            'learning_rate': 0.05,
            'max_depth': 3,
            'subsample': 0.8,
            'random_state': self.random_state,
        }
        return GradientBoostingClassifier(**{**defaults, **self.params})

    def _select_features(self, features_df: pd.DataFrame) -> pd.DataFrame:
        if not self.feature_columns:
            columns = [c for c in FEATURE_NAMES if c in features_df.columns]
            if not columns:
                raise ValueError("No known feature columns in the input frame")
            return features_df[columns].astype(float).fillna(0.0)

        missing = [c for c in self.feature_columns if c not in features_df.columns]
        if missing:
            self.logger.warning(f"Missing feature columns filled with 0: {missing}")
        return features_df.reindex(columns=self.feature_columns, fill_value=0.0).astype(float).fillna(0.0)

    def _positive_proba(self, X: pd.DataFrame) -> np.ndarray:
        scaled = self.scaler.transform(X)
        proba = self.classifier.predict_proba(scaled)
        classes = list(self.classifier.classes_)
        return proba[:, classes.index(1)]

    def train(self,
              features_df: pd.DataFrame,
              labels: Iterable[Any],
              validation_split: float = 0.2) -> Dict[str, Any]:
        """
        Train the classifier.

        Args:
            features_df: Feature frame (``FEATURE_NAMES`` columns, extras ignored)
            labels: One label per row, 0/1 or safe/suspicious/tax_abuse_candidate
            validation_split: Fraction held out for validation

        Returns:
            Training metrics
        """
        try:
            self.logger.info(f"Starting tax abuse model training ({self.model_type})...")

            if not 0 < validation_split < 1:
                raise ValueError(f"validation_split must be between 0 and 1, got {validation_split}")

            self.feature_columns = []
            X = self._select_features(features_df).reset_index(drop=True)
            y = pd.Series(encode_labels(labels), name='label')
            if len(X) != len(y):
                raise ValueError(f"Got {len(X)} feature rows but {len(y)} labels")

            counts = np.bincount(y, minlength=2)
            if counts.min() == 0:
                raise ValueError("Training labels must contain both safe and abusive examples")

            n_validation = math.ceil(validation_split * len(y))
            if counts.min() >= 2 and n_validation >= 2 and len(y) - n_validation >= 2:
                X_train, X_val, y_train, y_val = train_test_split(
                    X, y, test_size=validation_split, random_state=self.random_state, stratify=y
                )
            else:
                self.logger.warning("Too few samples per class for a stratified split, evaluating on the training data")
                X_train, X_val, y_train, y_val = X, X, y, y

            self.feature_columns = list(X.columns)
            self.training_medians = {k: float(v) for k, v in X_train.median().items()}

            X_train_scaled = self.scaler.fit_transform(X_train)
            self.classifier = self._build_classifier()
            self.classifier.fit(X_train_scaled, y_train)

            y_pred_proba = self._positive_proba(X_val)
            y_pred = (y_pred_proba >= 0.5).astype(int)

            evaluator = ModelEvaluator()
            metrics = evaluator.evaluate_classification(y_val, y_pred, y_pred_proba)
            metrics['classification_report'] = evaluator.classification_report(y_val, y_pred)
            metrics['feature_importance'] = dict(sorted(
                ((name, float(value)) for name, value in
                 zip(self.feature_columns, self.classifier.feature_importances_)),
                key=lambda kv: -kv[1],
            ))
            metrics['n_train'] = int(len(y_train))
            metrics['n_validation'] = int(len(y_val))

            self.training_metrics = metrics
            self.last_trained = datetime.now()
            self.logger.info(
                f"Tax abuse model trained: accuracy={metrics['accuracy']:.3f} f1={metrics['f1_score']:.3f}"
            )
            return metrics

        except Exception as e:
            self.logger.error(f"Tax abuse model training failed: {str(e)}")
            raise

    def predict_proba(self, features_df: pd.DataFrame) -> np.ndarray:
        """Positive-class probability for each row."""
        if not self.is_trained:
            raise RuntimeError("TaxAbuseDetector has not been trained")
        return self._positive_proba(self._select_features(features_df))

    def predict_proba_features(self, features: TaxFeatures) -> float:
        return float(self.predict_proba(pd.DataFrame([features.to_dict()]))[0])

    def explain(self, features: TaxFeatures) -> Dict[str, float]:
        """
        Per-feature contribution to the predicted probability.

        Each feature is replaced in turn by its training median; the drop in
        probability is that feature's contribution. Zero contributions are
        omitted and the rest are sorted by magnitude.
        """
        if not self.is_trained:
            raise RuntimeError("TaxAbuseDetector has not been trained")

        row = self._select_features(pd.DataFrame([features.to_dict()]))
        variants = [row]
        for column in self.feature_columns:
            occluded = row.copy()
            occluded[column] = self.training_medians.get(column, 0.0)
            variants.append(occluded)

        proba = self._positive_proba(pd.concat(variants, ignore_index=True))
        base = proba[0]
        contributions = {
            column: float(base - p)
            for column, p in zip(self.feature_columns, proba[1:])
            if abs(base - p) > 1e-9
        }
        return dict(sorted(contributions.items(), key=lambda kv: -abs(kv[1])))

    def detect(self,
               source: Union[str, SoliditySource, TaxFeatures],
               contract_id: str = 'contract') -> TaxRiskScore:
        """
        Score a single contract.

        Args:
            source: Solidity source, a parsed source, or precomputed features
            contract_id: Identifier carried into the result

        Returns:
            TaxRiskScore
        """
        if not self.is_trained:
            raise RuntimeError("TaxAbuseDetector has not been trained")

        features = source if isinstance(source, TaxFeatures) else extract_tax_features(source)
        return self.risk_scorer.score(features, contract_id, model=self)

    def save_model(self, filepath: str) -> None:
        """Save the trained detector."""
        try:
            state = {
                'classifier': self.classifier,
                'scaler': self.scaler,
                'feature_columns': self.feature_columns,
                'training_medians': self.training_medians,
                'training_metrics': {
                    k: v for k, v in self.training_metrics.items() if k != 'classification_report'
                },
                'model_type': self.model_type,
                'random_state': self.random_state,
                'params': self.params,
                'model_version': self.model_version,
                'last_trained': self.last_trained,
            }
            save_model_with_metadata(state, filepath, {
                'model_type': self.model_type,
                'model_version': self.model_version,
                'last_trained': self.last_trained.isoformat() if self.last_trained else None,
                'feature_columns': self.feature_columns,
            })
            self.logger.info(f"Tax abuse model saved to {filepath}")

        except Exception as e:
            self.logger.error(f"Model saving failed: {str(e)}")
            raise

    def load_model(self, filepath: str) -> None:
        """Load a trained detector."""
        try:
            state, _ = load_model_with_metadata(filepath)

            self.classifier = state['classifier']
            self.scaler = state['scaler']
            self.feature_columns = state['feature_columns']
            self.training_medians = state['training_medians']
            self.training_metrics = state.get('training_metrics', {})
            self.model_type = state['model_type']
            self.random_state = state.get('random_state', self.random_state)
            self.params = state.get('params', {})
            self.model_version = state['model_version']
            self.last_trained = state['last_trained']

            self.logger.info(f"Tax abuse model loaded from {filepath}")

        except Exception as e:
            self.logger.error(f"Model loading failed: {str(e)}")
            raise

    @classmethod
    def from_file(cls, filepath: str) -> 'TaxAbuseDetector':
        detector = cls()
        detector.load_model(filepath)
        return detector

    def describe(self) -> Dict[str, Any]:
        return {
            'model_type': self.model_type,
            'model_version': self.model_version,
            'trained': self.is_trained,
            'last_trained': self.last_trained.isoformat() if self.last_trained else None,
            'feature_columns': list(self.feature_columns),
        }
