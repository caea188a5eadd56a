"""Tests for evaluation and model persistence utilities."""

import joblib
import numpy as np
import pytest

from taxguard.utils.evaluation import ModelEvaluator
from taxguard.utils.model_utils import (
    ARTIFACT_VERSION,
    ModelRegistry,
    load_model_with_metadata,
    save_model_with_metadata,
)


class TestModelEvaluator:
    """Test suite for ModelEvaluator."""

    def test_perfect_classifier(self):
        y_true = np.array([0, 0, 1, 1])
        metrics = ModelEvaluator().evaluate_classification(y_true, y_true, np.array([0.1, 0.2, 0.8, 0.9]))

        assert metrics['accuracy'] == 1.0
        assert metrics['f1_score'] == 1.0
        assert metrics['auc_roc'] == 1.0

    def test_single_class_has_no_auc(self):
        y_true = np.array([0, 0, 0])
        metrics = ModelEvaluator().evaluate_classification(y_true, np.array([0, 1, 0]), np.array([0.1, 0.7, 0.2]))

        assert 'auc_roc' not in metrics
        assert metrics['precision'] == 0.0

    def test_threshold_stability(self):
        y_true = np.array([0, 0, 1, 1])
        proba = np.array([0.1, 0.45, 0.55, 0.9])
        stability = ModelEvaluator().threshold_stability(y_true, proba)

        assert stability['accuracy@0.5'] == 1.0
        assert stability['accuracy@0.4'] == 0.75
        assert stability['agreement'] == 0.5

    def test_threshold_stability_accepts_two_column_proba(self):
        proba = np.array([[0.9, 0.1], [0.2, 0.8]])
        stability = ModelEvaluator().threshold_stability(np.array([0, 1]), proba)

        assert stability['agreement'] == 1.0

    def test_performance_report_recommendations(self):
        y_true = np.array([0, 0, 1, 1])
        report = ModelEvaluator().create_performance_report(
            'detector', y_true, np.array([0, 0, 0, 1]), np.array([0.1, 0.2, 0.45, 0.9])
        )

        assert report.confusion_matrix.tolist() == [[2, 0], [1, 1]]
        assert any('Recall' in r for r in report.recommendations)
        assert report.to_dict()['metrics']['recall'] == 0.5


class TestModelPersistence:
    """Test suite for save/load with metadata and the registry."""

    def test_save_and_load_with_metadata(self, tmp_path):
        path = tmp_path / "nested" / "model.joblib"
        save_model_with_metadata({'weights': [1, 2]}, path, {'model_version': '2.0'})

        model, metadata = load_model_with_metadata(path)

        assert model == {'weights': [1, 2]}
        assert metadata['model_version'] == '2.0'
        assert metadata['artifact_version'] == ARTIFACT_VERSION
        assert 'saved_at' in metadata

    def test_load_rejects_foreign_artifact(self, tmp_path):
        path = tmp_path / "other.joblib"
        joblib.dump([1, 2, 3], path)

        with pytest.raises(ValueError):
            load_model_with_metadata(path)

    def test_registry_versions(self, tmp_path):
        registry = ModelRegistry(tmp_path)
        registry.register_model({'v': 1}, 'detector', '1', {'accuracy': 0.9})
        registry.register_model({'v': 2}, 'detector', '2', {'accuracy': 0.95})

        assert registry.load_model('detector') == {'v': 2}
        assert registry.load_model('detector', '1') == {'v': 1}
        assert ModelRegistry(tmp_path).list_models()['detector']['current_version'] == '2'

    def test_registry_unknown_model(self, tmp_path):
        registry = ModelRegistry(tmp_path)

        with pytest.raises(ValueError):
            registry.load_model('missing')
        registry.register_model({'v': 1}, 'detector', '1', {})
        with pytest.raises(ValueError):
            registry.load_model('detector', '9')
