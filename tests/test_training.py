"""Tests for the tax abuse training pipeline."""

import json

import pytest

from taxguard.data.loaders.contract_loader import ContractRecord, ContractSourceError
from taxguard.models.security.tax_abuse_detector import TaxAbuseDetector
from taxguard.training.train_tax_abuse import MODEL_FILENAME, REPORT_FILENAME, TaxAbuseTrainingPipeline
from taxguard.utils.model_utils import ModelRegistry


class TestTrainingPipeline:
    """Test suite for TaxAbuseTrainingPipeline."""

    def test_run_training_on_synthetic_corpus(self, tmp_path):
        pipeline = TaxAbuseTrainingPipeline({
            'n_synthetic': 60,
            'seed': 1,
            'model_output_dir': str(tmp_path / "out"),
        })
        results = pipeline.run_training()

        assert results['training_completed']
        assert results['n_contracts'] == 60
        assert results['metrics']['accuracy'] >= 0.8
        assert 'agreement' in results['metrics']['threshold_stability']

        model_path = tmp_path / "out" / MODEL_FILENAME
        report_path = tmp_path / "out" / REPORT_FILENAME
        assert model_path.exists()
        report = json.loads(report_path.read_text())
        assert report['corpus'] == 'synthetic'
        assert report['model']['trained'] is True

        assert TaxAbuseDetector.from_file(str(model_path)).is_trained

    def test_load_corpus_from_directory(self, tmp_path, fixtures_dir, plain_source, honey_source):
        (tmp_path / "safe").mkdir()
        (tmp_path / "tax_abuse").mkdir()
        (tmp_path / "safe" / "plain.sol").write_text(plain_source)
        (tmp_path / "tax_abuse" / "honey.sol").write_text(honey_source)
        (tmp_path / "unlabeled.sol").write_text(plain_source)

        pipeline = TaxAbuseTrainingPipeline({'corpus_dir': str(tmp_path)})
        records = pipeline.load_corpus()

        assert sorted(r.label for r in records) == ['safe', 'tax_abuse_candidate']
        assert pipeline.corpus_source == str(tmp_path)

    def test_unlabeled_only_corpus_is_rejected(self, tmp_path, plain_source):
        (tmp_path / "token.sol").write_text(plain_source)

        pipeline = TaxAbuseTrainingPipeline({'corpus_dir': str(tmp_path)})

        with pytest.raises(ContractSourceError, match="No labeled contracts"):
            pipeline.load_corpus()

    def test_train_rejects_unlabeled_records(self, plain_source):
        pipeline = TaxAbuseTrainingPipeline()

        with pytest.raises(ValueError):
            pipeline.train([])
        with pytest.raises(ValueError):
            pipeline.train([ContractRecord(address='', name='plain', code=plain_source)])

    def test_save_before_train(self, tmp_path):
        with pytest.raises(RuntimeError):
            TaxAbuseTrainingPipeline().save(str(tmp_path))

    def test_registry_registration(self, tmp_path):
        pipeline = TaxAbuseTrainingPipeline({
            'n_synthetic': 40,
            'model_output_dir': str(tmp_path / "out"),
            'registry_dir': str(tmp_path / "registry"),
        })
        results = pipeline.run_training()

        registry = ModelRegistry(tmp_path / "registry")
        assert 'tax_abuse_detector' in registry.list_models()
        assert len(results['artifacts']['registry_hash']) == 16
        assert registry.load_model('tax_abuse_detector').is_trained
