"""
Tax Abuse Model Training Pipeline

Builds the static feature frame for a labeled contract corpus, trains the
tax abuse detector and writes the model artifact and training report.
"""

import json
import logging
import os
from datetime import datetime
from typing import Dict, List, Optional

import numpy as np

from taxguard.data.features.tax_features import FEATURE_NAMES, build_feature_frame
from taxguard.data.loaders.contract_loader import (
    ContractRecord,
    ContractSourceError,
    load_contract_dir,
    load_labeled_csv,
)
from taxguard.data.loaders.synthetic_corpus import generate_corpus
from taxguard.models.security.tax_abuse_detector import TaxAbuseDetector, encode_labels
from taxguard.utils.evaluation import ModelEvaluator
from taxguard.utils.model_utils import ModelRegistry

logger = logging.getLogger(__name__)

MODEL_FILENAME = 'tax_abuse_detector.joblib'
REPORT_FILENAME = 'training_report.json'

DEFAULT_CONFIG = {
    'corpus_dir': None,
    'labels_csv': None,
    'n_synthetic': 300,
    'seed': 42,
    'model_type': 'random_forest',
    'validation_split': 0.2,
    'model_output_dir': './trained_models',
    'registry_dir': None,
}


class TaxAbuseTrainingPipeline:
    """Training pipeline for the tax abuse detector."""

    def __init__(self, config: Optional[Dict] = None):
        """Initialize training pipeline."""
        self.config = {**DEFAULT_CONFIG, **(config or {})}
        self.detector: Optional[TaxAbuseDetector] = None
        self.evaluator = ModelEvaluator()
        self.metrics: Dict = {}
        self.report = None
        self.corpus_source = None

    def load_corpus(self) -> List[ContractRecord]:
        """Labeled records from the configured directory, CSV, or the synthetic generator."""
        records: List[ContractRecord] = []

        if self.config.get('corpus_dir'):
            records.extend(load_contract_dir(self.config['corpus_dir']))
            self.corpus_source = str(self.config['corpus_dir'])
        if self.config.get('labels_csv'):
            records.extend(load_labeled_csv(self.config['labels_csv']))
            self.corpus_source = str(self.config['labels_csv'])

        if not records:
            logger.info("No labeled corpus configured, generating synthetic contracts...")
            records = generate_corpus(self.config['n_synthetic'], seed=self.config['seed'])
            self.corpus_source = 'synthetic'

        unlabeled = [r.contract_id for r in records if r.label is None]
        if unlabeled:
            logger.warning(f"Skipping {len(unlabeled)} unlabeled contracts")
        records = [r for r in records if r.label is not None]
        if not records:
            raise ContractSourceError(f"No labeled contracts in {self.corpus_source}")

        logger.info(f"Loaded {len(records)} labeled contracts for training")
        return records

    def train(self, records: List[ContractRecord]) -> Dict:
        """Train the detector and evaluate it on the held-out split."""
        logger.info("Training tax abuse detector...")

        if not records or any(r.label is None for r in records):
            raise ValueError("Training needs a non-empty list of labeled contracts")

        try:
            features_df = build_feature_frame(records)
            labels = features_df['label'].tolist()

            self.detector = TaxAbuseDetector(
                model_type=self.config['model_type'],
                random_state=self.config['seed'],
            )
            metrics = self.detector.train(
                features_df, labels, validation_split=self.config['validation_split']
            )

            # Report on the whole corpus in addition to the validation split
            y_true = encode_labels(labels)
            proba = self.detector.predict_proba(features_df[FEATURE_NAMES])
            y_pred = (proba >= 0.5).astype(int)
            self.report = self.evaluator.create_performance_report(
                'tax_abuse_detector', y_true, y_pred, proba,
                feature_names=self.detector.feature_columns,
                model=self.detector.classifier,
            )

            metrics['threshold_stability'] = self.report.threshold_stability
            metrics['class_balance'] = {
                'safe': int(np.sum(y_true == 0)),
                'abusive': int(np.sum(y_true == 1)),
            }
            self.metrics = metrics
            return metrics

        except Exception as e:
            logger.error(f"Tax abuse detector training failed: {e}")
            raise

    def save(self, output_dir: str) -> Dict[str, str]:
        """Write the model artifact and training report; register the model when configured."""
        if self.detector is None or not self.detector.is_trained:
            raise RuntimeError("Nothing to save: run train() first")

        logger.info(f"Saving model to {output_dir}")
        os.makedirs(output_dir, exist_ok=True)

        model_path = os.path.join(output_dir, MODEL_FILENAME)
        self.detector.save_model(model_path)

        report_path = os.path.join(output_dir, REPORT_FILENAME)
        with open(report_path, 'w') as f:
            json.dump({
                'model': self.detector.describe(),
                'corpus': self.corpus_source,
                'metrics': self.metrics,
                'performance_report': self.report.to_dict() if self.report else None,
                'config': self.config,
            }, f, indent=2, default=str)

        paths = {'model': model_path, 'report': report_path}

        if self.config.get('registry_dir'):
            registry = ModelRegistry(self.config['registry_dir'])
            version = datetime.now().strftime('%Y%m%d%H%M%S')
            scalar_metrics = {k: v for k, v in self.metrics.items() if isinstance(v, (int, float))}
            paths['registry_hash'] = registry.register_model(
                self.detector, 'tax_abuse_detector', version, scalar_metrics,
                description=f"{self.detector.model_type} trained on {self.corpus_source}",
            )

        return paths

    def run_training(self) -> Dict:
        """Run complete training pipeline."""
        logger.info("Starting tax abuse training pipeline...")

        try:
            records = self.load_corpus()
            metrics = self.train(records)
            paths = self.save(self.config['model_output_dir'])

            results = {
                'metrics': metrics,
                'artifacts': paths,
                'n_contracts': len(records),
                'training_completed': True,
                'timestamp': datetime.now().isoformat(),
            }

            logger.info("Tax abuse training pipeline completed successfully")
            return results

        except Exception as e:
            logger.error(f"Tax abuse training pipeline failed: {e}")
            raise


def main():
    """Train on a synthetic corpus and print a summary."""
    logging.basicConfig(level=logging.INFO)

    pipeline = TaxAbuseTrainingPipeline({'n_synthetic': 300, 'model_output_dir': './trained_models'})
    results = pipeline.run_training()

    print("Tax Abuse Training Results:")
    print(f"Contracts: {results['n_contracts']}")
    print(f"Accuracy: {results['metrics']['accuracy']:.3f}  F1: {results['metrics']['f1_score']:.3f}")
    print(f"Model: {results['artifacts']['model']}")


if __name__ == "__main__":
    main()
