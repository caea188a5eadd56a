"""
Tax Abuse Analyzer

Runs the full static analysis for a contract: preprocessing, feature
extraction, risk scoring (trained model or rule-based fallback) and the
audit checklist.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd

from taxguard.config import DetectorConfig
from taxguard.data.features.tax_features import TaxFeatures, extract_tax_features
from taxguard.data.loaders.contract_loader import ContractRecord, ContractSourceError
from taxguard.data.preprocessing.solidity_source import parse_source
from taxguard.models.security.audit_checklist import ChecklistReport, run_checklist
from taxguard.models.security.risk_scorer import TaxRiskScore, TaxRiskScorer
from taxguard.models.security.tax_abuse_detector import TaxAbuseDetector
from taxguard.utils.model_utils import ModelRegistry

REGISTRY_MODEL_NAME = 'tax_abuse_detector'


@dataclass
class TaxAbuseReport:
    """Analysis result for one contract."""
    contract_id: str
    name: str
    risk: TaxRiskScore
    features: TaxFeatures
    checklist: ChecklistReport
    label: Optional[str] = None
    source_path: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def risk_score(self) -> int:
        return self.risk.risk_score

    def to_dict(self) -> Dict[str, Any]:
        return {
            'contract_id': self.contract_id,
            'name': self.name,
            'source_path': self.source_path,
            'expected_label': self.label,
            'risk': self.risk.to_dict(),
            'features': self.features.to_dict(),
            'checklist': self.checklist.to_dict(),
            'metadata': self.metadata,
        }

    def summary_row(self) -> Dict[str, Any]:
        return {
            'contract_id': self.contract_id,
            'name': self.name,
            'risk_score': self.risk.risk_score,
            'bucket': self.risk.bucket.value,
            'label': self.risk.label.value,
            'model': self.risk.model,
            'checklist_items': len(self.checklist.matched_items),
            'severity_score': self.checklist.severity_score(),
            'top_factor': self.risk.risk_factors[0] if self.risk.risk_factors else '',
        }


class TaxAbuseAnalyzer:
    """
    Static tax abuse analysis for token contracts.

    Uses a trained :class:`TaxAbuseDetector` when one can be loaded from
    ``config.model_path`` or from the model registry, and the heuristic
    scorer otherwise.
    """

    def __init__(self,
                 config: Optional[DetectorConfig] = None,
                 detector: Optional[TaxAbuseDetector] = None):
        self.config = config or DetectorConfig()
        self.logger = logging.getLogger(__name__)
        self.scorer = TaxRiskScorer()
        self.detector = detector if detector is not None else self._load_detector()

    def _load_detector(self) -> Optional[TaxAbuseDetector]:
        model_path = self.config.model_path
        if model_path:
            if Path(model_path).exists():
                return TaxAbuseDetector.from_file(model_path)
            self.logger.warning(f"Model file {model_path} not found, using heuristic scorer")

        if self.config.registry_dir and Path(self.config.registry_dir).exists():
            registry = ModelRegistry(self.config.registry_dir)
            if REGISTRY_MODEL_NAME in registry.list_models():
                self.logger.info(f"Loading {REGISTRY_MODEL_NAME} from registry {self.config.registry_dir}")
                return registry.load_model(REGISTRY_MODEL_NAME)

        self.logger.info("No trained model configured, using heuristic scorer")
        return None

    @property
    def using_model(self) -> bool:
        return self.detector is not None and self.detector.is_trained

    def model_info(self) -> Dict[str, Any]:
        if self.using_model:
            info = self.detector.describe()
            info['training_metrics'] = {
                k: v for k, v in self.detector.training_metrics.items()
                if isinstance(v, (int, float))
            }
            return info
        return {
            'model_type': 'heuristic',
            'trained': False,
            'weights': dict(self.scorer.heuristic.weights),
            'bias': self.scorer.heuristic.bias,
        }

    def analyze_source(self,
                       code: str,
                       contract_id: str = 'contract',
                       name: Optional[str] = None) -> TaxAbuseReport:
        """
        Analyze Solidity source.

        Raises:
            ContractSourceError: if the source is empty or larger than ``max_source_bytes``
        """
        if not code or not code.strip():
            raise ContractSourceError(f"{contract_id}: empty contract source")
        size = len(code.encode('utf-8'))
        if size > self.config.max_source_bytes:
            raise ContractSourceError(
                f"{contract_id}: source is {size} bytes, limit is {self.config.max_source_bytes}"
            )

        try:
            source = parse_source(code)
            features = extract_tax_features(source)
            risk = self.scorer.score(features, contract_id, model=self.detector if self.using_model else None)
            checklist = run_checklist(source)

            return TaxAbuseReport(
                contract_id=contract_id,
                name=name or contract_id,
                risk=risk,
                features=features,
                checklist=checklist,
                metadata={
                    'pragma': source.pragma,
                    'contracts': list(source.contracts),
                    'functions': len(source.functions),
                },
            )

        except Exception as e:
            self.logger.error(f"Analysis of {contract_id} failed: {str(e)}")
            raise

    def analyze_record(self, record: ContractRecord) -> TaxAbuseReport:
        report = self.analyze_source(record.code, record.contract_id, name=record.name)
        report.label = record.label
        report.source_path = record.source_path
        return report

    def analyze_many(self, records: Iterable[ContractRecord]) -> pd.DataFrame:
        """Analyze several records; returns one summary row per contract."""
        reports = [self.analyze_record(record) for record in records]
        return self.summarize(reports)

    @staticmethod
    def summarize(reports: List[TaxAbuseReport]) -> pd.DataFrame:
        rows = []
        for report in reports:
            row = report.summary_row()
            if report.label is not None:
                row['expected_label'] = report.label
            rows.append(row)
        return pd.DataFrame(rows)
