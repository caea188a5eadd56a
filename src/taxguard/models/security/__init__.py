from taxguard.models.security.audit_checklist import DEFAULT_CHECKLIST, run_checklist
from taxguard.models.security.risk_scorer import HeuristicTaxScorer, TaxRiskScore, TaxRiskScorer
from taxguard.models.security.tax_abuse_detector import TaxAbuseDetector

__all__ = [
    'DEFAULT_CHECKLIST',
    'HeuristicTaxScorer',
    'TaxAbuseDetector',
    'TaxRiskScore',
    'TaxRiskScorer',
    'run_checklist',
]
