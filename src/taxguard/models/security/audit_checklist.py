"""
Token Tax Audit Checklist

The manual review checklist for fee-on-transfer tokens, expressed as data.
Each item is a greppable Solidity pattern with a severity and a note telling
the reviewer what to confirm once the pattern is found. Running the
checklist does not decide anything on its own; it points a human (or the
risk scorer) at the lines that matter.
"""

import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Union

from taxguard.data.preprocessing.solidity_source import SoliditySource, parse_source

logger = logging.getLogger(__name__)

SEVERITY_WEIGHTS = {
    'info': 0,
    'low': 1,
    'medium': 2,
    'high': 4,
    'critical': 8,
}

CATEGORIES = (
    'fee_logic', 'fee_control', 'access_control', 'exemptions',
    'fee_destination', 'reflection', 'trading_controls', 'ownership',
)


@dataclass(frozen=True)
class ChecklistItem:
    """A single greppable audit check."""
    id: str
    category: str
    title: str
    pattern: str
    severity: str
    guidance: str
    ignore_case: bool = False

    @property
    def regex(self) -> 're.Pattern':
        return re.compile(self.pattern, re.IGNORECASE if self.ignore_case else 0)

    def to_dict(self) -> Dict[str, str]:
        return {
            'id': self.id,
            'category': self.category,
            'title': self.title,
            'severity': self.severity,
            'guidance': self.guidance,
        }


@dataclass
class ChecklistHit:
    """One pattern match in the contract source."""
    item: ChecklistItem
    line_number: int
    snippet: str
    function: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            'id': self.item.id,
            'title': self.item.title,
            'severity': self.item.severity,
            'line_number': self.line_number,
            'snippet': self.snippet,
            'function': self.function,
        }


@dataclass
class ChecklistReport:
    """Checklist results for one contract."""
    hits: List[ChecklistHit] = field(default_factory=list)
    items_checked: int = 0

    @property
    def matched_items(self) -> List[ChecklistItem]:
        seen = {}
        for hit in self.hits:
            seen.setdefault(hit.item.id, hit.item)
        return list(seen.values())

    def by_category(self) -> Dict[str, List[ChecklistHit]]:
        grouped: Dict[str, List[ChecklistHit]] = defaultdict(list)
        for hit in self.hits:
            grouped[hit.item.category].append(hit)
        return dict(grouped)

    def by_severity(self) -> Dict[str, int]:
        """Number of distinct matched items per severity."""
        counts = {severity: 0 for severity in SEVERITY_WEIGHTS}
        for item in self.matched_items:
            counts[item.severity] += 1
        return counts

    def severity_score(self) -> int:
        """Sum of severity weights over distinct matched items."""
        return sum(SEVERITY_WEIGHTS[item.severity] for item in self.matched_items)

    def to_dict(self) -> Dict[str, object]:
        return {
            'items_checked': self.items_checked,
            'items_matched': len(self.matched_items),
            'severity_score': self.severity_score(),
            'by_severity': self.by_severity(),
            'hits': [hit.to_dict() for hit in self.hits],
        }


DEFAULT_CHECKLIST: List[ChecklistItem] = [
    # fee logic
    ChecklistItem('TAX-01', 'fee_logic', 'Fee or tax state variable',
                  r'\buint\d*\s+(?:(?:public|private|internal|constant|immutable)\s+)*_?\w*(?:[Ff]ee|[Tt]ax)\w*',
                  'info', 'List every fee variable and note its initial value and unit.'),
    ChecklistItem('TAX-02', 'fee_logic', 'Custom _transfer implementation',
                  r'\bfunction\s+_transfer\s*\(',
                  'medium', 'Read the whole transfer path; fees, limits and blocks live here.'),
    ChecklistItem('TAX-03', 'fee_logic', 'Fee calculation helper',
                  r'\b_?calculate\w*(?:Fee|Tax)\w*\s*\(',
                  'low', 'Check the arithmetic and the denominator used by the helper.'),
    ChecklistItem('TAX-04', 'fee_logic', 'Fee collection helper',
                  r'\b_?take\w*(?:Fee|Tax|Liquidity|Marketing)\w*\s*\(',
                  'low', 'Confirm where collected tokens are credited.'),
    ChecklistItem('TAX-05', 'fee_logic', 'Percentage division on fee amount',
                  r'(?:fee|tax)\w*\s*\)?\s*(?:/|\.div\s*\()\s*\(?\s*(?:100|1000|10000)\b',
                  'info', 'Note the denominator; 1000 or 10000 changes what literal rates mean.',
                  ignore_case=True),
    ChecklistItem('TAX-06', 'fee_logic', 'Buy-side fee',
                  r'\b_?\w*[Bb]uy\w*(?:Fee|Tax)\w*',
                  'low', 'Record the buy rate and compare it with the sell rate.'),
    ChecklistItem('TAX-07', 'fee_logic', 'Sell-side fee',
                  r'\b_?\w*[Ss]ell\w*(?:Fee|Tax)\w*',
                  'medium', 'A sell rate far above the buy rate is a honeypot signature.'),
    ChecklistItem('TAX-08', 'fee_logic', 'Fee branch on AMM pair',
                  r'\b(?:from|to|sender|recipient)\s*==\s*\w*[Pp]air\b|\b\w*[Pp]airs?\s*\[\s*(?:from|to|sender|recipient)\s*\]',
                  'medium', 'Determine which direction (buy or sell) each branch taxes.'),
    ChecklistItem('TAX-09', 'fee_logic', 'High literal fee assignment',
                  r'\b_?\w*(?:[Ff]ee|[Tt]ax)\w*\s*=\s*(?:[3-9]\d|100)\s*;',
                  'high', 'Convert to percent with the denominator; anything above 25% needs justification.'),
    ChecklistItem('TAX-10', 'fee_logic', 'Fee toggle helpers',
                  r'\b(?:removeAllFee|restoreAllFee)\b',
                  'medium', 'Check who can skip fees and whether the previous rate is restored.'),
    # fee control
    ChecklistItem('TAX-11', 'fee_control', 'Fee setter function',
                  r'\bfunction\s+_?(?:set|update|change|adjust)\w*(?:Fee|Tax)\w*\s*\(',
                  'high', 'Confirm an upper bound is enforced on every new rate.'),
    ChecklistItem('TAX-12', 'fee_control', 'Sell fee setter',
                  r'\bfunction\s+_?(?:set|update|change)\w*Sell\w*(?:Fee|Tax)\w*\s*\(',
                  'high', 'An uncapped sell fee setter lets the owner block all sells.'),
    ChecklistItem('TAX-13', 'fee_control', 'Buy fee setter',
                  r'\bfunction\s+_?(?:set|update|change)\w*Buy\w*(?:Fee|Tax)\w*\s*\(',
                  'medium', 'Check the bound and whether it is shared with the sell fee.'),
    ChecklistItem('TAX-14', 'fee_control', 'Fee upper-bound check',
                  r'\brequire\s*\([^;]*(?:[Ff]ee|[Tt]ax)\w*\s*(?:\+[^;]*)?<=?\s*\w+',
                  'info', 'Verify the bound is low enough and covers the combined rate.'),
    ChecklistItem('TAX-15', 'fee_control', 'Maximum fee constant',
                  r'\bMAX_?(?:FEE|TAX)\w*\b|\bmax(?:Fee|Tax)\w*',
                  'info', 'Confirm the constant is actually used by every setter.'),
    ChecklistItem('TAX-16', 'fee_control', 'Block time or number dependency',
                  r'\bblock\.(?:timestamp|number)\b',
                  'low', 'Check whether fee rates depend on time since launch.'),
    ChecklistItem('TAX-17', 'fee_control', 'Launch window variable',
                  r'\b(?:launchTime|launchedAt|launchBlock|_launchTime|tradingStartTime|deadBlocks)\b',
                  'medium', 'Early-block fees near 100% trap the first buyers.'),
    ChecklistItem('TAX-18', 'fee_control', 'Per-address fee override',
                  r'\bmapping\s*\(\s*address\s*=>\s*uint\d*\s*\)\s*(?:(?:public|private|internal)\s+)?_?\w*(?:[Ff]ee|[Tt]ax)',
                  'high', 'Per-holder rates let the owner tax individual wallets to zero.'),
    # access control
    ChecklistItem('TAX-19', 'access_control', 'onlyOwner modifier',
                  r'\bonlyOwner\b',
                  'info', 'List every owner-only function that touches fees, limits or balances.'),
    ChecklistItem('TAX-20', 'access_control', 'Inline owner check',
                  r'(?:msg\.sender|_msgSender\(\))\s*==\s*(?:_?owner\b|owner\(\))',
                  'low', 'Inline checks may survive a renounce of the Ownable owner.'),
    ChecklistItem('TAX-21', 'access_control', 'Custom authorization modifier',
                  r'\bmodifier\s+(?:only(?!Owner\b)\w+|authorized)\b',
                  'medium', 'Find who holds this role; it may outlive renounceOwnership.'),
    ChecklistItem('TAX-22', 'access_control', 'tx.origin usage',
                  r'\btx\.origin\b',
                  'medium', 'tx.origin checks can single out specific callers.'),
    ChecklistItem('TAX-23', 'access_control', 'Role-based access control',
                  r'\bonlyRole\b|\bAccessControl\b',
                  'info', 'Enumerate role holders and their fee powers.'),
    # exemptions
    ChecklistItem('TAX-24', 'exemptions', 'Fee exclusion mapping',
                  r'_?isExcludedFromFees?\b|\bisFeeExempt\b|\b_isExcluded\b',
                  'medium', 'Check who is excluded by default and who can add exclusions.'),
    ChecklistItem('TAX-25', 'exemptions', 'Fee exclusion setter',
                  r'\bfunction\s+(?:exclude|include)\w*(?:Fee|Reward)\w*\s*\(|\bfunction\s+setIsFeeExempt\s*\(',
                  'medium', 'Owner-controlled exemptions let insiders trade tax-free.'),
    ChecklistItem('TAX-26', 'exemptions', 'Whitelist',
                  r'\b_?(?:is)?[Ww]hitelist\w*',
                  'medium', 'Check whether non-whitelisted holders face a different fee.'),
    ChecklistItem('TAX-27', 'exemptions', 'Blacklist or bot list',
                  r'\b_?(?:is)?[Bb]lacklist\w*|\bisBot\b|\b_bots\b|\bbots\s*\[',
                  'high', 'A blacklist in the transfer path can freeze any holder.'),
    ChecklistItem('TAX-28', 'exemptions', 'Sniper or anti-bot penalty',
                  r'\b\w*(?:sniper|antibot)\w*',
                  'high', 'Penalty fees for "bots" are often applied to ordinary buyers.',
                  ignore_case=True),
    # fee destination
    ChecklistItem('TAX-29', 'fee_destination', 'Fee wallet',
                  r'\b_?(?:marketing|dev|team|tax|fee)(?:Wallet|Address|Receiver)\b',
                  'low', 'Identify the wallet and whether it is an EOA.',
                  ignore_case=True),
    ChecklistItem('TAX-30', 'fee_destination', 'Fee wallet setter',
                  r'\bfunction\s+_?(?:set|update|change)\w*(?:Wallet|Receiver|Recipient)\w*\s*\(',
                  'medium', 'A mutable fee wallet can be pointed at the deployer at any time.'),
    ChecklistItem('TAX-31', 'fee_destination', 'Native currency sent to a wallet',
                  r'\bpayable\s*\(\s*\w+(?:\(\))?\s*\)\s*\.\s*(?:transfer|send|call)\b',
                  'medium', 'Follow where swapped fees end up.'),
    ChecklistItem('TAX-32', 'fee_destination', 'Automatic swap-back',
                  r'\b(?:swapAndLiquify|swapTokensForEth|swapTokensForETH|swapBack)\b',
                  'low', 'Check the swap threshold and who receives the proceeds.'),
    ChecklistItem('TAX-33', 'fee_destination', 'Fee credited to owner balance',
                  r'(?:_balances|_rOwned|_tOwned)\s*\[\s*(?:owner\(\)|_owner|owner)\s*\]\s*(?:\+=|=\s*(?:_balances|_rOwned|_tOwned)\s*\[)',
                  'critical', 'Taxes paid straight to the owner are extraction, not tokenomics.'),
    ChecklistItem('TAX-34', 'ownership', 'Hidden ownership reclaim',
                  r'\b_previousOwner\b|\bfunction\s+unlock\s*\(|\bfunction\s+lock\s*\(',
                  'high', 'lock/unlock patterns fake a renounce and restore the owner later.'),
    # reflection
    ChecklistItem('TAX-35', 'reflection', 'Reflection accounting',
                  r'\b(?:_rOwned|_tOwned|_rTotal)\b',
                  'low', 'Reflection math hides the real fee path; trace _getValues.'),
    ChecklistItem('TAX-36', 'reflection', 'Reflection value conversion',
                  r'\b(?:_getValues|_getRValues|_getTValues|tokenFromReflection|reflectionFromToken)\b',
                  'low', 'Check each fee component that feeds the reflection rate.'),
    # trading controls
    ChecklistItem('TAX-37', 'trading_controls', 'Trading toggle',
                  r'\b(?:tradingEnabled|tradingOpen|tradingActive|enableTrading|openTrading)\b',
                  'high', 'Check whether trading can be switched off again after launch.'),
    ChecklistItem('TAX-38', 'trading_controls', 'Transaction or wallet limit',
                  r'\b_?max(?:Tx|Transaction|Wallet|Sell)\w*',
                  'medium', 'A settable limit near zero blocks sells like a 100% fee.',
                  ignore_case=True),
    ChecklistItem('TAX-39', 'trading_controls', 'Trade cooldown',
                  r'\b\w*[Cc]ooldown\w*',
                  'medium', 'Long or owner-set cooldowns can trap holders.'),
    # ownership
    ChecklistItem('TAX-40', 'ownership', 'renounceOwnership defined',
                  r'\bfunction\s+renounceOwnership\s*\(',
                  'info', 'Make sure the override really clears every privileged role.'),
]


def run_checklist(source: Union[str, SoliditySource],
                  items: Optional[Sequence[ChecklistItem]] = None) -> ChecklistReport:
    """
    Match every checklist item against comment-stripped contract source.

    Args:
        source: Raw Solidity text or a parsed :class:`SoliditySource`
        items: Checklist items to run (``DEFAULT_CHECKLIST`` when omitted)

    Returns:
        ChecklistReport with one hit per match, ordered by line
    """
    if isinstance(source, str):
        source = parse_source(source)
    items = DEFAULT_CHECKLIST if items is None else items

    raw_lines = source.raw.splitlines()
    hits = []
    for item in items:
        for match in item.regex.finditer(source.code):
            line = source.line_of(match.start())
            snippet = raw_lines[line - 1].strip() if line - 1 < len(raw_lines) else match.group(0)
            function = source.function_at(match.start())
            hits.append(ChecklistHit(
                item=item,
                line_number=line,
                snippet=snippet[:200],
                function=function.name if function else None,
            ))

    hits.sort(key=lambda hit: (hit.line_number, hit.item.id))
    logger.debug(f"Checklist matched {len(hits)} lines across {len(items)} items")
    return ChecklistReport(hits=hits, items_checked=len(items))


def render_checklist(report: ChecklistReport) -> str:
    """Human-readable listing grouped by category."""
    if not report.hits:
        return f"No checklist items matched ({report.items_checked} checked)."

    lines = [
        f"{len(report.matched_items)} of {report.items_checked} checklist items matched "
        f"(severity score {report.severity_score()})"
    ]
    grouped = report.by_category()
    for category in CATEGORIES:
        if category not in grouped:
            continue
        lines.append('')
        lines.append(f"[{category}]")
        for hit in grouped[category]:
            where = f" in {hit.function}()" if hit.function else ''
            lines.append(
                f"  {hit.item.id} {hit.item.severity:<8} line {hit.line_number}{where}: {hit.item.title}"
            )
            lines.append(f"      {hit.snippet}")
    return '\n'.join(lines)
