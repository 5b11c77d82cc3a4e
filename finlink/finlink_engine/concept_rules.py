"""
Keyword rules mapping entity text to US-GAAP concepts.

Two ordered tables: FALLBACK_RULES fills entities the oracle left unmapped,
BASIC_RULES is the reduced table used when the oracle path is skipped as a
whole. The first matching rule wins.
"""

import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional, Pattern, Sequence, Tuple

FALLBACK_EXPLANATION = "Rule-based mapping (fallback)"
BASIC_FALLBACK_EXPLANATION = "Rule-based mapping (basic fallback)"
NO_MAPPING_EXPLANATION = "No suitable US-GAAP mapping found"

FALLBACK_CONFIDENCE = 0.6


@lru_cache(maxsize=None)
def _keyword_pattern(keyword: str) -> Pattern[str]:
    return re.compile(r"\b" + re.escape(keyword))


def contains_keyword(text: str, keyword: str) -> bool:
    """Keyword match anchored at the start of a word."""
    return _keyword_pattern(keyword).search(text) is not None


@dataclass(frozen=True)
class ConceptRule:
    """
    One keyword rule.

    Matches when any ``any_of`` keyword is present, every ``all_of`` keyword
    is present, and no ``none_of`` keyword is present.
    """
    concept: str
    any_of: Tuple[str, ...] = ()
    all_of: Tuple[str, ...] = ()
    none_of: Tuple[str, ...] = ()
    confidence: float = FALLBACK_CONFIDENCE
    taxonomy: str = field(default="us-gaap")

    def matches(self, text: str) -> bool:
        if self.any_of and not any(contains_keyword(text, k) for k in self.any_of):
            return False
        if not all(contains_keyword(text, k) for k in self.all_of):
            return False
        return not any(contains_keyword(text, k) for k in self.none_of)


FALLBACK_RULES: Tuple[ConceptRule, ...] = (
    # Income statement
    ConceptRule("us-gaap:Revenue", any_of=("revenue", "sales", "service revenue")),
    ConceptRule("us-gaap:NetIncomeLoss", any_of=("net income", "net profit", "net loss")),
    ConceptRule("us-gaap:OperatingIncomeLoss", any_of=("operating income", "operating profit")),
    ConceptRule("us-gaap:GrossProfit", any_of=("gross profit", "gross margin")),
    ConceptRule(
        "us-gaap:IncomeLossFromContinuingOperationsBeforeIncomeTaxesExtraordinaryItemsNoncontrollingInterest",
        any_of=("pretax income", "income before tax", "earnings before tax"),
    ),
    # Expenses
    ConceptRule("us-gaap:DepreciationDepletionAndAmortization", all_of=("depreciation", "expense")),
    ConceptRule("us-gaap:InterestExpense", any_of=("interest expense",)),
    ConceptRule("us-gaap:IncomeTaxExpenseBenefit", any_of=("tax expense", "income tax")),
    ConceptRule("us-gaap:LaborAndRelatedExpense", any_of=("wage", "salary", "payroll")),
    ConceptRule("us-gaap:SuppliesExpense", any_of=("supplies expense",)),
    ConceptRule("us-gaap:OperatingExpenses", any_of=("operating expense", "total operating")),
    ConceptRule("us-gaap:CostOfRevenue", any_of=("cost of goods", "cost of revenue", "cogs")),
    # Balance sheet
    ConceptRule("us-gaap:Assets", any_of=("total assets",)),
    ConceptRule("us-gaap:Assets", any_of=("assets",), none_of=("liabilities",)),
    ConceptRule("us-gaap:Liabilities", any_of=("total liabilities",)),
    ConceptRule("us-gaap:CashAndCashEquivalentsAtCarryingValue", any_of=("cash", "cash equivalents")),
    ConceptRule("us-gaap:RetainedEarningsAccumulatedDeficit", any_of=("retained earnings",)),
    ConceptRule(
        "us-gaap:StockholdersEquity",
        any_of=("stockholders equity", "shareholders equity", "total equity"),
    ),
    ConceptRule("us-gaap:AccountsReceivableNetCurrent", any_of=("accounts receivable", "receivables")),
    ConceptRule("us-gaap:AccountsPayableCurrent", any_of=("accounts payable", "payables")),
    ConceptRule("us-gaap:InventoryNet", any_of=("inventory", "inventories")),
    # Per-share and equity
    ConceptRule(
        "us-gaap:WeightedAverageNumberOfSharesOutstandingBasic",
        any_of=("shares outstanding", "shares issued"),
    ),
    ConceptRule("us-gaap:EarningsPerShareBasic", any_of=("earnings per share", "eps")),
    ConceptRule("us-gaap:Dividends", any_of=("dividends",)),
)

BASIC_RULES: Tuple[ConceptRule, ...] = (
    ConceptRule("us-gaap:Revenue", any_of=("revenue", "sales"), confidence=0.7),
    ConceptRule("us-gaap:NetIncomeLoss", any_of=("net income", "net profit"), confidence=0.7),
    ConceptRule("us-gaap:OperatingIncomeLoss", any_of=("operating income",), confidence=0.7),
    ConceptRule("us-gaap:Assets", all_of=("assets", "total"), confidence=0.7),
    ConceptRule("us-gaap:OperatingExpenses", any_of=("expense",), confidence=0.6),
)


def match_rule(text: Optional[str], rules: Sequence[ConceptRule]) -> Optional[ConceptRule]:
    """
    Return the first rule matching ``text``.

    Args:
        text: Entity description (or value); lower-cased before matching.
        rules: Ordered rule table.
    """
    if not text:
        return None
    lowered = text.lower()
    for rule in rules:
        if rule.matches(lowered):
            return rule
    return None
