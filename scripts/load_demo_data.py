#!/usr/bin/env python3
"""Load demo patterns and mapping rules.

Usage:
    PYTHONPATH=. python scripts/load_demo_data.py [--config config.yaml]

Creates three supplier patterns (ConEd, Verizon) and two utility-bill
mapping rules in the configured database.
"""
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from sqlalchemy.orm import Session

from adapters.config import configure_logging, load_config
from adapters.data.db import get_engine, init_db
from adapters.outbound.sqlalchemy_repos import SqlAlchemyPatternRepository, SqlAlchemyRuleRepository
from domain.extraction.pattern_learning import PatternLearningService
from domain.models import (
    Action,
    ActionType,
    Condition,
    ConditionType,
    FieldType,
    LogicalOperator,
    Operator,
    Pattern,
    Rule,
)
from domain.rule_engine import RuleEngine

CONED_SAMPLE = (
    "CONSOLIDATED EDISON COMPANY\nAccount Number: 1234567890\nService Address: 123 Main St\n"
    "Total Amount Due: $245.67\nDue Date: February 15, 2024"
)
VERIZON_SAMPLE = (
    "Verizon Wireless\nAccount: 123456789012\nBill Date: Jan 15, 2024\nTotal: $89.99\nDue: Feb 15, 2024"
)


def demo_patterns():
    return [
        Pattern(
            supplier="ConEd", field_name="AccountNumber",
            regex_pattern=r"Account\s*(?:Number|#)?:?\s*(\d{10})",
            description="Extracts 10-digit account number from ConEd utility bills",
            field_type=FieldType.ACCOUNT_NUMBER, priority=1,
            usage_count=47, success_count=44, success_rate=0.94,
        ),
        Pattern(
            supplier="ConEd", field_name="TotalAmount",
            regex_pattern=r"Total\s*(?:Amount\s*)?Due:?\s*\$?(\d+\.\d{2})",
            description="Extracts total amount due from ConEd bills",
            field_type=FieldType.CURRENCY, priority=1,
            usage_count=52, success_count=46, success_rate=0.89,
        ),
        Pattern(
            supplier="Verizon", field_name="AccountNumber",
            regex_pattern=r"Account:?\s*(\d{12})",
            description="Extracts 12-digit account number from Verizon bills",
            field_type=FieldType.ACCOUNT_NUMBER, priority=1,
            usage_count=31, success_count=30, success_rate=0.97,
        ),
    ]


def demo_rules():
    utility = Rule(
        name="ConEd utility bill",
        description="Maps ConEd bills onto the monthly utilities sheet",
        priority=10,
        conditions=[
            Condition(ConditionType.DOCUMENT_SUPPLIER, "Supplier", Operator.EQUALS, "ConEd",
                      logical_operator=LogicalOperator.AND, display_order=0),
            Condition(ConditionType.FIELD_EXISTS, "TotalAmount", Operator.EQUALS, "true",
                      display_order=1, weight=0.5, is_required=False),
        ],
        actions=[
            Action(ActionType.MAP_FIELD, "AccountNumber", "B2", display_order=0, is_required=True),
            Action(ActionType.TRANSFORM_FIELD, "TotalAmount", "C2", display_order=1,
                   transformation={"type": "FormatCurrency", "symbol": "$", "decimals": 2}),
        ],
    )
    telecom = Rule(
        name="Telecom bill",
        description="Any telecom bill onto the communications sheet",
        priority=5,
        conditions=[
            Condition(ConditionType.DOCUMENT_TYPE, "DocumentType", Operator.CONTAINS, "Telecom"),
        ],
        actions=[
            Action(ActionType.MAP_FIELD, "AccountNumber", "A5", is_required=True),
            Action(ActionType.MAP_FIELD, "TotalAmount", "D5", default_value="0.00"),
        ],
    )
    return [utility, telecom]


def main():
    import argparse

    parser = argparse.ArgumentParser(description="Load demo patterns and rules")
    parser.add_argument("--config", default=None, help="Path to config.yaml")
    args = parser.parse_args()

    config = load_config(args.config)
    configure_logging(config.log_level)
    engine = get_engine(config.database_url)
    init_db(engine)

    with Session(engine) as session:
        learning = PatternLearningService(SqlAlchemyPatternRepository(session), config.engine)
        for pattern in demo_patterns():
            learning.add_pattern(pattern)
            sample = CONED_SAMPLE if pattern.supplier == "ConEd" else VERIZON_SAMPLE
            result = learning.test_pattern(pattern, [sample])
            print(f"{pattern}: {result.recommendation.value} "
                  f"({result.successful_matches}/{result.total_tests} matched)")

        rules = RuleEngine(SqlAlchemyRuleRepository(session), settings=config.engine)
        for rule in demo_rules():
            rules.save_rule(rule)
            print(f"Rule '{rule.name}' saved ({len(rule.conditions)} conditions, {len(rule.actions)} actions)")
        session.commit()


if __name__ == "__main__":
    main()
