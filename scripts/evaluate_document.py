#!/usr/bin/env python3
"""Extract fields from a text file and map them with the stored rules.

Usage:
    PYTHONPATH=. python scripts/evaluate_document.py bill.txt --supplier ConEd \
        [--document-type UtilityBill] [--template monthly] [--all] [--commit] [--json]

Without --commit nothing is written: patterns are not scored and rules are
only previewed.
"""
import json
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from sqlalchemy.orm import Session

from adapters.config import configure_logging, load_config
from adapters.data.db import get_engine, init_db
from adapters.outbound.redis_cache import RedisCacheAdapter
from adapters.outbound.sqlalchemy_repos import SqlAlchemyPatternRepository, SqlAlchemyRuleRepository
from domain.extraction.pattern_learning import PatternLearningService
from domain.models import DocumentContext, SelectionMode
from domain.rule_engine import RuleEngine, merge_mappings


def main():
    import argparse

    parser = argparse.ArgumentParser(description="Evaluate one document against learned patterns and rules")
    parser.add_argument("text_file", help="Plain text extracted from the document")
    parser.add_argument("--supplier", required=True)
    parser.add_argument("--document-type", default=None)
    parser.add_argument("--template", default=None, help="Template pattern / id")
    parser.add_argument("--all", action="store_true", help="Apply every applicable rule, not only the best")
    parser.add_argument("--commit", action="store_true", help="Record outcomes")
    parser.add_argument("--deadline-ms", type=float, default=None)
    parser.add_argument("--json", action="store_true", help="Print mappings as JSON")
    parser.add_argument("--config", default=None)
    args = parser.parse_args()

    config = load_config(args.config)
    configure_logging(config.log_level)
    engine = get_engine(config.database_url)
    init_db(engine)

    with open(args.text_file) as f:
        text = f.read()

    mode = SelectionMode.ALL_APPLICABLE if args.all else config.engine.selection_mode
    context = DocumentContext(
        supplier=args.supplier,
        document_type=args.document_type,
        template_pattern=args.template,
    )

    with Session(engine) as session:
        learning = PatternLearningService(SqlAlchemyPatternRepository(session), config.engine)
        fields = learning.extract_fields(text, args.supplier, record=args.commit)
        for f in fields:
            print(f"  {f.field_name}: {f.value!r} ({f.confidence:.1%})")

        rules = RuleEngine(
            SqlAlchemyRuleRepository(session),
            cache=RedisCacheAdapter.from_url(config.redis_url, config.cache_ttl),
            settings=config.engine,
        )
        if args.commit:
            result = rules.apply_rules(context, fields, template_id=args.template,
                                       mode=mode, deadline_ms=args.deadline_ms)
            mappings = result.mappings
            if result.needs_review:
                print("Needs review: " + "; ".join(result.warnings))
            session.commit()
        else:
            previews = []
            for match in rules.find_matching_rules(context.with_fields(fields), mode):
                print(match.evaluation.explanation)
                previews.append(rules.test_rule(match.rule.rule, context, fields).mappings)
            mappings = merge_mappings(previews)

    if args.json:
        print(json.dumps([
            {"field": m.field_name, "target": m.target_location, "value": m.value, "rule_id": m.rule_id}
            for m in mappings
        ], indent=2))
    else:
        for m in mappings:
            print(f"{m.target_location:>10} <- {m.field_name} = {m.value!r}")


if __name__ == "__main__":
    main()
