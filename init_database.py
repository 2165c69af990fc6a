#!/usr/bin/env python3
"""
Initialize the trade journal database with its schema, default tags and,
optionally, the initial capital allocation.
"""

import sys

from journal_app import create_app
from journal_app.errors import JournalError
from journal_app.models import db, Tag, CapitalPool
from journal_app.services import CapitalLedger, SettingsService, TagService


def initialize(app, total=None, equity=None, fno=None, skip_tags=False):
    """Create tables and seed reference data; returns a summary dict."""
    with app.app_context():
        db.create_all()

        created_tags = 0 if skip_tags else TagService().seed_defaults()
        SettingsService().get_settings()

        if total is not None:
            CapitalLedger().setup_pools(total, equity, fno, 'Initial capital allocation')

        return {
            'database': app.config['SQLALCHEMY_DATABASE_URI'],
            'tags_created': created_tags,
            'tags_total': Tag.query.count(),
            'pools': [(pool.name, pool.current_amount)
                      for pool in CapitalPool.query.order_by(CapitalPool.id).all()],
        }


def main():
    """Initialize the trade journal database."""
    import argparse

    # Parse command line arguments
    parser = argparse.ArgumentParser(description="Initialize Trade Journal Database")
    parser.add_argument("--env", choices=["development", "production", "testing"],
                        help="Configuration to use (defaults to JOURNAL_ENV)")
    parser.add_argument("--total", type=float,
                        help="Total capital; creates or re-allocates the capital pools")
    parser.add_argument("--equity", type=float, help="Equity allocation (requires --total)")
    parser.add_argument("--fno", type=float, help="F&O allocation (requires --total)")
    parser.add_argument("--skip-tags", action="store_true",
                        help="Do not seed the default strategy, emotional and market tags")

    args = parser.parse_args()

    if args.total is not None and (args.equity is None or args.fno is None):
        parser.error("--total requires --equity and --fno")

    print("Initializing Trade Journal Database...")

    try:
        summary = initialize(create_app(args.env), args.total, args.equity, args.fno,
                             args.skip_tags)
    except JournalError as e:
        print(f"Database initialization failed: {e.message} {e.details or ''}")
        sys.exit(1)

    print(f"\nDatabase initialized successfully!")
    print(f"   • Database: {summary['database']}")
    print(f"   • Tags created: {summary['tags_created']} ({summary['tags_total']} total)")
    for name, balance in summary['pools']:
        print(f"   • {name}: {balance:,.2f}")

    if not summary['pools']:
        print(f"\nTo allocate capital, run:")
        print(f"   python init_database.py --total 100000 --equity 60000 --fno 40000")


if __name__ == "__main__":
    main()
