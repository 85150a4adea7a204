#!/usr/bin/env python3
"""
Script pour vérifier la cohérence du catalogue de decks.

Usage:
    python scripts/lint_catalog.py
    python scripts/lint_catalog.py --strict
"""

import argparse
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from decksy.catalog import CARD_ELIXIR_COST, DECK_CATALOG, lint_catalog


def main():
    parser = argparse.ArgumentParser(description="Vérifier le catalogue de decks")
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Échouer aussi sur les avertissements"
    )

    args = parser.parse_args()

    print(f"Vérification de {len(DECK_CATALOG)} decks...")
    errors, warnings = lint_catalog(DECK_CATALOG, CARD_ELIXIR_COST)

    for warning in warnings:
        print(f"  ! {warning}")
    for error in errors:
        print(f"  ✗ {error}")

    if errors or (args.strict and warnings):
        print(f"\nÉchec: {len(errors)} erreur(s), {len(warnings)} avertissement(s)")
        return 1

    print(f"  ✓ Catalogue valide ({len(warnings)} avertissement(s))")
    return 0


if __name__ == "__main__":
    sys.exit(main())
