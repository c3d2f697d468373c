from __future__ import annotations

import argparse
import json
import sys


def _bootstrap_app():
    from marketescrow import create_app

    app = create_app()
    app.app_context().push()
    return app


def main():
    parser = argparse.ArgumentParser(
        description="Recompute wallet balances from postings and check escrow conservation."
    )
    parser.add_argument("--quiet", action="store_true", help="Only print the overall result.")
    args = parser.parse_args()

    _bootstrap_app()
    from marketescrow.services.reconciliation_service import reconcile

    summary = reconcile()
    if args.quiet:
        print(json.dumps({"ok": summary["ok"]}))
    else:
        print(json.dumps(summary, indent=2))
    return 0 if summary["ok"] else 2


if __name__ == "__main__":
    sys.exit(main())
