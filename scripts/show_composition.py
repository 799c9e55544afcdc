#!/usr/bin/env python3
"""Print the composition root built from a modules tree, as JSON.

Nothing is imported from the modules and no database is touched, so this is
safe to run against any tree to check what an environment would load.

Usage:
  python scripts/show_composition.py --env prod
  python scripts/show_composition.py --root path/to/modules --env test --role services
"""

import argparse
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from dotenv import load_dotenv

from app.modulith.config import load_settings
from app.modulith.errors import CompositionError
from app.modulith.logging_config import setup_logging
from app.modulith.registry import ROLES, build_composition_root


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    settings = load_settings()
    parser = argparse.ArgumentParser(description="Show the merged module wiring.")
    parser.add_argument("--root", default=settings.modules_root, help="Modules root directory")
    parser.add_argument("--env", default=settings.env, help="Environment name (e.g. dev, test, prod)")
    parser.add_argument("--role", choices=ROLES, help="Only print one role")
    parser.add_argument("--strict", action="store_true", default=settings.modules_strict_overrides,
                        help="Reject environment fragments without a base fragment")
    args = parser.parse_args(argv)

    setup_logging(settings.log_level)
    try:
        cr = build_composition_root(args.root, args.env, strict_overrides=args.strict)
    except CompositionError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    data = cr.to_dict()
    if args.role:
        data = data[args.role]
    print(json.dumps(data, indent=2, sort_keys=True, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
