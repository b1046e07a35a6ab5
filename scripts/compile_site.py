#!/usr/bin/env python3
"""
Compile a site seed directory into the topology state and NCN metadata.

Usage: python3 scripts/compile_site.py [--seed-dir DIR] [--config FILE] [--output DIR] [--verbose]
"""

import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

from errors import CompileError
from pipeline import compile_site, load_site_inputs, write_outputs

DEFAULT_SEED_DIR = Path(__file__).parent.parent / "data" / "seed"

logger = logging.getLogger("compile_site")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--seed-dir", type=Path, default=DEFAULT_SEED_DIR,
                        help="directory holding system_config.yaml and the seed files")
    parser.add_argument("--config", type=Path, default=None,
                        help="system config YAML (default: <seed-dir>/system_config.yaml)")
    parser.add_argument("--output", type=Path, default=Path("output"), help="directory for the JSON documents")
    parser.add_argument("--verbose", action="store_true", help="debug logging")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        inputs = load_site_inputs(args.seed_dir, args.config)
        result = compile_site(inputs)
    except CompileError as e:
        where = f" [{e.entity}]" if e.entity else ""
        logger.error("%s error%s: %s", e.kind, where, e)
        return 1

    for path in write_outputs(result, args.output):
        print(f"  {path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
