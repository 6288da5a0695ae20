from __future__ import annotations

import argparse
import pprint

from zone_reversion.config import load_config, strategy_signature


def main():
    p = argparse.ArgumentParser(description="Print the strategy signature for a config")
    p.add_argument("--config", required=True, help="Path to YAML config")
    args = p.parse_args()

    cfg = load_config(args.config)

    print("STRATEGY INPUTS:")
    pprint.pprint(cfg.strategy.signature())
    print("\nZONES:")
    pprint.pprint(cfg.zones)
    print("\nSIGNATURE:", strategy_signature(cfg.strategy))


if __name__ == "__main__":
    main()
