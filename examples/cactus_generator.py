import argparse
import logging
import os
import sys
import time

import numpy as np

# このファイルを直接実行する際に cactus パッケージを読み込めるようにする
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

from cactus import CostMode, export_csv, load_config, save_distribution, solve


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Compute a cactus noise distribution.")
    parser.add_argument("--config", default=None,
                        help="JSON config path; command-line values take precedence.")
    parser.add_argument("--n", type=int, default=None, help="Quantization level (bins per unit).")
    parser.add_argument("--xmax", type=float, default=None, help="Half-range of the grid.")
    parser.add_argument("--C", type=float, default=None, help="Bound on E|X|^cexp.")
    parser.add_argument("--cexp", type=float, default=None, help="Cost exponent.")
    parser.add_argument("--mode", choices=[m.value for m in CostMode], default=None)
    parser.add_argument("--r", type=float, default=None, help="Geometric tail ratio.")
    parser.add_argument("--tol", type=float, default=None, help="Duality-gap tolerance.")
    parser.add_argument("--verbose", type=int, choices=[0, 1, 2], default=None)
    parser.add_argument("--output", default=None,
                        help="Record path (defaults to a name derived from cexp and C).")
    parser.add_argument("--csv", default=None, help="Also write <prefix>_{cdf,p,x}.csv.")
    parser.add_argument("--samples", type=int, default=0, help="Draw and summarise this many samples.")
    parser.add_argument("--seed", type=int, default=42)
    return parser.parse_args()


def main():
    args = parse_args()
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    # 既定値は n=200, xmax=8, C=0.25
    defaults = {"n": 200, "xmax": 8.0, "C": 0.25}
    overrides = {key: getattr(args, key) for key in ("n", "xmax", "C", "cexp", "mode", "r", "tol", "verbose")}
    if args.config is None:
        for key, value in defaults.items():
            if overrides[key] is None:
                overrides[key] = value
    config = load_config(args.config, **overrides)

    start = time.time()
    result = solve(config)
    elapsed = time.time() - start

    dist = result.distribution()
    path = save_distribution(dist, args.output)

    print("\n" + "=" * 70)
    print("Cactus distribution")
    print("=" * 70)
    print(f"primobj   : {result.primobj:.6f}")
    print(f"iterations: {result.iterations}  (t={result.t:.1e}, gap={result.gap:.2e})")
    print(f"bins      : {dist.x.size}  (n={dist.n}, xmax={dist.xmax:g})")
    print(f"E|X|^{config.cexp:g}   : {dist.moment():.6f}  (C={config.C:g})")
    print(f"saved     : {path}")
    if args.csv:
        for written in export_csv(dist, args.csv):
            print(f"saved     : {written}")

    if args.samples > 0:
        rng = np.random.default_rng(args.seed)
        draws = dist.sample(args.samples, rng=rng)
        print(f"\n{args.samples:,} samples: mean={draws.mean():.4f}  "
              f"E|X|^{config.cexp:g}={np.mean(np.abs(draws) ** config.cexp):.4f}")

    print(f"\nTotal execution time: {elapsed:.2f} seconds")


if __name__ == "__main__":
    main()
