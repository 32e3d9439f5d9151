#!/usr/bin/env python3
"""
Gradient Check and Timing for the Squared Exponential Kernel

Builds a kernel (defaults, or the ``kernel`` section of a YAML file), draws
random inputs, compares every analytic gradient with finite differences and
times the kernel capabilities.

Usage:
    python scripts/check_kernel.py                          # defaults, n=5, m=2
    python scripts/check_kernel.py --n 20 --m 3 --seed 1
    python scripts/check_kernel.py --config kernel.yaml --verbose

Exits with status 1 if any gradient check fails.
"""

import argparse
import logging
import sys

import numpy as np

from gpcf.gp import SquaredExponential
from gpcf.utils import (
    build_gradient_check_config,
    build_kernel,
    check_kernel_gradients,
    load_config,
    profile_kernel,
    setup_logging,
)


def main(argv=None):
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Check squared exponential kernel gradients")
    parser.add_argument("--config", type=str, default=None, help="YAML file with kernel/gradient_check sections")
    parser.add_argument("--n", type=int, default=5, help="Number of input points")
    parser.add_argument("--m", type=int, default=2, help="Input dimension")
    parser.add_argument("--seed", type=int, default=0, help="Random seed for the inputs")
    parser.add_argument("--trials", type=int, default=10, help="Timed calls per operation")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    if args.config is not None:
        cfg = load_config(args.config)
        kernel = build_kernel(cfg.get("kernel"))
        check_config = build_gradient_check_config(cfg.get("gradient_check"))
    else:
        kernel = SquaredExponential(magn_sigma2=1.0, length_scale=np.linspace(0.8, 1.5, args.m))
        check_config = build_gradient_check_config(None)

    rng = np.random.default_rng(args.seed)
    x = rng.standard_normal((args.n, args.m))
    x2 = rng.standard_normal((max(args.n - 1, 1), args.m))

    print("=" * 60)
    print(f"Kernel: {kernel}")
    print(f"Inputs: n={args.n}, m={args.m}, seed={args.seed}")
    print(f"Packed parameters: {kernel.param_names}")
    print("=" * 60)

    results = check_kernel_gradients(kernel, x, x2, config=check_config)
    for result in results:
        print(result)

    print()
    print(profile_kernel(kernel, x, n_trials=args.trials).report())

    failed = [r.name for r in results if not r.passed]
    if failed:
        print(f"\nFAILED: {', '.join(failed)}")
        return 1

    print("\nAll gradient checks passed")
    return 0


if __name__ == "__main__":
    sys.exit(main())
