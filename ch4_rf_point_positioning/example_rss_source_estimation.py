"""
RSS Radio Source Estimation Example.

This script locates a radio emitter (WiFi access point or BLE beacon) from
RSSI readings taken at known reader positions, jointly estimating its
position, transmitted power and optionally the path-loss exponent.

Can run with:
    - Inline data (default): python example_rss_source_estimation.py
    - Pre-generated dataset: python example_rss_source_estimation.py --data ch4_rss_source_baseline
    - Monte Carlo study:     python example_rss_source_estimation.py --trials 200

Implements:
    - Log-distance path-loss model Pr = P + n·(kdB - 10·log10 d)
    - Weighted nonlinear least squares (Levenberg-Marquardt / Gauss-Newton)
    - Parameter covariance and position confidence ellipse
"""

import argparse
import json
import logging
import time
from pathlib import Path
from typing import Dict, List, Optional

import matplotlib.pyplot as plt
import numpy as np
from matplotlib.patches import Ellipse
from tqdm import tqdm

from radiosource.exceptions import RadioSourceEstimationError
from radiosource.rf import (
    EstimatorConfig,
    LocatedRadioSource,
    RadioSource,
    RssiRadioSourceEstimator,
    RssiRadioSourceEstimator2D,
    RssiRadioSourceEstimator3D,
    RssiReading,
    simulate_rss_measurement,
)

logger = logging.getLogger(__name__)


class ProgressListener:
    """Prints estimator lifecycle events."""

    def on_estimate_start(self, estimator):
        print(f"  [listener] start: {len(estimator.readings)} readings, "
              f"{estimator.n_unknowns} unknowns")

    def on_estimate_end(self, estimator):
        print(f"  [listener] end: chi2 = {estimator.chi_square:.3f}")


def generate_scenario(
    source: RadioSource,
    source_position: np.ndarray,
    tx_power_dbm: float,
    path_loss_exp: float,
    n_readers: int = 40,
    area_size: float = 20.0,
    sigma_db: float = 0.0,
    seed: int = 42,
) -> List[RssiReading]:
    """Simulate readings at uniformly distributed reader positions."""
    rng = np.random.default_rng(seed)
    dims = len(source_position)

    readers = rng.uniform(0.0, area_size, (n_readers, dims))
    if dims == 3:
        readers[:, 2] = rng.uniform(0.0, 3.0, n_readers)

    readings = []
    for reader in readers:
        if np.linalg.norm(reader - source_position) < 0.5:
            continue
        rssi, _ = simulate_rss_measurement(
            source_position, reader, tx_power_dbm, source.frequency,
            path_loss_exp, sigma_db=sigma_db, rng=rng,
        )
        readings.append(
            RssiReading(source, rssi, reader, rssi_std=sigma_db if sigma_db > 0 else None)
        )
    return readings


def print_estimate(
    estimator: RssiRadioSourceEstimator,
    true_position: np.ndarray,
    true_power_dbm: float,
    true_path_loss: float,
):
    """Print estimated parameters against ground truth."""
    located = estimator.estimated_radio_source()
    error = np.linalg.norm(located.position - true_position)

    print(f"\n  {'Parameter':<22} {'True':>14} {'Estimated':>14} {'Std':>10}")
    print(f"  {'-' * 62}")
    print(f"  {'Position (m)':<22} {str(np.round(true_position, 2)):>14} "
          f"{str(np.round(located.position, 2)):>14}")
    power_std = estimator.fit.transmitted_power_std
    print(f"  {'Tx power (dBm)':<22} {true_power_dbm:>14.2f} "
          f"{located.transmitted_power_dbm:>14.2f} "
          f"{power_std if power_std is not None else float('nan'):>10.3f}")
    n_std = estimator.fit.path_loss_exponent_std
    print(f"  {'Path-loss exponent':<22} {true_path_loss:>14.2f} "
          f"{located.path_loss_exponent:>14.2f} "
          f"{n_std if n_std is not None else float('nan'):>10.3f}")
    print(f"\n  Position error: {error:.3f} m")
    print(f"  Iterations: {estimator.fit.iterations}, converged: {estimator.fit.converged}")

    accuracy = located.position_accuracy(confidence=0.95)
    if accuracy is not None:
        print(f"  95% confidence radius: {accuracy.radius:.3f} m")


def example_noiseless_2d() -> RssiRadioSourceEstimator2D:
    """Example 1: exact readings, position and power from the reader centroid."""
    print("\n" + "=" * 70)
    print("Example 1: Noiseless 2D Emitter Estimation")
    print("=" * 70)

    source = RadioSource.wifi_access_point("00:11:22:33:44:55", 2.4e9, ssid="lab")
    true_position = np.array([7.0, 12.0])
    readings = generate_scenario(source, true_position, -5.0, 2.0, n_readers=20)

    estimator = RssiRadioSourceEstimator2D(readings, listener=ProgressListener())
    print(f"\n  Readings: {len(readings)} (minimum {estimator.min_readings})")
    estimator.estimate()

    print_estimate(estimator, true_position, -5.0, 2.0)
    return estimator


def example_noisy_2d(sigma_db: float = 3.0) -> Dict:
    """Example 2: shadowed readings with weighting and confidence ellipse."""
    print("\n" + "=" * 70)
    print(f"Example 2: Noisy 2D Estimation (sigma = {sigma_db:.1f} dB)")
    print("=" * 70)

    source = RadioSource.beacon("aa:bb:cc:dd:ee:ff", identifiers=["b9407f30", 1, 7])
    true_position = np.array([12.0, 8.0])
    readings = generate_scenario(source, true_position, -12.0, 2.0,
                                 n_readers=60, sigma_db=sigma_db, seed=7)

    estimator = RssiRadioSourceEstimator2D(readings)
    estimator.estimate()

    print_estimate(estimator, true_position, -12.0, 2.0)
    return {
        "readings": readings,
        "true_position": true_position,
        "located": estimator.estimated_radio_source(),
    }


def example_path_loss_estimation(sigma_db: float = 2.0):
    """Example 3: joint estimation of the path-loss exponent."""
    print("\n" + "=" * 70)
    print("Example 3: Joint Path-Loss Exponent Estimation (indoor, n = 3.0)")
    print("=" * 70)

    source = RadioSource.wifi_access_point("00:aa:bb:cc:dd:01", 5.18e9)
    true_position = np.array([9.0, 9.0])
    readings = generate_scenario(source, true_position, 0.0, 3.0,
                                 n_readers=80, sigma_db=sigma_db, seed=11)

    for enabled in (False, True):
        estimator = RssiRadioSourceEstimator2D(
            readings,
            path_loss_estimation_enabled=enabled,
            initial_path_loss_exponent=2.0,
        )
        estimator.estimate()
        label = "estimated" if enabled else "fixed at 2.0"
        print(f"\n  Path-loss exponent {label}:")
        print_estimate(estimator, true_position, 0.0, 3.0)


def example_3d():
    """Example 4: 3D estimation with readers at varying heights."""
    print("\n" + "=" * 70)
    print("Example 4: 3D Emitter Estimation")
    print("=" * 70)

    source = RadioSource.wifi_access_point("00:11:22:33:44:66", 2.4e9)
    true_position = np.array([6.0, 14.0, 2.2])
    readings = generate_scenario(source, true_position, -3.0, 2.0,
                                 n_readers=50, sigma_db=1.0, seed=3)

    estimator = RssiRadioSourceEstimator3D(readings)
    estimator.estimate()
    print_estimate(estimator, true_position, -3.0, 2.0)


def run_monte_carlo(n_trials: int = 100, sigma_db: float = 3.0, seed: int = 0) -> np.ndarray:
    """Monte Carlo position error over random emitter placements."""
    print("\n" + "=" * 70)
    print(f"Monte Carlo: {n_trials} trials, sigma = {sigma_db:.1f} dB")
    print("=" * 70)

    rng = np.random.default_rng(seed)
    source = RadioSource.wifi_access_point("00:11:22:33:44:55", 2.4e9)
    errors = []
    failures = 0

    for trial in tqdm(range(n_trials), desc="  Trials", unit="trial"):
        true_position = rng.uniform(4.0, 16.0, 2)
        readings = generate_scenario(source, true_position, rng.uniform(-10.0, 0.0), 2.0,
                                     n_readers=40, sigma_db=sigma_db, seed=seed + trial + 1)
        estimator = RssiRadioSourceEstimator2D(readings)
        try:
            estimator.estimate()
        except RadioSourceEstimationError as exc:
            logger.info("Trial %d failed: %s", trial, exc)
            failures += 1
            continue
        errors.append(np.linalg.norm(estimator.estimated_position - true_position))

    errors = np.array(errors)
    if len(errors) > 0:
        print(f"\n  RMSE:   {np.sqrt(np.mean(errors**2)):.3f} m")
        print(f"  Median: {np.median(errors):.3f} m")
        print(f"  95%:    {np.percentile(errors, 95):.3f} m")
    print(f"  Failed trials: {failures}/{n_trials}")
    return errors


def load_rss_source_dataset(data_dir: str) -> Dict:
    """Load RSS radio source dataset.

    Args:
        data_dir: Path to dataset directory (e.g., 'data/sim/ch4_rss_source_baseline')

    Returns:
        Dictionary with readings array, ground truth and config
    """
    path = Path(data_dir)

    data = {"readings": np.atleast_2d(np.loadtxt(path / "readings.txt"))}

    with open(path / "ground_truth.json") as f:
        data["ground_truth"] = json.load(f)
    with open(path / "config.json") as f:
        data["config"] = json.load(f)

    return data


def run_with_dataset(data_dir: str) -> Optional[Dict]:
    """Estimate the emitter of a pre-generated dataset (None if the fit fails)."""
    data = load_rss_source_dataset(data_dir)
    truth = data["ground_truth"]
    config = EstimatorConfig.from_dict(data["config"]["estimator"])

    print("\n" + "=" * 70)
    print(f"Dataset: {Path(data_dir).name}")
    print("=" * 70)
    print(f"  Readings: {len(data['readings'])}")
    print(f"  Estimator config: {config.to_dict()}")

    source = RadioSource(truth["source_id"], truth["frequency_hz"], kind="wifi")
    dims = config.dims
    readings = [
        RssiReading(source, row[dims], row[:dims], rssi_std=row[dims + 1])
        for row in data["readings"]
    ]

    estimator = RssiRadioSourceEstimator.from_config(config, readings)
    try:
        estimator.estimate()
    except RadioSourceEstimationError as exc:
        logger.warning("Dataset %s could not be fitted: %s", data_dir, exc)
        print(f"\n  Estimation failed: {exc}")
        return None

    true_position = np.array(truth["position_m"])
    print_estimate(estimator, true_position, truth["tx_power_dbm"], truth["path_loss_exponent"])
    return {
        "readings": readings,
        "true_position": true_position,
        "located": estimator.estimated_radio_source(),
    }


def plot_estimate(
    readings: List[RssiReading],
    true_position: np.ndarray,
    located: LocatedRadioSource,
    title: str = "RSS Radio Source Estimation",
    mc_errors: Optional[np.ndarray] = None,
):
    """Plot readers colored by RSSI, true and estimated emitter, 95% ellipse."""
    ncols = 2 if mc_errors is not None and len(mc_errors) > 0 else 1
    fig, axes = plt.subplots(1, ncols, figsize=(7 * ncols, 6))
    axes = np.atleast_1d(axes)

    ax = axes[0]
    positions = np.array([r.position[:2] for r in readings])
    rssi = np.array([r.rssi for r in readings])
    scatter = ax.scatter(positions[:, 0], positions[:, 1], c=rssi, cmap="viridis",
                         s=40, edgecolors="k", linewidths=0.5, label="Readers")
    fig.colorbar(scatter, ax=ax, label="RSSI (dBm)")

    ax.plot(true_position[0], true_position[1], "r*", markersize=18, label="True emitter")
    ax.plot(located.position[0], located.position[1], "bx", markersize=12,
            markeredgewidth=2.5, label="Estimate")

    accuracy = located.position_accuracy(confidence=0.95)
    if accuracy is not None and len(located.position) == 2:
        angle = np.degrees(np.arctan2(accuracy.axes[1, 0], accuracy.axes[0, 0]))
        ax.add_patch(Ellipse(
            located.position, 2 * accuracy.semi_axes[0], 2 * accuracy.semi_axes[1],
            angle=angle, fill=False, edgecolor="b", linestyle="--", linewidth=1.5,
            label="95% confidence",
        ))

    ax.set_xlabel("X (m)")
    ax.set_ylabel("Y (m)")
    ax.set_title(title)
    ax.set_aspect("equal")
    ax.grid(True, alpha=0.3)
    ax.legend(loc="best", fontsize=9)

    if ncols == 2:
        ax = axes[1]
        sorted_errors = np.sort(mc_errors)
        ax.plot(sorted_errors, np.arange(1, len(sorted_errors) + 1) / len(sorted_errors),
                "b-", linewidth=2)
        ax.set_xlabel("Position error (m)")
        ax.set_ylabel("CDF")
        ax.set_title("Monte Carlo Position Error")
        ax.grid(True, alpha=0.3)

    plt.tight_layout()
    return fig


def main():
    """Run RSS radio source estimation examples."""
    parser = argparse.ArgumentParser(
        description="Chapter 4: RSS Radio Source Estimation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run inline examples (default)
  python example_rss_source_estimation.py

  # Run with pre-generated dataset
  python example_rss_source_estimation.py --data ch4_rss_source_indoor

  # Monte Carlo study with 4 dB shadowing
  python example_rss_source_estimation.py --trials 200 --sigma 4.0
        """
    )
    parser.add_argument(
        "--data", type=str, default=None,
        help="Dataset name or path (e.g., 'ch4_rss_source_baseline' or full path)"
    )
    parser.add_argument(
        "--trials", type=int, default=50,
        help="Number of Monte Carlo trials (default: 50, 0 to skip)"
    )
    parser.add_argument(
        "--sigma", type=float, default=3.0,
        help="Shadowing std dev in dB for noisy examples (default: 3.0)"
    )
    parser.add_argument(
        "--output", type=str, default=None,
        help="Output file for figure (default: ch4_rf_point_positioning/figs/ch4_rss_source_estimation.png)"
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    overall_start = time.time()

    if args.data:
        data_path = Path(args.data)
        if not data_path.exists():
            data_path = Path("data/sim") / args.data
        if not data_path.exists():
            print(f"Error: Dataset not found at '{args.data}' or 'data/sim/{args.data}'")
            print("\nGenerate one with: python scripts/generate_ch4_rss_source_dataset.py --preset baseline")
            return

        result = run_with_dataset(str(data_path))
        if result is None:
            return
        mc_errors = None
        title = f"Dataset: {data_path.name}"
    else:
        print("\n" + "=" * 70)
        print("Chapter 4: RSS Radio Source Estimation")
        print("=" * 70)
        print("\nTip: Run with --data ch4_rss_source_baseline to use pre-generated dataset")

        example_noiseless_2d()
        result = example_noisy_2d(args.sigma)
        example_path_loss_estimation()
        example_3d()
        mc_errors = run_monte_carlo(args.trials, args.sigma) if args.trials > 0 else None
        title = f"Noisy 2D Estimation (sigma = {args.sigma:.1f} dB)"

    plot_estimate(result["readings"], result["true_position"], result["located"],
                  title=title, mc_errors=mc_errors)

    output_file = args.output or "ch4_rf_point_positioning/figs/ch4_rss_source_estimation.png"
    Path(output_file).parent.mkdir(parents=True, exist_ok=True)
    plt.savefig(output_file, dpi=150, bbox_inches="tight")
    print(f"\n✓ Figure saved: {output_file}")
    plt.show()

    overall_time = time.time() - overall_start
    print("\n" + "=" * 70)
    print("Examples completed successfully!")
    print(f"Total execution time: {overall_time:.2f} seconds")
    print("=" * 70)


if __name__ == "__main__":
    main()
