"""
Generate Ch4 RSS Radio Source Dataset.

This script generates synthetic RSSI survey datasets for radio source
estimation: readers at known positions observe a single emitter (WiFi access
point or BLE beacon) whose RSSI follows the log-distance path-loss model with
Gaussian shadowing.

Key Learning Objectives:
    - Understand how survey geometry affects emitter localization
    - See the coupling between transmitted power and path-loss exponent
    - Study the effect of shadowing noise on the estimates

Model:
    Pr(dBm) = P(dBm) + 10·n·log10(c / (4π f)) - 10·n·log10(d) + ω,
    ω ~ N(0, σ²)

Output files:
    readings.txt       x, y[, z], rssi (dBm), rssi_std (dB) per reading
    ground_truth.json  emitter position, transmitted power, path-loss exponent
    config.json        generation parameters and the estimator configuration
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Dict, Optional, Tuple

import numpy as np

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from radiosource.rf import (
    EstimatorConfig,
    RadioSource,
    SolverOptions,
    simulate_rss_measurement,
)

PRESETS: Dict[str, Dict] = {
    "baseline": {
        "dims": 2,
        "layout": "grid",
        "num_readings": 49,
        "path_loss_exp": 2.0,
        "sigma_db": 2.0,
        "estimate_path_loss": False,
        "output": "data/sim/ch4_rss_source_baseline",
    },
    "indoor": {
        "dims": 2,
        "layout": "random",
        "num_readings": 80,
        "path_loss_exp": 3.0,
        "sigma_db": 4.0,
        "estimate_path_loss": True,
        "output": "data/sim/ch4_rss_source_indoor",
    },
    "survey_walk": {
        "dims": 2,
        "layout": "walk",
        "num_readings": 60,
        "path_loss_exp": 2.5,
        "sigma_db": 3.0,
        "estimate_path_loss": True,
        "output": "data/sim/ch4_rss_source_walk",
    },
    "3d": {
        "dims": 3,
        "layout": "random",
        "num_readings": 100,
        "path_loss_exp": 2.2,
        "sigma_db": 2.0,
        "estimate_path_loss": False,
        "output": "data/sim/ch4_rss_source_3d",
    },
}


def generate_reader_positions(
    layout: str = "grid",
    dims: int = 2,
    area_size: float = 20.0,
    height: float = 3.0,
    num_readings: int = 49,
    seed: int = 42,
) -> np.ndarray:
    """
    Generate reader (survey) positions.

    Args:
        layout: 'grid' (regular grid), 'random' (uniform) or 'walk' (survey path).
        dims: Position dimension, 2 or 3.
        area_size: Side of the square survey area in meters.
        height: Height range of 3D readers in meters.
        num_readings: Number of readings.
        seed: Random seed.

    Returns:
        Reader positions [N, dims] in meters.
    """
    rng = np.random.default_rng(seed)

    if layout == "grid":
        side = int(np.ceil(np.sqrt(num_readings)))
        ticks = np.linspace(0.0, area_size, side)
        xx, yy = np.meshgrid(ticks, ticks)
        planar = np.column_stack([xx.ravel(), yy.ravel()])[:num_readings]

    elif layout == "random":
        planar = rng.uniform(0.0, area_size, (num_readings, 2))

    elif layout == "walk":
        # Lawn-mower survey path with small lateral jitter
        t = np.linspace(0.0, 1.0, num_readings)
        legs = 4
        x = area_size * np.abs(((t * legs) % 2.0) - 1.0)
        y = area_size * t
        planar = np.column_stack([x, y]) + rng.normal(0.0, 0.3, (num_readings, 2))

    else:
        raise ValueError(f"Unknown layout: {layout}")

    if dims == 2:
        return planar
    if dims == 3:
        z = rng.uniform(0.0, height, (len(planar), 1))
        return np.hstack([planar, z])
    raise ValueError(f"dims must be 2 or 3, got {dims}")


def generate_readings(
    source: RadioSource,
    source_position: np.ndarray,
    tx_power_dbm: float,
    path_loss_exp: float,
    readers: np.ndarray,
    sigma_db: float,
    seed: int = 42,
    min_distance: float = 0.5,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Simulate RSSI readings at every reader.

    Readers closer than min_distance to the emitter are pushed out radially,
    since the log-distance model is not valid in the near field.

    Returns:
        Tuple of (readers, rssi) with readers possibly adjusted.
    """
    rng = np.random.default_rng(seed + 1)
    readers = readers.copy()

    for i, reader in enumerate(readers):
        offset = reader - source_position
        distance = np.linalg.norm(offset)
        if distance < min_distance:
            direction = offset / distance if distance > 0 else np.eye(len(offset))[0]
            readers[i] = source_position + min_distance * direction

    rssi = np.array([
        simulate_rss_measurement(
            source_position, reader, tx_power_dbm, source.frequency,
            path_loss_exp, sigma_db=sigma_db, rng=rng,
        )[0]
        for reader in readers
    ])
    return readers, rssi


def save_dataset(
    output_dir: Path,
    readers: np.ndarray,
    rssi: np.ndarray,
    sigma_db: float,
    ground_truth: Dict,
    config: Dict,
) -> None:
    """Save dataset files."""
    output_dir.mkdir(parents=True, exist_ok=True)

    axes = ["x (m)", "y (m)", "z (m)"][: readers.shape[1]]
    np.savetxt(
        output_dir / "readings.txt",
        np.column_stack([readers, rssi, np.full(len(rssi), sigma_db)]),
        fmt="%.6f",
        header=", ".join(axes + ["rssi (dBm)", "rssi_std (dB)"]),
    )

    with open(output_dir / "ground_truth.json", "w") as f:
        json.dump(ground_truth, f, indent=2)

    with open(output_dir / "config.json", "w") as f:
        json.dump(config, f, indent=2)

    print(f"\n  Saved dataset to: {output_dir}")
    print(f"    Files: readings.txt, ground_truth.json, config.json")
    print(f"    Readings: {len(rssi)}")


def generate_dataset(
    output_dir: str,
    preset: Optional[str] = None,
    dims: int = 2,
    layout: str = "grid",
    area_size: float = 20.0,
    num_readings: int = 49,
    frequency: float = 2.4e9,
    tx_power_dbm: float = -5.0,
    path_loss_exp: float = 2.0,
    sigma_db: float = 2.0,
    estimate_path_loss: bool = False,
    seed: int = 42,
) -> None:
    """
    Generate an RSS radio source dataset.

    Args:
        output_dir: Output directory path.
        preset: Preset configuration name (overrides the other parameters).
        dims: Position dimension.
        layout: Reader layout type.
        area_size: Survey area size (m).
        num_readings: Number of readings.
        frequency: Emitter frequency (Hz).
        tx_power_dbm: Emitter transmitted power (dBm).
        path_loss_exp: Environment path-loss exponent.
        sigma_db: Shadowing standard deviation (dB).
        estimate_path_loss: Whether the stored estimator config estimates n.
        seed: Random seed.
    """
    if preset is not None:
        settings = PRESETS[preset]
        dims = settings["dims"]
        layout = settings["layout"]
        num_readings = settings["num_readings"]
        path_loss_exp = settings["path_loss_exp"]
        sigma_db = settings["sigma_db"]
        estimate_path_loss = settings["estimate_path_loss"]
        output_dir = settings["output"]

    print("\n" + "=" * 70)
    print(f"Generating Ch4 RSS Radio Source Dataset: {Path(output_dir).name}")
    print("=" * 70)

    rng = np.random.default_rng(seed)
    source = RadioSource.wifi_access_point("00:11:22:33:44:55", frequency, ssid="sim-ap")
    source_position = np.append(
        rng.uniform(0.25 * area_size, 0.75 * area_size, 2),
        [rng.uniform(0.5, 2.5)] if dims == 3 else [],
    )

    print("\nStep 1: Placing emitter...")
    print(f"  Source: {source.source_id} @ {frequency / 1e9:.3f} GHz")
    print(f"  Position: {np.round(source_position, 3)}")
    print(f"  Transmitted power: {tx_power_dbm:.1f} dBm")
    print(f"  Path-loss exponent: {path_loss_exp:.2f}")

    print("\nStep 2: Generating reader positions...")
    readers = generate_reader_positions(layout, dims, area_size, 3.0, num_readings, seed)
    print(f"  Layout: {layout}")
    print(f"  Readings: {len(readers)}")

    print("\nStep 3: Simulating RSSI readings...")
    readers, rssi = generate_readings(
        source, source_position, tx_power_dbm, path_loss_exp, readers, sigma_db, seed
    )
    print(f"  Shadowing: {sigma_db:.1f} dB")
    print(f"  RSSI range: [{rssi.min():.1f}, {rssi.max():.1f}] dBm")

    estimator_config = EstimatorConfig(
        dims=dims,
        path_loss_estimation_enabled=estimate_path_loss,
        solver=SolverOptions(method="lm", max_iter=200),
    )

    ground_truth = {
        "source_id": source.source_id,
        "frequency_hz": frequency,
        "position_m": source_position.tolist(),
        "tx_power_dbm": tx_power_dbm,
        "path_loss_exponent": path_loss_exp,
    }
    config = {
        "dataset": "ch4_rss_source",
        "preset": preset,
        "readers": {
            "layout": layout,
            "num_readings": len(readers),
            "area_size_m": area_size,
            "dims": dims,
        },
        "measurements": {
            "rssi_noise_std_db": sigma_db,
        },
        "estimator": estimator_config.to_dict(),
        "seed": seed,
    }

    save_dataset(Path(output_dir), readers, rssi, sigma_db, ground_truth, config)

    print("\n" + "=" * 70)
    print("Dataset generation complete!")
    print("=" * 70)


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Generate Ch4 RSS Radio Source Dataset",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Presets:
  baseline      2D grid survey, free space (n=2), 2 dB shadowing
  indoor        2D random survey, n=3, 4 dB shadowing, path loss estimated
  survey_walk   2D lawn-mower walk, n=2.5, 3 dB shadowing, path loss estimated
  3d            3D random survey, n=2.2, 2 dB shadowing

Examples:
  # Generate baseline dataset
  python scripts/generate_ch4_rss_source_dataset.py --preset baseline

  # Custom survey
  python scripts/generate_ch4_rss_source_dataset.py \\
      --output data/sim/my_rss_source \\
      --layout random --num-readings 120 --sigma 3.0 --estimate-path-loss
        """,
    )

    parser.add_argument(
        "--preset",
        type=str,
        choices=sorted(PRESETS),
        help="Use preset configuration (overrides other parameters)",
    )
    parser.add_argument(
        "--output",
        type=str,
        default="data/sim/ch4_rss_source_baseline",
        help="Output directory (default: data/sim/ch4_rss_source_baseline)",
    )

    survey_group = parser.add_argument_group("Survey Parameters")
    survey_group.add_argument("--dims", type=int, choices=[2, 3], default=2,
                              help="Position dimension (default: 2)")
    survey_group.add_argument("--layout", type=str, choices=["grid", "random", "walk"],
                              default="grid", help="Reader layout (default: grid)")
    survey_group.add_argument("--area-size", type=float, default=20.0,
                              help="Area size in meters (default: 20.0)")
    survey_group.add_argument("--num-readings", type=int, default=49,
                              help="Number of readings (default: 49)")

    source_group = parser.add_argument_group("Emitter Parameters")
    source_group.add_argument("--frequency", type=float, default=2.4e9,
                              help="Carrier frequency in Hz (default: 2.4e9)")
    source_group.add_argument("--tx-power", type=float, default=-5.0,
                              help="Transmitted power in dBm (default: -5.0)")
    source_group.add_argument("--path-loss", type=float, default=2.0,
                              help="Path-loss exponent (default: 2.0)")

    noise_group = parser.add_argument_group("Measurement Noise Parameters")
    noise_group.add_argument("--sigma", type=float, default=2.0,
                             help="Shadowing std dev in dB (default: 2.0)")

    parser.add_argument("--estimate-path-loss", action="store_true",
                        help="Store an estimator config that also estimates n")
    parser.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")

    args = parser.parse_args()

    generate_dataset(
        output_dir=args.output,
        preset=args.preset,
        dims=args.dims,
        layout=args.layout,
        area_size=args.area_size,
        num_readings=args.num_readings,
        frequency=args.frequency,
        tx_power_dbm=args.tx_power,
        path_loss_exp=args.path_loss,
        sigma_db=args.sigma,
        estimate_path_loss=args.estimate_path_loss,
        seed=args.seed,
    )


if __name__ == "__main__":
    main()
