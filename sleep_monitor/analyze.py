#!/usr/bin/env python3
"""
Analysis script for recorded sleep sessions
Usage: python -m sleep_monitor.analyze recordings/<recording_id>
"""

import sys
import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
from scipy.signal import welch

from sleep_monitor.sleep_state import SleepState

# Vertical order of states in the timeline plot
STATE_LEVELS = {state.value: i for i, state in enumerate([
    SleepState.UNKNOWN,
    SleepState.CALIBRATING,
    SleepState.NO_BREATHING,
    SleepState.DEEP_SLEEP,
    SleepState.LIGHT_SLEEP,
    SleepState.REM_SLEEP,
    SleepState.SPASM,
    SleepState.AWAKE,
])}


def load_recording(base_path: str) -> pd.DataFrame:
    """Loads the per-frame samples of a recording"""
    df = pd.read_csv(f"{base_path}_raw.csv")
    df["skipped"] = df["skipped"].astype(bool)
    return df


def state_durations(df: pd.DataFrame) -> pd.Series:
    """
    Seconds spent in each state.

    Each sample's state is held until the next sample's timestamp.
    """
    if len(df) < 2:
        return pd.Series(dtype=float)

    deltas = df["timestamp"].diff().shift(-1).fillna(0.0)
    return deltas.groupby(df["state"]).sum().sort_values(ascending=False)


def plot_recording(base_path: str, show: bool = True) -> str:
    """Loads and visualizes a recording"""
    df = load_recording(base_path)
    t = df["timestamp"] - df["timestamp"].iloc[0]

    print(f"Recording: {base_path}")
    print(f"Duration: {t.iloc[-1]:.1f}s")
    print(f"Frames: {len(df)} ({int(df['skipped'].sum())} skipped)")
    for state, seconds in state_durations(df).items():
        print(f"  {state:<14} {seconds:7.1f}s")

    fig, axes = plt.subplots(4, 1, figsize=(14, 10), sharex=False)
    fig.suptitle(f"Sleep analysis: {base_path.split('/')[-1]}", fontsize=14)

    # 1. Motion score
    ax1 = axes[0]
    ax1.plot(t, df["scaled_score"], 'b-', linewidth=0.5, alpha=0.7, label='Motion score')
    ax1.set_yscale('symlog', linthresh=10_000)
    ax1.set_ylabel('Score (1080p)')
    ax1.set_title('Motion score')
    ax1.legend(loc='upper right')
    ax1.grid(True, alpha=0.3)

    # 2. State timeline
    ax2 = axes[1]
    levels = df["state"].map(STATE_LEVELS).fillna(0)
    ax2.step(t, levels, 'g-', where='post', linewidth=1.5)
    ax2.set_yticks(list(STATE_LEVELS.values()))
    ax2.set_yticklabels(list(STATE_LEVELS.keys()))
    ax2.set_title('Sleep state')
    ax2.grid(True, alpha=0.3)

    # 3. Breathing rate
    ax3 = axes[2]
    ax3.plot(t, df["breathing_rate"], 'r-', linewidth=1.5, label='Breathing rate')
    rates = df.loc[df["breathing_rate"] > 0, "breathing_rate"]
    if len(rates) > 0:
        ax3.axhline(y=rates.mean(), color='darkred', linestyle='--',
                    label=f"Mean: {rates.mean():.1f}/min")
    ax3.set_ylabel('Breaths/min')
    ax3.set_title('Breathing rate')
    ax3.legend(loc='upper right')
    ax3.grid(True, alpha=0.3)
    ax3.set_ylim([0, 70])

    # 4. Spectrum of the motion score
    ax4 = axes[3]
    active = df.loc[~df["skipped"]]
    if len(active) > 10:
        duration = active["timestamp"].iloc[-1] - active["timestamp"].iloc[0]
        fs = (len(active) - 1) / duration if duration > 0 else 5.0
        signal = active["scaled_score"].to_numpy() - active["scaled_score"].mean()
        frequencies, psd = welch(signal, fs=fs, nperseg=min(len(signal), int(fs * 30)))

        mask = frequencies <= 1.5
        ax4.semilogy(frequencies[mask] * 60, np.maximum(psd[mask], 1e-12), 'b-', linewidth=1.5)
        ax4.set_xlabel('Frequency (cycles/min)')
        ax4.set_ylabel('Power Spectral Density')
        ax4.set_title('Motion spectrum')
        ax4.grid(True, alpha=0.3)
        ax4.set_xlim([0, 90])

    plt.tight_layout()

    plot_path = f"{base_path}_analysis.png"
    plt.savefig(plot_path, dpi=150, bbox_inches='tight')
    print(f"Plot saved: {plot_path}")

    if show:
        plt.show()
    plt.close(fig)
    return plot_path


def main():
    if len(sys.argv) < 2:
        print("Usage: python -m sleep_monitor.analyze <base_path>")
        print("Example: python -m sleep_monitor.analyze recordings/3f2c9a...")
        sys.exit(1)

    plot_recording(sys.argv[1])


if __name__ == "__main__":
    main()
