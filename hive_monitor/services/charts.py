"""
Charts Service - PNG charts of hive telemetry
Uses matplotlib + seaborn for server-side PNG generation

Charts render in a worker thread, so figures are built with the
object-oriented Figure API and never registered with pyplot.
"""

import matplotlib
matplotlib.use('Agg')  # Headless mode - must be before seaborn imports pyplot

import matplotlib.dates as mdates
from matplotlib.figure import Figure
import seaborn as sns
from io import BytesIO
from zoneinfo import ZoneInfo

from hive_monitor.models.reading import Reading

# Set seaborn style
sns.set_theme(style="whitegrid", palette="husl")

# Brood nest temperature band (°C) and colors
TEMP_BAND = {'low': 32, 'high': 37}
COLORS = {
    'temperature': '#f59e0b',
    'secondary': '#ef4444',
    'humidity': '#06b6d4',
    'weight': '#22c55e',
    'battery': '#3b82f6',
}

RANGE_TITLES = {
    '24h': 'last 24 hours',
    '7d': 'last 7 days',
    '30d': 'last 30 days',
}


def _local_times(readings: list[Reading], tz: ZoneInfo) -> list:
    return [r.recorded_at.replace(tzinfo=ZoneInfo("UTC")).astimezone(tz) for r in readings]


def _series(readings: list[Reading], times: list, field: str) -> tuple[list, list]:
    """Pair timestamps with values, skipping readings without this field."""
    points = [(t, getattr(r, field)) for t, r in zip(times, readings) if getattr(r, field) is not None]
    return [p[0] for p in points], [p[1] for p in points]


def generate_device_chart(
    readings: list[Reading],
    device_name: str,
    range_key: str = "24h",
    timezone: str = "Africa/Lagos",
) -> BytesIO:
    """
    Generate telemetry chart for one device.

    Args:
        readings: Oldest-first readings (already downsampled)
        device_name: Name of the device for title
        range_key: One of 24h / 7d / 30d, used for title and axis format
        timezone: Display timezone

    Returns:
        BytesIO buffer with PNG image
    """
    if not readings:
        return _generate_empty_chart("No data for selected range")

    try:
        tz = ZoneInfo(timezone)
    except Exception:
        tz = ZoneInfo("UTC")

    times = _local_times(readings, tz)

    fig = Figure(figsize=(12, 10))
    ax1, ax2, ax3 = fig.subplots(3, 1, height_ratios=[2, 1, 1], sharex=True)
    fig.suptitle(f'🐝 {device_name}: {RANGE_TITLES.get(range_key, range_key)}',
                 fontsize=14, fontweight='bold')

    # Temperature (main)
    ax1.axhspan(TEMP_BAND['low'], TEMP_BAND['high'], alpha=0.1, color=COLORS['weight'], label='Brood range')
    t, values = _series(readings, times, 'temperature')
    ax1.plot(t, values, color=COLORS['temperature'], linewidth=2, label='Temperature')
    t, values = _series(readings, times, 'secondary_temperature')
    if values:
        ax1.plot(t, values, color=COLORS['secondary'], linewidth=1.5, linestyle='--', label='Secondary')
    ax1.set_ylabel('Temperature (°C)', fontsize=11)
    ax1.legend(loc='upper right', fontsize=9)

    # Humidity & weight
    ax2_hum = ax2
    ax2_weight = ax2.twinx()
    t, values = _series(readings, times, 'humidity')
    ax2_hum.plot(t, values, color=COLORS['humidity'], linewidth=2)
    ax2_hum.set_ylabel('Humidity (%)', color=COLORS['humidity'], fontsize=10)
    ax2_hum.tick_params(axis='y', labelcolor=COLORS['humidity'])

    t, values = _series(readings, times, 'weight')
    ax2_weight.plot(t, values, color=COLORS['weight'], linewidth=2, linestyle='--')
    ax2_weight.set_ylabel('Weight (kg)', color=COLORS['weight'], fontsize=10)
    ax2_weight.tick_params(axis='y', labelcolor=COLORS['weight'])

    # Battery
    t, values = _series(readings, times, 'battery_voltage')
    ax3.plot(t, values, color=COLORS['battery'], linewidth=2)
    ax3.set_ylabel('Battery (V)', fontsize=10)

    # Format x-axis
    fmt = '%H:%M' if range_key == '24h' else '%d.%m'
    for ax in [ax1, ax2, ax3]:
        ax.xaxis.set_major_formatter(mdates.DateFormatter(fmt, tz=tz))
        ax.tick_params(axis='x', labelrotation=45)

    temps = [r.temperature for r in readings if r.temperature is not None]
    if temps:
        stats_text = (f'Avg: {sum(temps) / len(temps):.1f}°C | '
                      f'Max: {max(temps):.1f}°C | Min: {min(temps):.1f}°C')
        fig.text(0.5, 0.01, stats_text, ha='center', fontsize=10,
                 bbox=dict(boxstyle='round', facecolor='white', alpha=0.8))

    fig.tight_layout(rect=[0, 0.03, 1, 0.97])

    # Save to buffer
    buf = BytesIO()
    fig.savefig(buf, format='png', dpi=120, bbox_inches='tight',
                facecolor='white', edgecolor='none')
    buf.seek(0)

    return buf


def _generate_empty_chart(message: str) -> BytesIO:
    """Generate a simple chart with 'no data' message."""
    fig = Figure(figsize=(8, 4))
    ax = fig.subplots()
    ax.text(0.5, 0.5, message, ha='center', va='center', fontsize=14, color='gray')
    ax.set_xlim(0, 1)
    ax.set_ylim(0, 1)
    ax.axis('off')

    buf = BytesIO()
    fig.savefig(buf, format='png', dpi=100, bbox_inches='tight',
                facecolor='white', edgecolor='none')
    buf.seek(0)

    return buf
