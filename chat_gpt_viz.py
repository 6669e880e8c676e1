"""Charts for the wrapped views: contribution calendar, hourly activity, models."""

from __future__ import annotations

import os

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402
import pandas as pd  # noqa: E402
import seaborn as sns  # noqa: E402

from analytics import DaysActiveData, TimeOfDayData, ToolsAndModelsData, WrappedResult  # noqa: E402

WEEKDAY_LABELS = ['Mon', 'Tue', 'Wed', 'Thu', 'Fri', 'Sat', 'Sun']
# Level 0-4, GitHub-style greens
LEVEL_COLORS = ['#ebedf0', '#9be9a8', '#40c463', '#30a14e', '#216e39']


def contributions_frame(days_active: DaysActiveData) -> pd.DataFrame:
    """Tabulate the contribution calendar.

    Returns:
        DataFrame with columns date (datetime64), count, level, weekday
        (0=Monday) and week (column index on the calendar grid, 0 for the
        week holding January 1).
    """
    df = pd.DataFrame(
        [{'date': c.date, 'count': c.count, 'level': c.level} for c in days_active.contributions],
        columns=['date', 'count', 'level'],
    )
    df['date'] = pd.to_datetime(df['date'])
    df['weekday'] = df['date'].dt.weekday
    if df.empty:
        df['week'] = pd.Series(dtype='int64')
        return df
    first = df['date'].iloc[0]
    offset = first.weekday()
    df['week'] = ((df['date'] - first).dt.days + offset) // 7
    return df


def plot_contribution_calendar(days_active: DaysActiveData, output_file: str) -> None:
    """Render the year as a weekday x week heatmap of activity levels."""
    df = contributions_frame(days_active)
    grid = df.pivot(index='weekday', columns='week', values='level').reindex(range(7))

    plt.figure(figsize=(18, 4))
    sns.heatmap(
        grid,
        cmap=LEVEL_COLORS,
        vmin=0,
        vmax=4,
        cbar=False,
        linewidths=1.5,
        linecolor='white',
        square=True,
        yticklabels=WEEKDAY_LABELS,
        xticklabels=False,
    )
    plt.title(
        f"{days_active.total_days} days active, longest streak {days_active.longest_streak} days",
        fontsize=14, pad=20,
    )
    plt.xlabel('')
    plt.ylabel('')
    plt.tight_layout()
    plt.savefig(output_file, dpi=300, bbox_inches='tight')
    plt.close()


def plot_hourly_activity(time_of_day: TimeOfDayData, output_file: str) -> None:
    """Bar chart of conversations started per hour of the day."""
    df = pd.DataFrame([{'label': b.label, 'count': b.count} for b in time_of_day.hourly_data])

    plt.figure(figsize=(15, 6))
    sns.barplot(data=df, x='label', y='count', color='skyblue')
    plt.title(f"Conversations by Hour ({time_of_day.personality_type})", fontsize=14, pad=20)
    plt.xlabel('Hour', fontsize=12)
    plt.ylabel('Conversations', fontsize=12)
    plt.grid(True, axis='y', alpha=0.3)
    plt.xticks(rotation=45)
    plt.tight_layout()
    plt.savefig(output_file, dpi=300, bbox_inches='tight')
    plt.close()


def plot_model_usage(tools_and_models: ToolsAndModelsData, output_file: str, top: int = 10) -> None:
    """Horizontal bar chart of the most used models."""
    df = pd.DataFrame(
        [{'model': m.name, 'count': m.count} for m in tools_and_models.models[:top]],
        columns=['model', 'count'],
    )

    plt.figure(figsize=(12, 6))
    sns.barplot(data=df, x='count', y='model', color='lightgreen')
    plt.title('Replies by Model', fontsize=14, pad=20)
    plt.xlabel('Replies', fontsize=12)
    plt.ylabel('')
    plt.grid(True, axis='x', alpha=0.3)
    plt.tight_layout()
    plt.savefig(output_file, dpi=300, bbox_inches='tight')
    plt.close()


def save_wrapped_charts(result: WrappedResult, output_dir: str = 'chat_analytics') -> list[str]:
    """Write every chart the result has data for.

    Args:
        result: Output of ``analytics.build_wrapped``.
        output_dir: Directory for the PNG files.  Created if missing.

    Returns:
        Paths of the files written.
    """
    os.makedirs(output_dir, exist_ok=True)
    written: list[str] = []

    if result.days_active is not None:
        path = os.path.join(output_dir, 'days_active.png')
        plot_contribution_calendar(result.days_active, path)
        written.append(path)

    if result.time_of_day is not None:
        path = os.path.join(output_dir, 'time_of_day.png')
        plot_hourly_activity(result.time_of_day, path)
        written.append(path)

    if result.tools_and_models is not None and result.tools_and_models.models:
        path = os.path.join(output_dir, 'models.png')
        plot_model_usage(result.tools_and_models, path)
        written.append(path)

    return written
