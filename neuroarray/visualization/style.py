"""
Figure style and colors shared by the differential analysis plots.
"""

from typing import Any, Dict, Optional, Sequence

import matplotlib.pyplot as plt
import seaborn as sns

DEFAULT_FONT_SIZES = {"title": 12, "label": 11, "tick": 10, "legend": 9}

SIGNIFICANCE_COLORS = {
    "up": "#e74c3c",
    "down": "#3498db",
    "not_significant": "#bdc3c7",
    "histogram": "#9b59b6",
    "threshold": "#2ecc71",
}

# Significance call -> (palette key, legend label); drawn in this order
CALL_STYLES = (
    (0, "not_significant", "NS"),
    (1, "up", "Up"),
    (-1, "down", "Down"),
)


def _viz_params(config: Optional[Any]) -> Dict[str, Any]:
    return getattr(config, "viz_params", None) or {}


def setup_publication_style(config: Optional[Any] = None) -> None:
    """
    Apply the figure style used for every saved plot.

    Font sizes are merged key by key over the defaults, so a config that
    only sets ``font_sizes["title"]`` keeps the remaining sizes.

    Args:
        config: Optional configuration object with viz_params
    """
    viz = _viz_params(config)
    fonts = {**DEFAULT_FONT_SIZES, **viz.get("font_sizes", {})}

    sns.set_theme(context="paper", style="ticks")
    plt.rcParams.update({
        "font.size": fonts["tick"],
        "axes.titlesize": fonts["title"],
        "axes.labelsize": fonts["label"],
        "xtick.labelsize": fonts["tick"],
        "ytick.labelsize": fonts["tick"],
        "legend.fontsize": fonts["legend"],
        "savefig.dpi": viz.get("dpi", 300),
        "savefig.bbox": "tight",
        "axes.spines.top": False,
        "axes.spines.right": False,
        # TrueType glyphs in PDF output
        "pdf.fonttype": 42,
    })


def get_color_palette(
    config: Optional[Any] = None,
    groups: Optional[Sequence[str]] = None
) -> Dict[str, str]:
    """
    Colors for significance calls and sample groups.

    Args:
        config: Optional configuration object; ``viz_params["colors"]`` overrides
        groups: Group levels to color. Levels without a configured color
            take the seaborn "colorblind" palette in the order given.

    Returns:
        Dictionary mapping palette keys and group levels to hex colors
    """
    colors = dict(SIGNIFICANCE_COLORS)
    colors.update(_viz_params(config).get("colors", {}))

    if groups:
        unassigned = [g for g in groups if g not in colors]
        if unassigned:
            palette = sns.color_palette("colorblind", len(unassigned)).as_hex()
            colors.update(zip(unassigned, palette))

    return colors
