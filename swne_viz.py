"""
SWNE v0.3 - Visualization Module
================================

Plots for SWNE embeddings:
1. swne_plot: samples, factor anchors and embedded features on one map
   - Automatic discrete/continuous color detection for sample labels
   - Discrete (up to 12 categories): viridis palette + legend
   - Continuous (>12 values): viridis colormap + colorbar
   - Optional overlay of projected (out-of-sample) samples
2. factor_heatmap: top associated features per factor

Plot style:
- Viridis colormap (default)
- figsize (6,5)
- Font size 12 for ticks, 14 for axis labels
"""

import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from typing import Optional, Sequence, Tuple, Union

from swne import SWNEEmbedding, summarize_assoc_features

# Configure plotting defaults
plt.rcParams['font.size'] = 12
plt.rcParams['axes.labelsize'] = 14
plt.rcParams['xtick.labelsize'] = 12
plt.rcParams['ytick.labelsize'] = 12
plt.rcParams['legend.fontsize'] = 12


# ============================================================================
# HELPER functions
# ============================================================================

def _align_labels(
    labels: Union[pd.Series, Sequence, None],
    index: pd.Index
) -> Optional[pd.Series]:
    if labels is None:
        return None
    if isinstance(labels, pd.Series):
        missing = index.difference(labels.index)
        if len(missing):
            raise ValueError(f"labels missing for {len(missing)} samples")
        return labels.loc[index]
    values = list(labels)
    if len(values) != len(index):
        raise ValueError(f"Got {len(values)} labels for {len(index)} samples")
    return pd.Series(values, index=index)


def _is_discrete(values: pd.Series) -> bool:
    return (not pd.api.types.is_numeric_dtype(values)) or values.nunique() <= 12


# ============================================================================
# EMBEDDING MAP
# ============================================================================

def swne_plot(
    embedding: SWNEEmbedding,
    labels: Union[pd.Series, Sequence, None] = None,
    projected: Optional[pd.DataFrame] = None,
    show_factors: bool = True,
    show_features: bool = True,
    point_size: float = 12,
    figsize: Tuple[int, int] = (6, 5),
    cmap: str = 'viridis',
    title: Optional[str] = None,
    ax: Optional[plt.Axes] = None,
    **kwargs
) -> plt.Axes:
    """
    Draw an SWNE embedding.

    Parameters
    ----------
    embedding : SWNEEmbedding
        Embedding from embed_swne() or SWNE.fit()
    labels : pd.Series or sequence, optional
        One label per sample (Series indexed by sample id, or in sample order).
        Non-numeric or <=12 unique values are colored discretely.
    projected : pd.DataFrame, optional
        Coordinates from project_swne(), drawn as hollow markers
    show_factors : bool
        Draw and name the factor anchors
    show_features : bool
        Draw and name embedded features (if any)
    point_size : float
        Marker size for samples
    figsize : tuple of int
        Figure size (width, height)
    cmap : str
        Colormap name (default: 'viridis')
    title : str, optional
        Plot title
    ax : plt.Axes, optional
        Existing axes to plot on
    **kwargs
        Additional arguments passed to the sample scatter()

    Returns
    -------
    ax : plt.Axes
        Matplotlib axes object

    Examples
    --------
    >>> model = SWNE(n_factors=10).fit(data)
    >>> model.embed_features(['gene_a', 'gene_b'])
    >>> ax = swne_plot(model.embedding_, labels=cell_types)
    """
    if ax is None:
        fig, ax = plt.subplots(figsize=figsize)

    samples = embedding.sample_coords
    c_values = _align_labels(labels, samples.index)

    if c_values is None:
        ax.scatter(
            samples['x'], samples['y'],
            c='steelblue', s=point_size, alpha=0.7, linewidth=0,
            **kwargs
        )
    elif _is_discrete(c_values):
        if pd.api.types.is_numeric_dtype(c_values):
            categories = sorted(c_values.dropna().unique())
        else:
            categories = sorted(c_values.dropna().unique(), key=str)
        if not categories:
            raise ValueError("labels have no valid values")
        palette = sns.color_palette(cmap, len(categories))
        for color, category in zip(palette, categories):
            mask = (c_values == category).values
            ax.scatter(
                samples.loc[mask, 'x'], samples.loc[mask, 'y'],
                color=color, s=point_size, alpha=0.8, linewidth=0,
                label=str(category),
                **kwargs
            )
        ax.legend(
            fontsize=12,
            loc='center left',
            bbox_to_anchor=(1.0, 0.5),
            frameon=False,
            markerscale=2
        )
    else:
        scatter = ax.scatter(
            samples['x'], samples['y'],
            c=c_values.values, cmap=cmap, s=point_size, alpha=0.8, linewidth=0,
            **kwargs
        )
        cbar = plt.colorbar(scatter, ax=ax)
        cbar.set_label(c_values.name if c_values.name is not None else 'label', fontsize=14)
        cbar.ax.tick_params(labelsize=12)

    if projected is not None and len(projected):
        ax.scatter(
            projected['x'], projected['y'],
            facecolors='none', edgecolors='black', s=point_size * 1.5,
            linewidth=0.6, label='projected'
        )

    if show_factors:
        factors = embedding.factor_coords
        ax.scatter(factors['x'], factors['y'], c='black', s=40, marker='o')
        for name, row in factors.iterrows():
            ax.annotate(
                str(name), xy=(row['x'], row['y']),
                xytext=(4, 4), textcoords='offset points',
                fontsize=12, fontweight='bold'
            )

    features = embedding.feature_coords
    if show_features and len(features):
        ax.scatter(features['x'], features['y'], c='darkred', s=20, marker='^')
        for name, row in features.iterrows():
            ax.annotate(
                str(name), xy=(row['x'], row['y']),
                xytext=(4, -10), textcoords='offset points',
                fontsize=10, color='darkred',
                bbox=dict(boxstyle='round,pad=0.2', facecolor='white', alpha=0.7, edgecolor='none')
            )

    ax.set_xlabel('SWNE 1', fontsize=14)
    ax.set_ylabel('SWNE 2', fontsize=14)
    ax.set_xticks([])
    ax.set_yticks([])
    ax.set_xlim(-0.05, 1.05)
    ax.set_ylim(-0.05, 1.05)
    if title:
        ax.set_title(title, fontsize=14)

    plt.tight_layout()

    return ax


# ============================================================================
# FACTOR ASSOCIATION HEATMAP
# ============================================================================

def factor_heatmap(
    loadings: pd.DataFrame,
    features_per_factor: int = 5,
    figsize: Tuple[int, int] = (6, 5),
    cmap: str = 'viridis',
    title: Optional[str] = None,
    ax: Optional[plt.Axes] = None,
    **kwargs
) -> plt.Axes:
    """
    Heatmap of the top associated features of each factor.

    Loadings of the selected features are scaled to [0, 1] per factor so
    factors of different magnitude share one color scale.

    Parameters
    ----------
    loadings : pd.DataFrame
        Feature loadings (features x factors), e.g. SWNE.W_
    features_per_factor : int
        Top features taken from each factor
    **kwargs
        Additional arguments passed to seaborn.heatmap()

    Returns
    -------
    ax : plt.Axes
    """
    summary = summarize_assoc_features(loadings, features_per_factor)
    features = list(dict.fromkeys(summary['feature']))
    W = loadings.loc[features]

    col_max = W.max(axis=0).replace(0.0, 1.0)
    scaled = W / col_max

    if ax is None:
        fig, ax = plt.subplots(figsize=figsize)

    sns.heatmap(
        scaled,
        cmap=cmap,
        vmin=0.0,
        vmax=1.0,
        cbar_kws={'label': 'Scaled loading'},
        ax=ax,
        **kwargs
    )
    ax.set_xlabel('Factor', fontsize=14)
    ax.set_ylabel('Feature', fontsize=14)
    ax.tick_params(axis='y', labelsize=max(6, 12 - len(features) // 10))
    if title:
        ax.set_title(title, fontsize=14)

    plt.tight_layout()

    return ax


# ============================================================================
# Export
# ============================================================================

__all__ = [
    'swne_plot',
    'factor_heatmap',
]
