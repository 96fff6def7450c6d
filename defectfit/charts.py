"""
Charts of observed versus expected frequencies and of the chi-square decisions.
"""

import math

import matplotlib

matplotlib.use('Agg')

import matplotlib.pyplot as plt
import plotly.graph_objects as go
import seaborn as sns
from plotly.subplots import make_subplots

from defectfit.distributions import Distribution, format_params

# Plotly dash styles cycled per family
DASH_STYLES = ['solid', 'dash', 'dot']


def distribution_colors():
    """One husl colour per family, as hex strings, in Distribution order."""
    sns_colors = sns.color_palette("husl", len(Distribution))
    colors = [f'#{int(r*255):02x}{int(g*255):02x}{int(b*255):02x}' for r, g, b in sns_colors]
    return dict(zip(Distribution, colors))


def _legend_name(result, distribution):
    fit = result.fits[distribution]
    name = f"{distribution.label} ({format_params(distribution, fit.parameters)})"
    if not fit.is_fitted:
        name += " [not fitted]"
    elif distribution is result.best_distribution:
        name = f"★ {name}"
    return name


def frequency_figure(result):
    """
    Interactive bar chart of observed bin counts with each family's expected counts.

    Parameters:
    -----------
    result : AnalysisResult
        Completed analysis

    Returns:
    --------
    plotly Figure
    """
    table = result.table
    labels = list(table.bin_labels)
    colors = distribution_colors()

    fig = go.Figure()
    fig.add_trace(
        go.Bar(
            x=labels,
            y=list(table.observed),
            name='Observed',
            marker_color='coral',
            opacity=0.6,
        )
    )
    for idx, distribution in enumerate(Distribution):
        fit = result.fits[distribution]
        fig.add_trace(
            go.Scatter(
                x=labels,
                y=list(table.expected[distribution]),
                mode='lines+markers',
                name=_legend_name(result, distribution),
                line=dict(
                    color=colors[distribution],
                    dash=DASH_STYLES[idx % len(DASH_STYLES)],
                    width=3 if distribution is result.best_distribution else 2,
                ),
                opacity=1.0 if fit.is_fitted else 0.4,
                hovertemplate='Bin %{x}<br>Expected: %{y:.2f}<extra></extra>',
            )
        )

    fig.update_xaxes(title_text="Defects per batch")
    fig.update_yaxes(title_text="Number of batches")
    fig.update_layout(
        title=f'Observed vs Expected Frequencies (n={table.n})',
        hovermode='x unified',
        height=500,
        showlegend=True,
        bargap=0.15,
    )
    return fig


def chi_square_figure(result):
    """Chi-square statistic against the critical value for every testable family."""
    colors = distribution_colors()
    fig = make_subplots(specs=[[{"secondary_y": True}]])

    names, chi_values, critical_values, p_values, bar_colors = [], [], [], [], []
    for distribution in Distribution:
        res = result.results[distribution]
        if not res.is_testable or not math.isfinite(res.chi_square):
            continue
        names.append(distribution.label)
        chi_values.append(res.chi_square)
        critical_values.append(res.critical_value)
        p_values.append(res.p_value)
        bar_colors.append(colors[distribution])

    fig.add_trace(
        go.Bar(x=names, y=chi_values, name='χ² statistic', marker_color=bar_colors, opacity=0.8),
        secondary_y=False,
    )
    fig.add_trace(
        go.Scatter(
            x=names,
            y=critical_values,
            mode='markers',
            name=f'Critical value (α={result.significance_level:g})',
            marker=dict(symbol='line-ew-open', size=40, color='black', line=dict(width=3)),
        ),
        secondary_y=False,
    )
    fig.add_trace(
        go.Scatter(x=names, y=p_values, mode='markers+text', name='p-value',
                   text=[f'{p:.4f}' for p in p_values], textposition='top center',
                   marker=dict(size=10, color='gray')),
        secondary_y=True,
    )

    fig.update_yaxes(title_text="χ²", secondary_y=False)
    fig.update_yaxes(title_text="p-value", range=[0, 1.05], secondary_y=True)
    fig.update_layout(title='Chi-square Test per Distribution', height=450, showlegend=True)
    return fig


def frequency_plot(result):
    """Matplotlib version of ``frequency_figure`` for static reports."""
    table = result.table
    labels = list(table.bin_labels)
    positions = range(len(labels))
    colors = distribution_colors()

    fig, ax = plt.subplots(figsize=(10, 6))
    ax.bar(positions, table.observed, alpha=0.6, color='coral', label='Observed')
    for distribution in Distribution:
        fit = result.fits[distribution]
        ax.plot(
            positions,
            table.expected[distribution],
            marker='o',
            linewidth=2.5 if distribution is result.best_distribution else 1.5,
            linestyle='-' if fit.is_fitted else ':',
            color=colors[distribution],
            label=_legend_name(result, distribution),
        )

    ax.set_xticks(list(positions))
    ax.set_xticklabels(labels, rotation=45 if len(labels) > 10 else 0)
    ax.set_xlabel('Defects per batch', fontsize=12)
    ax.set_ylabel('Number of batches', fontsize=12)
    ax.set_title('Observed vs Expected Frequencies', fontsize=14, fontweight='bold')
    ax.legend()
    ax.grid(True, alpha=0.3)
    plt.tight_layout()
    return fig
