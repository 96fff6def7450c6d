"""
DefectFit - Goodness-of-Fit Analysis of Batch Defect Counts
A Streamlit application for testing which discrete distribution best describes defects per batch.
"""

import logging
from datetime import datetime
from pathlib import Path

import pandas as pd
import seaborn as sns
import streamlit as st

from defectfit.charts import chi_square_figure, frequency_figure
from defectfit.config import (
    DEFAULT_IQR_MULTIPLIER,
    DEFAULT_SIGNIFICANCE_LEVEL,
    DEFAULT_TAIL_PROBABILITY,
    MIN_RECOMMENDED_RECORDS,
    SIGNIFICANCE_UI_RANGE,
    AnalysisConfig,
)
from defectfit.distributions import Distribution, format_params
from defectfit.errors import DefectFitError, ExportError
from defectfit.export import OPENPYXL_AVAILABLE, results_frame, to_csv_bytes, to_excel_bytes, to_pdf_bytes
from defectfit.history import HistoryFilter, InMemoryHistoryStore, JsonFileHistoryStore, entry_from_analysis
from defectfit.io import (
    SUPPORTED_EXTENSIONS,
    example_records,
    parse_pasted_records,
    read_batch_file,
    records_from_frame,
    records_to_frame,
)
from defectfit.logging import MemoryLogHandler, configure_logging
from defectfit.pipeline import reevaluate
from defectfit.runner import AnalysisRunner

# Set seaborn color palette
sns.set_palette("husl")

HISTORY_PATH = Path(__file__).parent / ".defectfit" / "history.json"
SESSION_KEYS = ('records', 'analysis_result', 'analysis_key', 'runner', 'history', 'file_name')


def get_log_handler():
    """Attach one in-memory handler to the package logger and return it."""
    logger = logging.getLogger("defectfit")
    for handler in logger.handlers:
        if isinstance(handler, MemoryLogHandler):
            return handler
    configure_logging(component="dashboard")
    handler = MemoryLogHandler()
    logger.addHandler(handler)
    return handler


log_handler = get_log_handler()

# Page configuration
st.set_page_config(
    page_title="DefectFit - Defect Distribution Analysis",
    layout="wide"
)

# Title
st.title("DefectFit")
st.markdown("**Goodness-of-Fit Analysis of Defects per Batch**")

# Documentation sections
with st.expander("Quick Start Guide", expanded=False):
    st.markdown(f"""
    ### Getting Started

    1. **Input Your Data**
       - **Upload File**: CSV, TXT, Excel (.xlsx/.xls), JSON or Parquet with one row per batch
         - Columns named `total` / `details_in_party` and `defects` / `defects_in_party` are detected automatically
         - Otherwise the first two columns are used, or columns 2 and 3 when the first holds a batch number
       - **Paste Values**: One batch per line, `total, defects` or `batch, total, defects`
       - **Use Test Data**: Explore the tool with a generated dataset
       - At least {MIN_RECOMMENDED_RECORDS} batches are recommended for a reliable test

    2. **Review and Edit the Records**
       - Every record must satisfy `0 <= defects <= total`
       - Edits in the table re-run the analysis

    3. **Read the Results**
       - Poisson, Binomial and Negative Binomial are fitted by the method of moments
       - Counts are merged into bins with an expected frequency of at least 5 for every distribution
       - Each distribution is tested with Pearson's chi-square test at the chosen significance level
       - The accepted distribution with the highest p-value is selected
    """)

with st.expander("Understanding the Chi-square Test", expanded=False):
    st.markdown("""
    ### Hypotheses

    - **H0**: the defect counts follow the fitted distribution
    - **H1**: they do not

    ### Degrees of Freedom

    `df = valid bins - 1 - estimated parameters` (at least 1). Poisson estimates one
    parameter (λ), Binomial and Negative Binomial estimate two.

    ### Decision

    - **p-value ≥ α**: H0 is not rejected, the distribution is accepted
    - **p-value < α**: H0 is rejected

    The χ² statistic is also compared with the critical value χ²(1-α, df); both checks
    normally agree, and the p-value decides when they do not.

    ### When a Distribution Cannot Be Fitted

    - **Poisson** needs a positive mean
    - **Binomial** needs a defect rate strictly between 0 and 1
    - **Negative Binomial** needs overdispersion: variance above 1.1 × mean

    Such a distribution is shown with neutral parameters for reference and is never accepted.
    """)

# Initialize session state
if 'records' not in st.session_state:
    st.session_state.records = None
if 'analysis_result' not in st.session_state:
    st.session_state.analysis_result = None
if 'analysis_key' not in st.session_state:
    st.session_state.analysis_key = None
if 'runner' not in st.session_state or st.session_state.runner.closed:
    st.session_state.runner = AnalysisRunner()
if 'history' not in st.session_state:
    st.session_state.history = InMemoryHistoryStore()
if 'file_name' not in st.session_state:
    st.session_state.file_name = None


def big_metric(label, value):
    st.markdown(f'<div class="big-label">{label}</div><div class="big-value">{value}</div>', unsafe_allow_html=True)


def history_store(persist):
    if persist:
        return JsonFileHistoryStore(HISTORY_PATH)
    return st.session_state.history


# Sidebar for data input
with st.sidebar:
    st.header("Data Input")

    input_method = st.radio(
        "Choose input method:",
        ["Upload File", "Paste Values", "Use Test Data"]
    )

    if input_method == "Upload File":
        uploaded_file = st.file_uploader(
            "Upload batch file",
            type=SUPPORTED_EXTENSIONS,
            help="Supported formats: CSV, TXT, Excel (.xlsx, .xls), JSON, Parquet"
        )
        if uploaded_file is not None and uploaded_file.name != st.session_state.file_name:
            try:
                st.session_state.records = read_batch_file(uploaded_file, uploaded_file.name)
                st.session_state.file_name = uploaded_file.name
                st.success(f"Loaded {len(st.session_state.records)} batches from '{uploaded_file.name}'")
            except DefectFitError as e:
                st.error(f"Error: {e}")

    elif input_method == "Paste Values":
        text_input = st.text_area(
            "Paste batch records:",
            height=150,
            placeholder="total, defects per line, e.g.:\n100, 4\n100, 6\n120, 3\n..."
        )
        if st.button("Parse Records") and text_input:
            try:
                st.session_state.records = parse_pasted_records(text_input)
                st.session_state.file_name = None
                st.success(f"Parsed {len(st.session_state.records)} batches")
            except DefectFitError as e:
                st.error(f"Error: {e}")

    else:  # Use Test Data
        overdispersed = st.checkbox("Overdispersed example", value=False,
                                    help="Negative Binomial counts instead of Binomial ones")
        if st.button("Load Test Dataset"):
            st.session_state.records = example_records(overdispersed=overdispersed)
            st.session_state.file_name = None
            st.success(f"Loaded {len(st.session_state.records)} test batches")

    st.header("Analysis Settings")
    significance_level = st.slider(
        "Significance level (α)",
        min_value=SIGNIFICANCE_UI_RANGE[0],
        max_value=SIGNIFICANCE_UI_RANGE[1],
        value=DEFAULT_SIGNIFICANCE_LEVEL,
        step=0.001,
        format="%.3f",
    )
    include_outliers = st.checkbox("Include outliers", value=False)
    outlier_method = 'iqr'
    outlier_threshold = DEFAULT_IQR_MULTIPLIER
    tail_probability = DEFAULT_TAIL_PROBABILITY
    if not include_outliers:
        outlier_method = st.selectbox(
            "Outlier method",
            ['iqr', 'tail'],
            format_func=lambda m: "IQR fence" if m == 'iqr' else "Binomial tail probability",
        )
        if outlier_method == 'iqr':
            outlier_threshold = st.number_input("IQR multiplier", min_value=0.1, value=DEFAULT_IQR_MULTIPLIER, step=0.1)
        else:
            tail_probability = st.number_input("Tail probability", min_value=0.0001, max_value=0.1,
                                               value=DEFAULT_TAIL_PROBABILITY, step=0.0005, format="%.4f")
    binomial_trials = st.selectbox(
        "Binomial trials",
        ['representative', 'per_batch'],
        format_func=lambda m: "Mean batch size" if m == 'representative' else "Per-batch mixture",
    )
    persist_history = st.checkbox("Save history to disk", value=False,
                                  help=f"Keep the analysis history in {HISTORY_PATH}")

    st.markdown("---")
    if st.button("Reset Session", help="Clear the loaded data and results and stop the analysis worker"):
        st.session_state.runner.close(wait=False)
        for name in SESSION_KEYS:
            del st.session_state[name]
        st.rerun()

# Main content
if st.session_state.records:
    # Custom CSS for better metric labels
    st.markdown("""
    <style>
    .big-label {
        font-size: 14px;
        font-weight: 600;
        color: #262730;
        margin-bottom: 0.25rem;
    }
    .big-value {
        font-size: 24px;
        font-weight: 700;
        color: #1f77b4;
    }
    </style>
    """, unsafe_allow_html=True)

    st.header("Batch Records")
    edited = st.data_editor(
        records_to_frame(st.session_state.records),
        num_rows="dynamic",
        use_container_width=True,
        disabled=["batch"],
        key="records_editor",
    )
    try:
        records = records_from_frame(edited[['total', 'defects']])
    except DefectFitError as e:
        st.error(f"Error: {e}")
        records = None

    try:
        config = AnalysisConfig(
            significance_level=significance_level,
            include_outliers=include_outliers,
            outlier_method=outlier_method,
            outlier_threshold=outlier_threshold,
            tail_probability=tail_probability,
            binomial_trials=binomial_trials,
        )
    except DefectFitError as e:
        st.error(f"Error: {e}")
        config = None

    if records is not None and config is not None:
        key = (tuple(records), config.include_outliers, config.outlier_method, config.outlier_threshold,
               config.tail_probability, config.binomial_trials)
        previous = st.session_state.analysis_result
        try:
            if previous is not None and key == st.session_state.analysis_key:
                if previous.significance_level != config.significance_level:
                    st.session_state.analysis_result = reevaluate(previous, config.significance_level)
            else:
                with st.spinner("Analysing defect distribution..."):
                    result = st.session_state.runner.submit(records, config).result()
                st.session_state.analysis_result = result
                st.session_state.analysis_key = key
                history_store(persist_history).record(
                    entry_from_analysis(records, result, file_name=st.session_state.file_name)
                )
        except DefectFitError as e:
            st.error(f"Error: {e}")
            if previous is not None:
                st.info("Showing the previous valid result.")

    result = st.session_state.analysis_result
    if result is not None:
        for message in result.warnings:
            st.warning(message)

        # Descriptive Statistics
        st.header("Descriptive Statistics")
        sample = result.statistics
        col1, col2, col3 = st.columns(3)
        with col1:
            big_metric("Batches analysed", f"{result.n_filtered:,}")
            st.markdown("<br>", unsafe_allow_html=True)
            big_metric("Outliers removed", f"{result.outliers_removed:,}")
            st.markdown("<br>", unsafe_allow_html=True)
            big_metric("Total items", f"{sample.total_items:,}")
        with col2:
            big_metric("Mean defects", f"{sample.mean:.4f}")
            st.markdown("<br>", unsafe_allow_html=True)
            big_metric("Variance", f"{sample.variance:.4f}")
            st.markdown("<br>", unsafe_allow_html=True)
            big_metric("Std deviation", f"{sample.std_dev:.4f}")
        with col3:
            big_metric("Defect rate", f"{sample.defect_rate:.4%}")
            st.markdown("<br>", unsafe_allow_html=True)
            big_metric("Mean 95% CI", f"[{sample.mean_ci[0]:.3f}, {sample.mean_ci[1]:.3f}]")
            st.markdown("<br>", unsafe_allow_html=True)
            low, high = sample.variance_ci
            big_metric("Variance 95% CI", "N/A" if low is None else f"[{low:.3f}, {high:.3f}]")

        if sample.has_overdispersion:
            st.info("💡 Variance exceeds the mean by more than 10%: the counts are overdispersed, "
                    "which usually favours the Negative Binomial distribution.")

        # Test results
        st.header("Goodness-of-Fit Results")
        best = result.best_distribution
        best_params = format_params(best, result.best_fit.parameters)
        if result.hypothesis_accepted:
            st.success(f"Best fit: **{best.label}** ({best_params}), "
                       f"p-value {result.best_result.p_value:.4f} ≥ α = {result.significance_level:g}")
        else:
            st.error(f"No distribution is accepted at α = {result.significance_level:g}. "
                     f"Closest candidate: **{best.label}** ({best_params})")

        st.dataframe(results_frame(result), use_container_width=True, hide_index=True)
        st.caption(f"Bins: {', '.join(result.bin_labels)}")

        st.plotly_chart(frequency_figure(result), use_container_width=True)
        st.plotly_chart(chi_square_figure(result), use_container_width=True)

        # Export
        st.markdown("---")
        st.subheader("Export")
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        col_exp1, col_exp2, col_exp3 = st.columns(3)
        with col_exp1:
            st.download_button(
                label="Download Results (CSV)",
                data=to_csv_bytes(result),
                file_name=f"DefectFit_Results_{timestamp}.csv",
                mime="text/csv",
                use_container_width=True,
            )
        with col_exp2:
            if OPENPYXL_AVAILABLE and records is not None:
                try:
                    st.download_button(
                        label="Download Excel Report",
                        data=to_excel_bytes(records, result),
                        file_name=f"DefectFit_Report_{timestamp}.xlsx",
                        mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
                        type="primary",
                        use_container_width=True,
                    )
                except ExportError as e:
                    st.warning(str(e))
            else:
                st.warning("Excel export requires openpyxl. Install with: pip install openpyxl")
        with col_exp3:
            try:
                st.download_button(
                    label="Download PDF Report",
                    data=to_pdf_bytes(result),
                    file_name=f"DefectFit_Report_{timestamp}.pdf",
                    mime="application/pdf",
                    use_container_width=True,
                )
            except ExportError as e:
                st.warning(str(e))

else:
    st.info("Please input data using the sidebar to begin analysis.")

    # Show example
    with st.expander("Example Data Format"):
        st.code("""
# CSV format (one batch per line):
party_number,details_in_party,defects_in_party
1,100,4
2,100,7
3,120,5
...

# Or pasted, total and defects per line:
100, 4
100, 7
        """)

with st.expander("Analysis History", expanded=False):
    col_h1, col_h2 = st.columns(2)
    with col_h1:
        family = st.selectbox("Best distribution", ["All"] + [d.value for d in Distribution], key="history_family")
    with col_h2:
        outcome = st.selectbox("Outcome", ["All", "Accepted", "Rejected"], key="history_outcome")
    history_filter = HistoryFilter(
        best_distribution=None if family == "All" else family,
        hypothesis_accepted=None if outcome == "All" else outcome == "Accepted",
    )
    entries = history_store(persist_history).query(history_filter)
    if entries:
        st.dataframe(pd.DataFrame([vars(e) for e in entries]), use_container_width=True, hide_index=True)
    else:
        st.caption("No analyses recorded yet.")

with st.expander("Log Viewer", expanded=False):
    level_name = st.selectbox("Minimum level", ["DEBUG", "INFO", "WARNING", "ERROR"], index=1)
    log_entries = log_handler.entries(logging.getLevelName(level_name))
    if log_entries:
        st.dataframe(pd.DataFrame(log_entries[::-1]), use_container_width=True, hide_index=True)
    else:
        st.caption("No log entries.")
    if st.button("Clear Logs"):
        log_handler.clear()
        st.rerun()
