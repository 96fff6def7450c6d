"""
Report generation: results tables as CSV, a formatted Excel workbook and a PDF summary.
"""

import math
from datetime import datetime
from io import BytesIO

import matplotlib

matplotlib.use('Agg')

import matplotlib.pyplot as plt
import pandas as pd
from matplotlib.backends.backend_pdf import PdfPages

try:
    from openpyxl import Workbook
    from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
    from openpyxl.utils import get_column_letter
    OPENPYXL_AVAILABLE = True
except ImportError:
    OPENPYXL_AVAILABLE = False

from defectfit.charts import frequency_plot
from defectfit.distributions import Distribution, format_params
from defectfit.errors import ExportError
from defectfit.logging import get_logger

log = get_logger(__name__, component="export")


def _display(value, digits=4):
    if value is None:
        return 'N/A'
    if isinstance(value, float) and not math.isfinite(value):
        return 'N/A'
    return round(value, digits) if isinstance(value, float) else value


def results_frame(result):
    """One row per family with its parameters and test outcome."""
    rows = []
    for distribution in Distribution:
        res = result.results[distribution]
        fit = result.fits[distribution]
        rows.append({
            'Distribution': distribution.label,
            'Parameters': format_params(distribution, fit.parameters),
            'Fitted': fit.is_fitted,
            'Chi-square': _display(res.chi_square),
            'Valid bins': res.valid_bins,
            'df': res.degrees_of_freedom if res.is_testable else 'N/A',
            'Critical value': _display(res.critical_value),
            'p-value': _display(res.p_value, 6),
            'Accepted': 'Yes' if res.is_accepted else 'No',
            'Best': distribution is result.best_distribution,
            'Note': res.reason or '',
        })
    return pd.DataFrame(rows)


def frequency_frame(result):
    """Observed and expected counts per bin."""
    table = result.table
    data = {'Bin': list(table.bin_labels), 'Observed': list(table.observed)}
    for distribution in Distribution:
        data[f'Expected {distribution.label}'] = [round(v, 4) for v in table.expected[distribution]]
    return pd.DataFrame(data)


def statistics_frame(result):
    stats = result.statistics
    variance_low, variance_high = stats.variance_ci
    rows = [
        ('Records', result.n_records),
        ('Records analysed', result.n_filtered),
        ('Outliers removed', result.outliers_removed),
        ('Outlier upper bound', _display(result.outlier_upper_bound)),
        ('Mean defects', _display(stats.mean)),
        ('Variance', _display(stats.variance)),
        ('Std deviation', _display(stats.std_dev)),
        ('Defect rate', _display(stats.defect_rate, 6)),
        ('Total items', stats.total_items),
        ('Mean 95% CI', f"[{stats.mean_ci[0]:.4f}, {stats.mean_ci[1]:.4f}]"),
        ('Variance 95% CI', 'N/A' if variance_low is None else f"[{variance_low:.4f}, {variance_high:.4f}]"),
        ('Overdispersion', 'Yes' if stats.has_overdispersion else 'No'),
        ('Significance level', result.significance_level),
        ('Best distribution', result.best_distribution.label),
        ('Hypothesis accepted', 'Yes' if result.hypothesis_accepted else 'No'),
    ]
    return pd.DataFrame(rows, columns=['Statistic', 'Value'])


def to_csv_bytes(result):
    """Results table as UTF-8 CSV."""
    return results_frame(result).to_csv(index=False).encode('utf-8')


def to_excel_bytes(records, result):
    """
    Create an Excel workbook with report, data and frequency sheets.

    Parameters:
    -----------
    records : list of BatchRecord
        Records the analysis was run on
    result : AnalysisResult
        Completed analysis

    Returns:
    --------
    bytes : Excel file as bytes for download

    Raises:
    -------
    ExportError
        When openpyxl is unavailable or the workbook cannot be written
    """
    if not OPENPYXL_AVAILABLE:
        raise ExportError("Excel export requires 'openpyxl'. Install with: pip install openpyxl")

    header_fill = PatternFill(start_color="1f77b4", end_color="1f77b4", fill_type="solid")
    header_font = Font(bold=True, color="FFFFFF", size=12)
    title_font = Font(bold=True, size=14, color="1f77b4")
    accepted_fill = PatternFill(start_color="C6EFCE", end_color="C6EFCE", fill_type="solid")
    rejected_fill = PatternFill(start_color="FFC7CE", end_color="FFC7CE", fill_type="solid")
    border_thin = Border(left=Side(style='thin'), right=Side(style='thin'),
                         top=Side(style='thin'), bottom=Side(style='thin'))

    def write_table(sheet, frame, start_row):
        for col_idx, header in enumerate(frame.columns, start=1):
            cell = sheet.cell(row=start_row, column=col_idx, value=str(header))
            cell.fill = header_fill
            cell.font = header_font
            cell.border = border_thin
            cell.alignment = Alignment(horizontal='center', vertical='center')
        for row_offset, values in enumerate(frame.itertuples(index=False), start=1):
            for col_idx, value in enumerate(values, start=1):
                if hasattr(value, 'item'):
                    value = value.item()
                cell = sheet.cell(row=start_row + row_offset, column=col_idx, value=value)
                cell.border = border_thin
        for col_idx, header in enumerate(frame.columns, start=1):
            width = max([len(str(header))] + [len(str(v)) for v in frame.iloc[:, col_idx - 1]])
            sheet.column_dimensions[get_column_letter(col_idx)].width = min(width + 2, 60)
        return start_row + len(frame) + 1

    try:
        wb = Workbook()
        report_sheet = wb.active
        report_sheet.title = "Report"

        report_sheet.merge_cells('A1:E1')
        report_sheet['A1'] = "DefectFit - Defect Distribution Report"
        report_sheet['A1'].font = title_font
        report_sheet['A2'] = f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}"
        report_sheet['A2'].font = Font(size=10, italic=True)

        row = write_table(report_sheet, statistics_frame(result), 4) + 1
        results = results_frame(result)
        results_start = row
        write_table(report_sheet, results, results_start)
        accepted_col = list(results.columns).index('Accepted') + 1
        for offset, accepted in enumerate(results['Accepted'], start=1):
            cell = report_sheet.cell(row=results_start + offset, column=accepted_col)
            cell.fill = accepted_fill if accepted == 'Yes' else rejected_fill

        data_sheet = wb.create_sheet("Data")
        data = pd.DataFrame({
            'batch': range(1, len(records) + 1),
            'total': [r.total for r in records],
            'defects': [r.defects for r in records],
        })
        write_table(data_sheet, data, 1)

        freq_sheet = wb.create_sheet("Frequencies")
        write_table(freq_sheet, frequency_frame(result), 1)

        output = BytesIO()
        wb.save(output)
    except (OSError, ValueError, TypeError) as exc:
        raise ExportError(f"Could not create Excel report: {exc}") from exc

    log.info("Excel report created", extra={"size_bytes": output.tell(), "n_samples": len(records)})
    return output.getvalue()


def _table_page(pdf, frame, title):
    fig, ax = plt.subplots(figsize=(11.69, 8.27))
    ax.axis('off')
    ax.set_title(title, fontsize=14, fontweight='bold')
    table = ax.table(cellText=frame.astype(str).values, colLabels=list(frame.columns), loc='center')
    table.auto_set_font_size(False)
    table.set_fontsize(8)
    table.scale(1, 1.4)
    pdf.savefig(fig)
    plt.close(fig)


def to_pdf_bytes(result):
    """
    Render a PDF report: summary statistics, test results and the frequency chart.

    Raises:
    -------
    ExportError
        When the document cannot be rendered
    """
    output = BytesIO()
    try:
        with PdfPages(output) as pdf:
            _table_page(pdf, statistics_frame(result), 'DefectFit - Summary')
            _table_page(pdf, results_frame(result).drop(columns=['Note']), 'Chi-square Test Results')
            fig = frequency_plot(result)
            pdf.savefig(fig)
            plt.close(fig)
    except (OSError, ValueError, RuntimeError) as exc:
        raise ExportError(f"Could not create PDF report: {exc}") from exc

    log.info("PDF report created", extra={"size_bytes": output.tell()})
    return output.getvalue()
