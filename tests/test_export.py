from __future__ import annotations

from io import BytesIO

import pandas as pd
import pytest
from openpyxl import load_workbook

from defectfit.distributions import Distribution
from defectfit.export import frequency_frame, results_frame, to_csv_bytes, to_excel_bytes, to_pdf_bytes
from defectfit.pipeline import BatchRecord, run_analysis


@pytest.fixture
def degenerate_result():
    return run_analysis([BatchRecord(total=10, defects=0)] * 30)


def test_results_frame_marks_undefined_values(degenerate_result):
    frame = results_frame(degenerate_result)
    assert list(frame['Distribution']) == [d.label for d in Distribution]
    assert set(frame['Chi-square']) == {'N/A'}
    assert set(frame['Critical value']) == {'N/A'}
    assert set(frame['df']) == {'N/A'}
    assert set(frame['Accepted']) == {'No'}
    assert all(note.startswith("degenerate fit") for note in frame['Note'])


def test_results_frame_for_fitted_data(clean_poisson_records, keep_all):
    result = run_analysis(clean_poisson_records, keep_all)
    frame = results_frame(result).set_index('Distribution')
    poisson = frame.loc['Poisson']
    assert poisson['Accepted'] == 'Yes'
    assert isinstance(poisson['Chi-square'], float)
    assert frame['Best'].sum() == 1


def test_frequency_frame_matches_table(clean_poisson_records, keep_all):
    result = run_analysis(clean_poisson_records, keep_all)
    frame = frequency_frame(result)
    assert list(frame['Bin']) == list(result.bin_labels)
    assert frame['Observed'].sum() == result.n_filtered
    assert 'Expected Negative Binomial' in frame.columns


def test_csv_export(degenerate_result):
    frame = pd.read_csv(BytesIO(to_csv_bytes(degenerate_result)), keep_default_na=False)
    assert len(frame) == 3
    assert frame['Chi-square'].tolist() == ['N/A'] * 3


def test_excel_export(clean_poisson_records, keep_all):
    result = run_analysis(clean_poisson_records, keep_all)
    workbook = load_workbook(BytesIO(to_excel_bytes(clean_poisson_records, result)))
    assert workbook.sheetnames == ["Report", "Data", "Frequencies"]
    data = workbook["Data"]
    assert data.max_row == len(clean_poisson_records) + 1
    assert [c.value for c in data[1]] == ["batch", "total", "defects"]


def test_pdf_export(degenerate_result):
    content = to_pdf_bytes(degenerate_result)
    assert content.startswith(b"%PDF")
