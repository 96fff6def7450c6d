"""
Loading batch records from files, pasted text and the built-in example set.
"""

import re

import numpy as np
import pandas as pd

from defectfit.errors import DataSourceError, InvalidRecordError
from defectfit.logging import get_logger
from defectfit.pipeline import BatchRecord, validate_records

log = get_logger(__name__, component="io")

SUPPORTED_EXTENSIONS = ['csv', 'txt', 'xlsx', 'xls', 'json', 'parquet']
TOTAL_ALIASES = ('total', 'details_in_party', 'items', 'batch_size', 'parts')
DEFECT_ALIASES = ('defects', 'defects_in_party', 'defective', 'rejects')


def read_table(uploaded_file, filename=None):
    """
    Read an uploaded file in one of the supported formats into a DataFrame.

    Parameters:
    -----------
    uploaded_file : file-like or path
        Source to read
    filename : str, optional
        Name used to pick the reader; defaults to ``uploaded_file.name``

    Returns:
    --------
    pandas DataFrame

    Raises:
    -------
    DataSourceError
        On unsupported formats, missing optional readers or parse failures
    """
    filename = filename or getattr(uploaded_file, 'name', None) or str(uploaded_file)
    file_extension = filename.lower().rsplit('.', 1)[-1]
    if hasattr(uploaded_file, 'seek'):
        uploaded_file.seek(0)

    try:
        if file_extension == 'csv':
            df = pd.read_csv(uploaded_file)
        elif file_extension == 'txt':
            df = pd.read_csv(uploaded_file, sep=None, engine='python')
        elif file_extension in ['xlsx', 'xls']:
            df = pd.read_excel(uploaded_file)
        elif file_extension == 'json':
            df = pd.read_json(uploaded_file)
        elif file_extension == 'parquet':
            df = pd.read_parquet(uploaded_file)
        else:
            raise DataSourceError(f"Unsupported file format: .{file_extension}")
    except DataSourceError:
        raise
    except ImportError as exc:
        raise DataSourceError(f"Reading .{file_extension} files needs an optional dependency: {exc}") from exc
    except (ValueError, OSError, pd.errors.ParserError) as exc:
        raise DataSourceError(f"Error reading file: {exc}") from exc

    log.info("File read", extra={"file_name": filename, "rows": len(df), "columns": list(map(str, df.columns))})
    return df


def _find_column(columns, aliases):
    normalised = {str(c).strip().lower().replace(' ', '_'): c for c in columns}
    for alias in aliases:
        if alias in normalised:
            return normalised[alias]
    return None


def detect_columns(df):
    """
    Find the batch-size and defect-count columns of a table.

    Named columns are matched first. Otherwise columns are taken by position:
    with three or more columns the first is a batch number and is skipped.
    """
    total_col = _find_column(df.columns, TOTAL_ALIASES)
    defects_col = _find_column(df.columns, DEFECT_ALIASES)
    if total_col is not None and defects_col is not None:
        return total_col, defects_col

    columns = list(df.columns)
    if len(columns) >= 3:
        return columns[1], columns[2]
    if len(columns) == 2:
        return columns[0], columns[1]
    raise DataSourceError(
        "Could not find batch size and defect columns; expected 'total' and 'defects' "
        "or at least two numeric columns"
    )


def records_from_frame(df):
    """Convert a DataFrame into validated BatchRecord objects."""
    total_col, defects_col = detect_columns(df)
    frame = df[[total_col, defects_col]].dropna(how='all')
    if frame.empty:
        raise DataSourceError("The file contains no batch rows")

    totals = pd.to_numeric(frame[total_col], errors='coerce')
    defects = pd.to_numeric(frame[defects_col], errors='coerce')
    raw = [{'total': float(t), 'defects': float(d)} for t, d in zip(totals, defects)]
    try:
        records = validate_records(raw)
    except InvalidRecordError as exc:
        raise DataSourceError(f"Invalid data in file: {exc}") from exc

    log.info(
        "Records imported",
        extra={"n_samples": len(records), "total_column": str(total_col), "defects_column": str(defects_col)},
    )
    return records


def read_batch_file(uploaded_file, filename=None):
    return records_from_frame(read_table(uploaded_file, filename))


def parse_pasted_records(text_input):
    """
    Parse records pasted as text, one batch per line.

    Each line holds ``total, defects`` or ``batch, total, defects`` separated by
    commas, semicolons, tabs or spaces. Lines without numbers (headers) are skipped.
    """
    raw = []
    for line in text_input.strip().splitlines():
        items = [item for item in re.split(r'[,;\s]+', line.strip()) if item]
        try:
            values = [float(item) for item in items]
        except ValueError:
            continue
        if len(values) < 2:
            continue
        total, defects = values[-2], values[-1]
        raw.append({'total': total, 'defects': defects})

    if not raw:
        raise DataSourceError("No batch rows found in the pasted text")
    try:
        return validate_records(raw)
    except InvalidRecordError as exc:
        raise DataSourceError(f"Invalid pasted data: {exc}") from exc


def example_records(n_batches=60, seed=42, batch_size=100, overdispersed=False):
    """
    Generate a reproducible example dataset.

    The default set is Binomial(batch_size, 0.05) per batch (mean 5); with
    ``overdispersed`` the counts are Negative Binomial with mean 5, variance 15.
    """
    rng = np.random.default_rng(seed)
    if overdispersed:
        defects = rng.negative_binomial(2.5, 1 / 3, size=n_batches)
    else:
        defects = rng.binomial(batch_size, 0.05, size=n_batches)
    defects = np.minimum(defects, batch_size)
    return [BatchRecord(total=batch_size, defects=int(d)) for d in defects]


def records_to_frame(records):
    return pd.DataFrame(
        {
            'batch': np.arange(1, len(records) + 1),
            'total': [r.total for r in records],
            'defects': [r.defects for r in records],
        }
    )
