"""
CSV Time-Series Reader

Reads ``bin_index,value`` (model sources) or ``t,value`` (run series)
files into a dense list of floats. Bins absent from the file, including
everything past EOF, read as NaN.
"""

from __future__ import annotations
import csv
import math
import os
from typing import List

from flowstate.core.exceptions import CsvFormatError

ACCEPTED_HEADERS = ("bin_index,value", "t,value")


def read_time_series(file_path: str, total_bins: int) -> List[float]:
    """
    Read a time series aligned to ``total_bins``.

    Raises:
        FileNotFoundError: the file does not exist.
        CsvFormatError: malformed header/row, out-of-range or duplicate index.
    """
    if total_bins <= 0:
        raise ValueError(f"total_bins must be positive (got {total_bins})")

    if not os.path.isfile(file_path):
        raise FileNotFoundError(f"CSV file not found: {file_path}")

    values = [math.nan] * total_bins
    populated = [False] * total_bins

    with open(file_path, "r", encoding="utf-8", newline="") as f:
        reader = csv.reader(f)
        header = next(reader, None)
        if header is None:
            raise CsvFormatError(f"CSV file {file_path} is empty")

        normalized_header = ",".join(cell.strip().lower() for cell in header)
        if normalized_header not in ACCEPTED_HEADERS:
            raise CsvFormatError(
                f"Invalid CSV header in {file_path}. Expected one of: {', '.join(ACCEPTED_HEADERS)}."
            )

        for row in reader:
            if not row or all(not cell.strip() for cell in row):
                continue
            if len(row) != 2:
                raise CsvFormatError(f"Invalid CSV row '{','.join(row)}' in {file_path}.")

            try:
                bin_index = int(row[0].strip())
            except ValueError:
                raise CsvFormatError(f"Invalid bin_index '{row[0]}' in {file_path}.")

            if bin_index < 0 or bin_index >= total_bins:
                raise CsvFormatError(
                    f"Bin index {bin_index} out of range for {file_path} (expected 0..{total_bins - 1})."
                )
            if populated[bin_index]:
                raise CsvFormatError(f"Duplicate bin_index {bin_index} in {file_path}.")

            raw = row[1].strip()
            if raw and raw.lower() != "nan":
                try:
                    values[bin_index] = float(raw.replace("_", ""))
                except ValueError:
                    raise CsvFormatError(f"Invalid numeric value '{raw}' in {file_path}.")
            populated[bin_index] = True

    return values
