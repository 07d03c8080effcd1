"""
Data Loader Module
==================

Handles configuration, dataset acquisition and basic data quality checks.

Functions:
    - load_config: Load YAML configuration file
    - download_archive: Fetch the dataset archive with timeout and retries
    - extract_archive: Expand a zip archive into a directory
    - find_data_file: Pick the first spreadsheet (else CSV) in a directory
    - read_table: Read a spreadsheet or CSV into a DataFrame
    - validate_schema: Early check of the loaded table's columns
    - load_dataset: Full acquisition sequence driven by the configuration
    - get_data_summary: Generate basic statistics
"""

import os
import logging
import zipfile
from pathlib import Path
from typing import Dict, Any, Optional, List, Iterable

import pandas as pd
import numpy as np
import yaml
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .exceptions import AcquisitionError, NoDataFileError, SchemaError

logger = logging.getLogger(__name__)

DEFAULT_URL = "https://www.data.bsee.gov/GGStudies/Files/2020%20Atlas%20Update.zip"
SPREADSHEET_SUFFIXES = ('.xlsx', '.xls')
CSV_SUFFIXES = ('.csv',)


def load_config(config_path: str = "config/config.yaml") -> Dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to the configuration file

    Returns:
        Dictionary containing configuration parameters

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is malformed
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}

    logger.info(f"Loaded configuration from {config_path}")
    return config


def _build_session(retries: int, backoff_factor: float) -> requests.Session:
    """Create a session that retries transient failures."""
    retry = Retry(
        total=retries,
        backoff_factor=backoff_factor,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=("GET",)
    )
    session = requests.Session()
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def download_archive(
    url: str,
    dest: str,
    timeout: float = 60.0,
    retries: int = 3,
    backoff_factor: float = 1.0,
    force: bool = False,
    chunk_size: int = 1 << 16
) -> Path:
    """
    Download the dataset archive to disk.

    An existing file at ``dest`` is reused unless ``force`` is set. The
    body is streamed into ``<dest>.part`` and renamed to ``dest`` only once
    complete.

    Args:
        url: Archive URL
        dest: Local path for the downloaded file
        timeout: Per-request timeout in seconds
        retries: Number of retries for transient failures
        backoff_factor: Exponential backoff factor between retries
        force: Re-download even if ``dest`` exists
        chunk_size: Streaming chunk size in bytes

    Returns:
        Path to the downloaded archive

    Raises:
        AcquisitionError: On any network, HTTP or write failure
    """
    dest = Path(dest)

    if dest.exists() and not force:
        logger.info(f"Archive already present at {dest}, skipping download")
        return dest

    dest.parent.mkdir(parents=True, exist_ok=True)
    partial = dest.with_name(dest.name + '.part')
    logger.info(f"Downloading {url} -> {dest}")

    session = _build_session(retries, backoff_factor)
    try:
        with session.get(url, timeout=timeout, stream=True) as response:
            response.raise_for_status()
            with open(partial, 'wb') as f:
                for chunk in response.iter_content(chunk_size=chunk_size):
                    if chunk:
                        f.write(chunk)
        partial.replace(dest)
    except (requests.RequestException, OSError) as e:
        raise AcquisitionError(f"Failed to download {url}: {e}") from e
    finally:
        session.close()
        if partial.exists():
            partial.unlink()

    logger.info(f"Downloaded {dest.stat().st_size / 1024:.1f} KB")
    return dest


def extract_archive(archive_path: str, extract_dir: str) -> List[str]:
    """
    Expand a zip archive.

    Args:
        archive_path: Path to the zip file
        extract_dir: Directory to extract into

    Returns:
        Relative paths of the extracted files

    Raises:
        AcquisitionError: If the archive is missing or corrupt
    """
    archive_path = Path(archive_path)
    extract_dir = Path(extract_dir)

    try:
        with zipfile.ZipFile(archive_path) as zf:
            zf.extractall(extract_dir)
    except (zipfile.BadZipFile, FileNotFoundError) as e:
        raise AcquisitionError(f"Cannot extract {archive_path}: {e}") from e

    files = _list_files(extract_dir)
    logger.info(f"Extracted {len(files)} files to {extract_dir}")
    for name in files:
        logger.debug(f"  {name}")

    return files


def _list_files(directory: Path) -> List[str]:
    return sorted(
        p.relative_to(directory).as_posix()
        for p in directory.rglob('*')
        if p.is_file()
    )


def _first_with_suffix(files: Iterable[str], suffixes: tuple) -> Optional[str]:
    for name in files:
        if name.lower().endswith(suffixes):
            return name
    return None


def find_data_file(directory: str) -> Path:
    """
    Select the data file inside an extracted archive.

    The first spreadsheet wins; otherwise the first CSV.

    Args:
        directory: Directory to search recursively

    Returns:
        Path to the selected file

    Raises:
        NoDataFileError: If no spreadsheet or CSV exists
    """
    directory = Path(directory)
    files = _list_files(directory) if directory.exists() else []

    chosen = _first_with_suffix(files, SPREADSHEET_SUFFIXES)
    if chosen is None:
        chosen = _first_with_suffix(files, CSV_SUFFIXES)
    if chosen is None:
        raise NoDataFileError(f"No spreadsheet or CSV file found in {directory}")

    logger.info(f"Selected data file: {chosen}")
    return directory / chosen


def read_table(file_path: str) -> pd.DataFrame:
    """
    Read a spreadsheet (first sheet) or CSV file.

    Args:
        file_path: Path to the data file

    Returns:
        DataFrame containing the loaded data

    Raises:
        FileNotFoundError: If data file doesn't exist
        NoDataFileError: If the file type is not supported
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"Data file not found: {file_path}")

    suffix = file_path.suffix.lower()
    if suffix in SPREADSHEET_SUFFIXES:
        df = pd.read_excel(file_path, sheet_name=0)
    elif suffix in CSV_SUFFIXES:
        df = pd.read_csv(file_path)
    else:
        raise NoDataFileError(f"Unsupported data file type: {file_path.name}")

    logger.info(f"Loaded data from {file_path}: {df.shape[0]} rows × {df.shape[1]} columns")
    return df


def validate_schema(
    df: pd.DataFrame,
    target: str,
    parameters: Iterable[str]
) -> List[str]:
    """
    Check the loaded table right after file selection.

    Args:
        df: Raw DataFrame
        target: Mandatory target column
        parameters: Named parameter columns expected in the table

    Returns:
        Names of the expected parameters that are absent

    Raises:
        SchemaError: If the target column is missing
    """
    if target not in df.columns:
        raise SchemaError(
            f"Target column '{target}' not found in loaded table. "
            f"Columns: {list(df.columns)}",
            stage="loading"
        )

    missing = [p for p in parameters if p not in df.columns]
    for name in missing:
        logger.warning(f"Expected parameter column '{name}' not found in loaded table")

    return missing


def load_dataset(
    config: Dict[str, Any],
    data_path: Optional[str] = None,
    target: str = "ORF",
    parameters: Iterable[str] = ()
) -> pd.DataFrame:
    """
    Obtain the raw dataset.

    Reads ``data_path`` directly when given, otherwise downloads and
    extracts the configured archive and reads the selected file.

    Args:
        config: Configuration dictionary
        data_path: Optional local CSV/spreadsheet path
        target: Mandatory target column
        parameters: Named parameter columns expected in the table

    Returns:
        Raw DataFrame
    """
    data_config = config.get('data', {})

    if data_path is None:
        archive = download_archive(
            data_config.get('url', DEFAULT_URL),
            data_config.get('download_path', 'data/raw/2020_Atlas_Update.zip'),
            timeout=data_config.get('timeout', 60.0),
            retries=data_config.get('retries', 3),
            backoff_factor=data_config.get('backoff_factor', 1.0)
        )
        extract_dir = data_config.get('extract_dir', 'data/raw/2020_Atlas_Update')
        extract_archive(archive, extract_dir)
        data_path = find_data_file(extract_dir)

    df = read_table(data_path)
    validate_schema(df, target, parameters)
    return df


def get_data_summary(df: pd.DataFrame) -> Dict[str, Any]:
    """
    Generate summary statistics for the dataset.

    Args:
        df: DataFrame to summarize

    Returns:
        Dictionary containing summary statistics
    """
    summary = {
        "shape": df.shape,
        "columns": list(df.columns),
        "dtypes": df.dtypes.astype(str).to_dict(),
        "missing_values": int(df.isnull().sum().sum()),
        "statistics": {}
    }

    for col in df.select_dtypes(include=[np.number]).columns:
        summary["statistics"][col] = {
            "count": int(df[col].count()),
            "mean": float(df[col].mean()),
            "std": float(df[col].std()),
            "min": float(df[col].min()),
            "50%": float(df[col].quantile(0.50)),
            "max": float(df[col].max())
        }

    return summary


def print_data_summary(df: pd.DataFrame) -> None:
    """
    Print a formatted summary of the dataset to console.

    Args:
        df: DataFrame to summarize
    """
    print("\n" + "=" * 60)
    print("DATASET SUMMARY")
    print("=" * 60)
    print(f"Shape: {df.shape[0]} rows × {df.shape[1]} columns")
    print(f"Memory Usage: {df.memory_usage(deep=True).sum() / 1024:.2f} KB")
    print("\nColumn Information:")
    print("-" * 40)

    for col in df.columns:
        dtype = df[col].dtype
        non_null = df[col].count()
        null_pct = (1 - non_null / len(df)) * 100 if len(df) else 0.0
        print(f"  {col}: {dtype} | {non_null} non-null ({null_pct:.1f}% missing)")

    print("=" * 60 + "\n")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)

    try:
        config = load_config()
    except FileNotFoundError as e:
        print(f"Config not found: {e}")
        config = {}

    data_path = "data/raw/dataset.csv"
    if os.path.exists(data_path):
        df = load_dataset(config, data_path=data_path)
        print_data_summary(df)
    else:
        print(f"No data file found at {data_path}")
