import contextlib
import json
import logging
import shutil
import time
import numpy as np
import pandas as pd
from pathlib import Path
from typing import Any, Dict, Iterator


class NumpyEncoder(json.JSONEncoder):
    """Handles serialization of NumPy types to JSON."""
    def default(self, obj):
        if isinstance(obj, np.integer):
            return int(obj)
        elif isinstance(obj, np.floating):
            return float(obj)
        elif isinstance(obj, np.bool_):
            return bool(obj)
        elif isinstance(obj, (np.ndarray,)):
            return obj.tolist()
        return json.JSONEncoder.default(self, obj)


@contextlib.contextmanager
def file_lock(lock_file: Path, timeout: int = 60, poll_interval: float = 0.05):
    """
    A cross-platform file locking mechanism using a directory (atomic on most OS).
    Prevents interleaved lines when several writers append to the same journal.
    """
    lock_dir = Path(lock_file).parent / (Path(lock_file).name + ".lock")
    start_time = time.time()

    while True:
        try:
            lock_dir.mkdir(exist_ok=False)
            break
        except FileExistsError:
            if time.time() - start_time > timeout:
                logging.warning(f"Lock timeout expired for {lock_file}. Forcing release.")
                try:
                    shutil.rmtree(lock_dir)
                except OSError:
                    pass # Race condition on removal
            time.sleep(poll_interval)

    try:
        yield
    finally:
        try:
            shutil.rmtree(lock_dir)
        except OSError:
            pass


def append_jsonl(path: Path, record: Dict[str, Any]) -> None:
    """Append one JSON record as a line, holding the directory lock."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with file_lock(path):
        with open(path, 'a', encoding='utf-8') as f:
            f.write(json.dumps(record, cls=NumpyEncoder) + "\n")


def iter_jsonl(path: Path) -> Iterator[Dict[str, Any]]:
    """Stream records from a JSON Lines file, skipping blank lines."""
    with open(path, 'r', encoding='utf-8') as f:
        for line in f:
            if not line.strip():
                continue
            yield json.loads(line)


def save_dataframe(df: pd.DataFrame, path: Path, *, excel_copy: bool = False, index: bool = False) -> Path:
    """
    Save a DataFrame to Parquet for fast I/O with an optional Excel copy for human readability.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_parquet(path, index=index)

    if excel_copy:
        excel_path = path.with_suffix(".xlsx")
        df.to_excel(excel_path, index=index)

    return path


def read_dataframe(path: Path) -> pd.DataFrame:
    """
    Load a DataFrame from Parquet/Excel/CSV based on file extension.
    """
    path = Path(path)
    suffix = path.suffix.lower()

    if suffix == ".parquet":
        return pd.read_parquet(path)
    if suffix in {".xlsx", ".xls"}:
        return pd.read_excel(path)
    if suffix == ".csv":
        return pd.read_csv(path)

    raise ValueError(f"Unsupported file extension for reading: {suffix}")
