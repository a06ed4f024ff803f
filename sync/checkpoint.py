# sync/checkpoint.py

import json
import os
import tempfile
from typing import Iterable, Optional, Set

from utils.csv_utils import ensure_dir_for_file
from utils.logger import get_logger

logger = get_logger("checkpoint")


def load_checkpoint(path: Optional[str]) -> Set[str]:
    """
    Reads the processed-id set. A missing, unreadable or malformed file is
    not an error: the run starts from an empty set.
    """
    if not path:
        return set()
    if not os.path.exists(path):
        logger.info(f"No checkpoint at {path}, starting fresh.")
        return set()
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning(f"⚠️ Could not read checkpoint {path} ({e}). Starting with an empty set.")
        return set()
    if not isinstance(data, list):
        logger.warning(f"⚠️ Checkpoint {path} is not a JSON array. Starting with an empty set.")
        return set()
    processed = {str(item) for item in data}
    logger.info(f"📌 Loaded {len(processed)} processed ids from {path}.")
    return processed


def save_checkpoint(path: Optional[str], processed: Iterable[str]) -> None:
    """Overwrites the checkpoint with the full set (sorted, indented JSON)."""
    if not path:
        return
    ensure_dir_for_file(path)
    directory = os.path.dirname(os.path.abspath(path))
    fd, tmp_path = tempfile.mkstemp(prefix=".checkpoint-", suffix=".json", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(sorted(processed), f, indent=2)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise
