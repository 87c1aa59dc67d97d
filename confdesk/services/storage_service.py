"""
Document collections stored as JSON files.

Each collection is one file holding {"documents": [...]} under the data
directory. Writers hold an exclusive lock on a sidecar ".lock" file for the
whole read-modify-write, and every save goes through a temp file followed
by os.replace, so readers never see a half-written collection.
"""
import json
import logging
import os
import shutil
import sys
import tempfile
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, List, Optional

from confdesk.config import collection_path

if sys.platform != "win32":
    import fcntl

logger = logging.getLogger(__name__)

LOCK_POLL_INTERVAL = 0.05


def load_json(file_path: str, retry_count: int = 3, retry_delay: float = 0.1) -> Dict[str, Any]:
    """
    Parse a UTF-8 JSON file.

    A PermissionError (another process replacing the file on Windows) is
    retried `retry_count` times before giving up.

    Raises:
        FileNotFoundError, json.JSONDecodeError, PermissionError
    """
    if not os.path.exists(file_path):
        raise FileNotFoundError(f"File not found: {file_path}")

    last_error: Optional[PermissionError] = None
    for _ in range(retry_count):
        try:
            with open(file_path, "r", encoding="utf-8") as f:
                text = f.read()
        except PermissionError as e:
            last_error = e
            time.sleep(retry_delay)
            continue
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise json.JSONDecodeError(f"Malformed JSON in {file_path}: {e.msg}", e.doc, e.pos) from e

    raise PermissionError(f"Cannot read file after {retry_count} attempts: {file_path}") from last_error


def save_json(file_path: str, data: Dict[str, Any], backup: bool = True) -> None:
    """
    Write `data` as indented UTF-8 JSON, replacing the file atomically.

    With `backup`, the previous contents are kept as "<file>.backup".

    Raises:
        IOError: If the backup or the write fails
    """
    directory = os.path.dirname(file_path) or "."
    os.makedirs(directory, exist_ok=True)

    if backup and os.path.exists(file_path):
        try:
            shutil.copy2(file_path, f"{file_path}.backup")
        except OSError as e:
            raise IOError(f"Failed to create backup: {e}") from e

    fd, temp_path = tempfile.mkstemp(dir=directory, prefix=".tmp_", suffix=".json")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, file_path)
    except (OSError, TypeError, ValueError) as e:
        if os.path.exists(temp_path):
            os.remove(temp_path)
        raise IOError(f"Failed to write file {file_path}: {e}") from e


def _wait_for(acquire: Callable[[], bool], file_path: str, timeout: float) -> None:
    """Poll `acquire` until it returns True or the timeout passes."""
    deadline = time.monotonic() + timeout
    while not acquire():
        if time.monotonic() > deadline:
            raise TimeoutError(f"Could not acquire lock on {file_path} within {timeout}s")
        time.sleep(LOCK_POLL_INTERVAL)


@contextmanager
def _posix_lock(file_path: str, timeout: float):
    # The data file itself is replaced on every save; lock a stable sidecar.
    with open(f"{file_path}.lock", "a+") as handle:
        def _try_flock() -> bool:
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                return True
            except OSError:
                return False

        _wait_for(_try_flock, file_path, timeout)
        try:
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


@contextmanager
def _exclusive_create_lock(file_path: str, timeout: float):
    lock_path = f"{file_path}.lock"
    fds: List[int] = []

    def _try_create() -> bool:
        try:
            fds.append(os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_RDWR))
            return True
        except FileExistsError:
            return False

    _wait_for(_try_create, file_path, timeout)
    try:
        yield
    finally:
        os.close(fds[0])
        try:
            os.remove(lock_path)
        except OSError:
            logger.warning(f"Could not remove lock file {lock_path}")


@contextmanager
def lock_file(file_path: str, timeout: float = 5.0):
    """
    Hold an exclusive lock on a collection file.

    Usage:
        with lock_file(path):
            data = load_json(path)
            data["documents"].append(document)
            save_json(path, data)

    Raises:
        FileNotFoundError: If the file does not exist
        TimeoutError: If the lock is not acquired within `timeout` seconds
    """
    if not os.path.exists(file_path):
        raise FileNotFoundError(f"Cannot lock non-existent file: {file_path}")

    lock = _exclusive_create_lock if sys.platform == "win32" else _posix_lock
    with lock(file_path, timeout):
        yield


def ensure_collection(name: str) -> str:
    """Create an empty collection file if missing; return its path."""
    path = collection_path(name)
    if not os.path.exists(path):
        save_json(path, {"documents": []}, backup=False)
    return path


def read_collection(name: str) -> List[Dict[str, Any]]:
    """Return every document in a collection (empty list if none stored yet)."""
    path = collection_path(name)
    if not os.path.exists(path):
        return []
    return load_json(path).get("documents", [])


def find_documents(name: str, **filters: Any) -> List[Dict[str, Any]]:
    """Return documents whose top-level fields equal all given filters."""
    return [
        doc for doc in read_collection(name)
        if all(doc.get(key) == value for key, value in filters.items())
    ]


def find_one(name: str, key: str, value: Any) -> Optional[Dict[str, Any]]:
    """Return the first document with doc[key] == value, or None."""
    for doc in read_collection(name):
        if doc.get(key) == value:
            return doc
    return None


def insert_document(
    name: str,
    build: Callable[[List[Dict[str, Any]]], Dict[str, Any]]
) -> Dict[str, Any]:
    """
    Append a document built from the current collection state.

    Args:
        name: Collection name
        build: Called under the lock with the existing documents; returns the
            new document or raises to abort the insert (nothing is written)

    Returns:
        The inserted document
    """
    path = ensure_collection(name)
    with lock_file(path):
        data = load_json(path)
        documents = data.setdefault("documents", [])
        document = build(documents)
        documents.append(document)
        save_json(path, data, backup=True)
    return document


def update_document(
    name: str,
    key: str,
    value: Any,
    mutate: Callable[[Dict[str, Any]], None]
) -> Optional[Dict[str, Any]]:
    """
    Read-modify-write a single document under the collection lock.

    Args:
        name: Collection name
        key: Field used to locate the document
        value: Expected field value
        mutate: Modifies the document in place; raising aborts the write

    Returns:
        The updated document, or None if not found
    """
    path = ensure_collection(name)
    with lock_file(path):
        data = load_json(path)
        for document in data.get("documents", []):
            if document.get(key) == value:
                mutate(document)
                save_json(path, data, backup=True)
                return document
    return None


def upsert_document(name: str, key: str, value: Any, document: Dict[str, Any]) -> Dict[str, Any]:
    """Replace the document with doc[key] == value, or append it."""
    path = ensure_collection(name)
    stored = {**document, key: value}
    with lock_file(path):
        data = load_json(path)
        documents = data.setdefault("documents", [])
        for index, existing in enumerate(documents):
            if existing.get(key) == value:
                documents[index] = stored
                break
        else:
            documents.append(stored)
        save_json(path, data, backup=True)
    return stored


def next_sequence_id(documents: List[Dict[str, Any]], field: str, prefix: str, width: int = 4) -> str:
    """
    Generate the next sequential ID such as REG-0007.

    Finds the highest numeric suffix among existing IDs with the prefix and
    adds one; malformed IDs are ignored.
    """
    max_id = 0
    for document in documents:
        existing = str(document.get(field, ""))
        if existing.startswith(f"{prefix}-"):
            try:
                max_id = max(max_id, int(existing.split("-")[1]))
            except (IndexError, ValueError):
                pass
    return f"{prefix}-{max_id + 1:0{width}d}"
