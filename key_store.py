"""
Key Store

Persists homomorphic encryption key material, one record per key half.

Backends:
- Filesystem storage with owner-only permissions (default)
- OS-native secure storage (keyring)
- In-memory storage, never persisted (tests, short-lived processes)

Every backend offers the same capability: exists / read / write, plus a
per-handle lock that serializes key generation for the same handle.
"""

import json
import logging
import os
import secrets
import stat
import tempfile
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator

import keyring
from keyring.errors import KeyringError

import phe_config
from phe_errors import ConfigurationError

log = logging.getLogger(__name__)

KEY_RECORD_VERSION = 1

PUBLIC_KIND = "public"
PRIVATE_KIND = "private"


@dataclass(frozen=True)
class KeyRecord:
    """Versioned, scheme-tagged set of named integer fields."""
    scheme: str
    kind: str
    fields: Dict[str, int] = field(default_factory=dict)
    version: int = KEY_RECORD_VERSION

    def to_json(self) -> str:
        return json.dumps({
            'version': self.version,
            'scheme': self.scheme,
            'kind': self.kind,
            'fields': {name: str(value) for name, value in self.fields.items()},
        }, sort_keys=True)

    @classmethod
    def from_json(cls, data: str) -> "KeyRecord":
        try:
            raw = json.loads(data)
            version = int(raw['version'])
            if version != KEY_RECORD_VERSION:
                raise ConfigurationError(f"Unsupported key record version: {version}")
            return cls(
                scheme=str(raw['scheme']),
                kind=str(raw['kind']),
                fields={name: int(value) for name, value in raw['fields'].items()},
                version=version,
            )
        except ConfigurationError:
            raise
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise ConfigurationError(f"Invalid key record: {e}") from e

    def require(self, scheme: str, kind: str, *names: str) -> Dict[str, int]:
        """Check the record belongs to scheme/kind and holds the given fields."""
        if self.scheme != scheme or self.kind != kind:
            raise ConfigurationError(
                f"Expected {scheme} {kind} key, found {self.scheme} {self.kind} key")
        missing = [name for name in names if name not in self.fields]
        if missing:
            raise ConfigurationError(f"{scheme} {kind} key is missing fields: {', '.join(missing)}")
        return self.fields


class KeyStore:
    """Base class for key storage backends."""

    def __init__(self):
        self._locks_guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def exists(self, handle: str) -> bool:
        raise NotImplementedError

    def read(self, handle: str) -> KeyRecord:
        raise NotImplementedError

    def write(self, handle: str, record: KeyRecord) -> None:
        raise NotImplementedError

    def _thread_lock_for(self, handle: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(handle)
            if lock is None:
                lock = threading.Lock()
                self._locks[handle] = lock
            return lock

    @contextmanager
    def lock(self, handle: str) -> Iterator[None]:
        """Serialize provisioning of handle within this process."""
        with self._thread_lock_for(handle):
            yield


class InMemoryKeyStore(KeyStore):
    """Keys live in a dictionary and are never persisted."""

    def __init__(self):
        super().__init__()
        self._records: Dict[str, str] = {}
        self._records_lock = threading.Lock()

    def exists(self, handle: str) -> bool:
        with self._records_lock:
            return handle in self._records

    def read(self, handle: str) -> KeyRecord:
        with self._records_lock:
            data = self._records.get(handle)
        if data is None:
            raise ConfigurationError(f"Key {handle} not found in memory")
        log.debug(f"Key {handle} retrieved from memory")
        return KeyRecord.from_json(data)

    def write(self, handle: str, record: KeyRecord) -> None:
        with self._records_lock:
            self._records[handle] = record.to_json()
        log.info(f"Key {handle} stored in memory only (not persisted)")


class FileKeyStore(KeyStore):
    """
    Keys are JSON files at their handle path.

    Parent directories are created with mode 0700 and key files written
    atomically with mode 0600. Provisioning across processes is serialized by
    a `<handle>.lock` file created with O_CREAT | O_EXCL.
    """

    def __init__(self, lock_timeout: float = None, stale_lock_seconds: float = None):
        super().__init__()
        self.lock_timeout = phe_config.KEY_LOCK_TIMEOUT if lock_timeout is None else lock_timeout
        self.stale_lock_seconds = (phe_config.KEY_LOCK_STALE_SECONDS
                                   if stale_lock_seconds is None else stale_lock_seconds)

    def _ensure_parent(self, path: Path) -> None:
        parent = path.parent
        if str(parent) in ("", "."):
            return
        try:
            os.makedirs(parent, mode=0o700, exist_ok=True)
        except OSError as e:
            log.error(f"Failed to create key directory {parent}: {e}")
            raise ConfigurationError(f"Cannot create key directory {parent}: {e}") from e

    def exists(self, handle: str) -> bool:
        try:
            return stat.S_ISREG(os.stat(handle).st_mode)
        except (FileNotFoundError, NotADirectoryError):
            return False
        except OSError as e:
            log.error(f"Failed to check key {handle}: {e}")
            raise ConfigurationError(f"Cannot check key {handle}: {e}") from e

    def read(self, handle: str) -> KeyRecord:
        path = Path(handle)
        try:
            if os.name == 'posix':
                mode = stat.S_IMODE(os.stat(path).st_mode)
                if mode & (stat.S_IRGRP | stat.S_IROTH):
                    log.warning(f"Key file {path} is readable by group or others")
            with open(path, 'r', encoding=phe_config.CHARSET_NAME) as f:
                data = f.read()
        except OSError as e:
            log.error(f"Failed to read key {handle}: {e}")
            raise ConfigurationError(f"Cannot read key {handle}: {e}") from e

        log.debug(f"Key {handle} retrieved from file")
        return KeyRecord.from_json(data)

    def write(self, handle: str, record: KeyRecord) -> None:
        path = Path(handle)
        self._ensure_parent(path)
        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=path.name + ".", suffix=".tmp")
            with os.fdopen(fd, 'w', encoding=phe_config.CHARSET_NAME) as f:
                f.write(record.to_json())
            if os.name == 'posix':
                os.chmod(tmp_path, stat.S_IRUSR | stat.S_IWUSR)  # 0600
            os.replace(tmp_path, path)
            tmp_path = None
        except OSError as e:
            log.error(f"Failed to store key {handle}: {e}")
            raise ConfigurationError(f"Cannot write key {handle}: {e}") from e
        finally:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.unlink(tmp_path)

        log.info(f"Key {handle} stored in file: {path}")

    def _acquire_lock_file(self, lock_path: Path) -> None:
        deadline = time.monotonic() + self.lock_timeout
        while True:
            try:
                fd = os.open(lock_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            except FileExistsError:
                try:
                    held = os.stat(lock_path)
                except FileNotFoundError:
                    continue
                age = time.time() - held.st_mtime
                if age > self.stale_lock_seconds:
                    log.warning(f"Breaking stale key lock {lock_path} ({age:.0f}s old)")
                    self._break_stale_lock(lock_path, held)
                    continue
                if time.monotonic() > deadline:
                    raise ConfigurationError(f"Timed out waiting for key lock {lock_path}")
                time.sleep(0.05)
                continue
            except OSError as e:
                log.error(f"Failed to create key lock {lock_path}: {e}")
                raise ConfigurationError(f"Cannot lock {lock_path}: {e}") from e

            try:
                os.write(fd, str(os.getpid()).encode())
            finally:
                os.close(fd)
            return

    def _break_stale_lock(self, lock_path: Path, held: os.stat_result) -> None:
        """
        Move the stale lock aside under a unique name before deleting it.

        Another waiter may have broken the same lock and taken a fresh one
        between our stat and the rename. The moved file is compared with the
        one judged stale and put back when it is not that file.
        """
        aside = lock_path.with_name(f"{lock_path.name}.{os.getpid()}.{secrets.token_hex(4)}.stale")
        try:
            os.rename(lock_path, aside)
        except FileNotFoundError:
            return
        except OSError as e:
            log.error(f"Failed to break stale key lock {lock_path}: {e}")
            raise ConfigurationError(f"Cannot break lock {lock_path}: {e}") from e

        try:
            moved = os.stat(aside)
            if (moved.st_ino, moved.st_mtime_ns) != (held.st_ino, held.st_mtime_ns):
                log.debug(f"Key lock {lock_path} was renewed by another process; restoring it")
                try:
                    os.link(aside, lock_path)
                except FileExistsError:
                    log.warning(f"Could not restore renewed key lock {lock_path}: already re-created")
        finally:
            try:
                os.unlink(aside)
            except FileNotFoundError:
                pass

    @contextmanager
    def lock(self, handle: str) -> Iterator[None]:
        path = Path(handle)
        lock_path = path.with_name(path.name + ".lock")
        with self._thread_lock_for(handle):
            self._ensure_parent(path)
            self._acquire_lock_file(lock_path)
            try:
                yield
            finally:
                try:
                    os.unlink(lock_path)
                except FileNotFoundError:
                    pass


class KeyringKeyStore(KeyStore):
    """
    Keys are stored in the OS keyring under a service name, one password
    entry per handle.

    Keyring backends offer no cross-process locking, so only provisioning
    within this process is serialized.
    """

    def __init__(self, service_name: str = None):
        super().__init__()
        self.service_name = service_name or phe_config.KEYRING_SERVICE
        log.info(f"Keyring key store using backend {keyring.get_keyring().__class__.__name__}")

    def exists(self, handle: str) -> bool:
        try:
            return keyring.get_password(self.service_name, handle) is not None
        except KeyringError as e:
            log.error(f"Keyring lookup for {handle} failed: {e}")
            raise ConfigurationError(f"Cannot query keyring for {handle}: {e}") from e

    def read(self, handle: str) -> KeyRecord:
        try:
            data = keyring.get_password(self.service_name, handle)
        except KeyringError as e:
            log.error(f"Failed to retrieve key {handle} from keyring: {e}")
            raise ConfigurationError(f"Cannot read key {handle} from keyring: {e}") from e
        if data is None:
            raise ConfigurationError(f"Key {handle} not found in keyring")
        log.debug(f"Key {handle} retrieved from OS keyring under '{self.service_name}'")
        return KeyRecord.from_json(data)

    def write(self, handle: str, record: KeyRecord) -> None:
        try:
            keyring.set_password(self.service_name, handle, record.to_json())
        except KeyringError as e:
            log.error(f"Failed to store key {handle} in keyring: {e}")
            raise ConfigurationError(f"Cannot write key {handle} to keyring: {e}") from e
        log.info(f"Key {handle} stored in OS keyring under '{self.service_name}'")
