"""Encrypted, per-server persistence for OAuth flow artifacts.

Each server identity gets its own file, so flows against different servers
never read or lock each other's data. Entries inside a file are keyed by
``[<server identity>] <key>``. Storage uses:
- Fernet symmetric encryption (AES-128-CBC + HMAC)
- OS keyring for the encryption key (Keychain, libsecret, DPAPI)
- 0700 directory and 0600 file permissions
- Advisory file locking around reads and writes
"""

import base64
import hashlib
import json
import logging
import os
import stat
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator

import keyring
from cryptography.fernet import Fernet, InvalidToken

from .discovery import AuthServerMetadata, normalize_server_url
from .errors import DiscoveryError
from .tokens import UNREGISTERED, ClientRegistration, Registered, TokenSet

logger = logging.getLogger(__name__)

if sys.platform != "win32":
    import fcntl

    @contextmanager
    def _file_lock(filepath: Path, exclusive: bool = True) -> Generator[None, None, None]:
        """Acquire an advisory lock on ``<file>.lock`` (fcntl)."""
        lock_path = filepath.with_suffix(filepath.suffix + ".lock")
        lock_path.touch(exist_ok=True)

        with open(lock_path, "r") as lock_file:
            try:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
else:
    import msvcrt

    @contextmanager
    def _file_lock(filepath: Path, exclusive: bool = True) -> Generator[None, None, None]:
        """Acquire a lock on ``<file>.lock`` (msvcrt has no shared locks)."""
        lock_path = filepath.with_suffix(filepath.suffix + ".lock")
        lock_path.touch(exist_ok=True)

        with open(lock_path, "r+") as lock_file:
            try:
                msvcrt.locking(lock_file.fileno(), msvcrt.LK_LOCK, 1)
                yield
            finally:
                try:
                    msvcrt.locking(lock_file.fileno(), msvcrt.LK_UNLCK, 1)
                except OSError:
                    pass


KEYRING_SERVICE = "mcp-auth-debugger"
KEYRING_USERNAME = "credential-encryption-key"

DEFAULT_STORE_DIR = Path.home() / ".cache" / "mcp-auth-debugger" / "oauth"


class SessionKeys:
    """Base names of the artifacts persisted for each server."""

    CODE_VERIFIER = "code_verifier"
    SERVER_URL = "server_url"
    TOKENS = "tokens"
    CLIENT_INFORMATION = "client_information"
    SERVER_METADATA = "server_metadata"
    OAUTH_STATE = "oauth_state"

    ALL = (
        CODE_VERIFIER,
        SERVER_URL,
        TOKENS,
        CLIENT_INFORMATION,
        SERVER_METADATA,
        OAUTH_STATE,
    )


def server_specific_key(base_key: str, server_url: str) -> str:
    """Namespace a storage key by server identity."""
    return f"[{server_url}] {base_key}"


class CredentialStoreError(Exception):
    """Error in credential storage operations."""

    pass


class CredentialDecryptionError(CredentialStoreError):
    """A server's credential file cannot be decrypted or parsed.

    Usually means the encryption key changed (keyring cleared, different
    machine). Clearing the server's state recovers from it.
    """

    pass


def _derive_fallback_key() -> bytes:
    """Derive a Fernet key from machine-specific data.

    Used when no keyring backend is available. Still encrypts at rest, but
    anyone with access to this machine and user account can derive it.
    """
    components = []

    machine_id_path = Path("/etc/machine-id")
    if machine_id_path.exists():
        components.append(machine_id_path.read_text().strip())

    components.append(str(Path.home()))
    components.append(os.environ.get("USER", os.environ.get("USERNAME", "mcpad")))

    key_bytes = hashlib.sha256(":".join(components).encode()).digest()
    return base64.urlsafe_b64encode(key_bytes)


class CredentialStore:
    """Encrypted key/value storage scoped by server identity.

    Files live in ``~/.cache/mcp-auth-debugger/oauth/`` by default, one
    ``server-<hash>.json`` per server.
    """

    def __init__(self, store_dir: Path | None = None):
        self.store_dir = store_dir or DEFAULT_STORE_DIR
        self._cipher: Fernet | None = None
        self._using_keyring = False

        self._init_storage()
        self._init_encryption()

    def _init_storage(self) -> None:
        """Create the storage directory with owner-only permissions."""
        self.store_dir.mkdir(parents=True, exist_ok=True)

        try:
            self.store_dir.chmod(stat.S_IRWXU)
        except OSError as e:
            logger.warning(f"Could not set directory permissions: {e}")

    def _init_encryption(self) -> None:
        """Load the encryption key from the keyring, or fall back to a derived key."""
        try:
            key = keyring.get_password(KEYRING_SERVICE, KEYRING_USERNAME)

            if key is None:
                key = Fernet.generate_key().decode("ascii")
                keyring.set_password(KEYRING_SERVICE, KEYRING_USERNAME, key)
                logger.debug("Generated new encryption key in keyring")

            self._cipher = Fernet(key.encode("ascii"))
            self._using_keyring = True
            logger.debug("Using keyring for encryption key storage")

        except Exception as e:
            logger.warning(
                f"Keyring not available: {type(e).__name__}: {e}. "
                f"Using fallback encryption (machine-derived key). "
                f"To use keyring: ensure a keyring backend is installed "
                f"(e.g., gnome-keyring on Linux, Keychain on macOS)."
            )
            self._cipher = Fernet(_derive_fallback_key())
            self._using_keyring = False

    def is_using_keyring(self) -> bool:
        """Check if the OS keyring holds the encryption key."""
        return self._using_keyring

    # Files

    def _server_file(self, server_url: str) -> Path:
        digest = hashlib.sha256(server_url.encode("utf-8")).hexdigest()[:16]
        return self.store_dir / f"server-{digest}.json"

    def _read(self, server_url: str) -> dict[str, Any]:
        """Read and decrypt one server's file under a shared lock.

        Raises:
            CredentialDecryptionError: If the file cannot be decrypted or parsed
        """
        filepath = self._server_file(server_url)
        if not filepath.exists():
            return {}

        if self._cipher is None:
            raise CredentialStoreError("Encryption not initialized")

        with _file_lock(filepath, exclusive=False):
            if not filepath.exists():
                return {}
            encrypted = filepath.read_text()

        try:
            decrypted = self._cipher.decrypt(encrypted.encode("ascii")).decode("utf-8")
        except InvalidToken as e:
            raise CredentialDecryptionError(
                f"Cannot decrypt stored credentials for {server_url}. "
                f"The encryption key may have changed. "
                f"Run 'mcpad clear {server_url}' to reset this server."
            ) from e

        try:
            result: dict[str, Any] = json.loads(decrypted)
        except json.JSONDecodeError as e:
            raise CredentialDecryptionError(
                f"Stored credentials for {server_url} are corrupted. "
                f"Run 'mcpad clear {server_url}' to reset this server."
            ) from e
        return result

    def _write(self, server_url: str, data: dict[str, Any]) -> None:
        """Encrypt and write one server's file under an exclusive lock."""
        filepath = self._server_file(server_url)

        if not data:
            self._remove(filepath)
            return

        if self._cipher is None:
            raise CredentialStoreError("Encryption not initialized")

        encrypted = self._cipher.encrypt(json.dumps(data, indent=2).encode("utf-8")).decode("ascii")

        with _file_lock(filepath, exclusive=True):
            filepath.write_text(encrypted)
            try:
                filepath.chmod(stat.S_IRUSR | stat.S_IWUSR)
            except OSError as e:
                logger.warning(f"Could not set file permissions: {e}")

    def _remove(self, filepath: Path) -> None:
        with _file_lock(filepath, exclusive=True):
            if filepath.exists():
                filepath.unlink()
        lock_path = filepath.with_suffix(filepath.suffix + ".lock")
        if lock_path.exists():
            lock_path.unlink()

    # Raw key/value access

    def get(self, server_url: str, key: str) -> Any | None:
        """Get a stored value for a server, or None."""
        server_url = normalize_server_url(server_url)
        return self._read(server_url).get(server_specific_key(key, server_url))

    def set(self, server_url: str, key: str, value: Any) -> None:
        """Store a JSON-serializable value for a server."""
        server_url = normalize_server_url(server_url)
        data = self._read(server_url)
        data[server_specific_key(key, server_url)] = value
        self._write(server_url, data)
        logger.debug(f"Stored {key} for {server_url}")

    def delete(self, server_url: str, key: str) -> bool:
        """Delete a stored value. Returns False if it did not exist."""
        server_url = normalize_server_url(server_url)
        data = self._read(server_url)
        namespaced = server_specific_key(key, server_url)
        if namespaced not in data:
            return False

        del data[namespaced]
        self._write(server_url, data)
        logger.debug(f"Deleted {key} for {server_url}")
        return True

    def keys(self, server_url: str) -> list[str]:
        """List the base keys stored for a server."""
        server_url = normalize_server_url(server_url)
        prefix = server_specific_key("", server_url)
        return sorted(k[len(prefix):] for k in self._read(server_url) if k.startswith(prefix))

    def clear(self, server_url: str) -> None:
        """Remove every artifact stored for one server, leaving others untouched."""
        server_url = normalize_server_url(server_url)
        self._remove(self._server_file(server_url))
        logger.info(f"Cleared stored OAuth state for {server_url}")

    def list_servers(self) -> list[str]:
        """List server identities with stored state (files that can be decrypted)."""
        servers = []
        for path in sorted(self.store_dir.glob("server-*.json")):
            if self._cipher is None:
                break
            try:
                data = json.loads(self._cipher.decrypt(path.read_bytes()).decode("utf-8"))
            except (InvalidToken, json.JSONDecodeError) as e:
                logger.warning(f"Skipping unreadable credential file {path.name}: {e}")
                continue
            for key, value in data.items():
                if key.endswith(f"] {SessionKeys.SERVER_URL}"):
                    servers.append(value)
        return servers

    # Typed accessors

    def get_server_url(self, server_url: str) -> str | None:
        return self.get(server_url, SessionKeys.SERVER_URL)

    def save_server_url(self, server_url: str) -> None:
        self.set(server_url, SessionKeys.SERVER_URL, normalize_server_url(server_url))

    def get_code_verifier(self, server_url: str) -> str | None:
        return self.get(server_url, SessionKeys.CODE_VERIFIER)

    def save_code_verifier(self, server_url: str, verifier: str) -> None:
        self.set(server_url, SessionKeys.CODE_VERIFIER, verifier)

    def get_oauth_state(self, server_url: str) -> str | None:
        return self.get(server_url, SessionKeys.OAUTH_STATE)

    def save_oauth_state(self, server_url: str, state: str) -> None:
        self.set(server_url, SessionKeys.OAUTH_STATE, state)

    def clear_authorization_request(self, server_url: str) -> None:
        """Drop the one-time verifier and ``state`` after a code exchange."""
        server_url = normalize_server_url(server_url)
        data = self._read(server_url)
        for key in (SessionKeys.CODE_VERIFIER, SessionKeys.OAUTH_STATE):
            data.pop(server_specific_key(key, server_url), None)
        self._write(server_url, data)

    def get_tokens(self, server_url: str) -> TokenSet | None:
        """Load stored tokens; malformed records are logged and ignored."""
        data = self.get(server_url, SessionKeys.TOKENS)
        if data is None:
            return None
        try:
            return TokenSet.from_dict(data)
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Invalid token data for {server_url}: {e}")
            return None

    def save_tokens(self, server_url: str, tokens: TokenSet) -> None:
        self.set(server_url, SessionKeys.TOKENS, tokens.to_dict())

    def get_client_information(self, server_url: str) -> ClientRegistration:
        """Load the stored client, or ``UNREGISTERED`` if there is none."""
        data = self.get(server_url, SessionKeys.CLIENT_INFORMATION)
        if data is None:
            return UNREGISTERED
        try:
            return Registered.from_dict(data)
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Invalid client data for {server_url}: {e}")
            return UNREGISTERED

    def save_client_information(self, server_url: str, client: Registered) -> None:
        self.set(server_url, SessionKeys.CLIENT_INFORMATION, client.to_dict())

    def get_server_metadata(self, server_url: str) -> AuthServerMetadata | None:
        data = self.get(server_url, SessionKeys.SERVER_METADATA)
        if data is None:
            return None
        try:
            return AuthServerMetadata.from_dict(data, normalize_server_url(server_url))
        except (DiscoveryError, KeyError, TypeError) as e:
            logger.warning(f"Invalid metadata for {server_url}: {e}")
            return None

    def save_server_metadata(self, server_url: str, metadata: AuthServerMetadata) -> None:
        self.set(server_url, SessionKeys.SERVER_METADATA, metadata.to_dict())
