"""Encrypted on-disk storage for the connection registry.

Registered configurations carry credentials, so the registry map is stored as
one AES-256-GCM encrypted JSON document in the user's home directory.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .constants import DEFAULT_STATE_DIR, KEY_FILE_NAME, REGISTRY_FILE_NAME
from .errors import ValidationFailureError

NONCE_SIZE = 12  # 96-bit nonce for GCM


class RegistryStorage:
    """Secure storage for the registry map using AES-256-GCM encryption."""

    def __init__(self, storage_dir: Optional[Path] = None):
        """Initialize registry storage.

        Args:
            storage_dir: Directory to store the encrypted registry.
                        Defaults to ~/.mcp-db-adapter/ (or $MCP_DB_ADAPTER_HOME)
        """
        if storage_dir is None:
            storage_dir = DEFAULT_STATE_DIR

        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self._key = self._get_or_create_key()

    @property
    def registry_path(self) -> Path:
        return self.storage_dir / REGISTRY_FILE_NAME

    def _get_or_create_key(self) -> bytes:
        """Get or create the 32-byte encryption key."""
        key_file = self.storage_dir / KEY_FILE_NAME

        if key_file.exists():
            return key_file.read_bytes()

        # Generate new 256-bit key
        key = AESGCM.generate_key(bit_length=256)
        self._write_private(key_file, key)
        return key

    def _write_private(self, path: Path, data: bytes) -> None:
        """Write a file readable by the owner only, replacing it atomically."""
        fd, tmp_name = tempfile.mkstemp(dir=self.storage_dir, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            os.chmod(tmp_name, 0o600)  # Read/write for owner only
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def save(self, state: dict[str, dict[str, Any]]) -> None:
        """Encrypt and store the registry map.

        Args:
            state: Name-keyed map of persisted database entries
        """
        plaintext = json.dumps(state).encode("utf-8")

        aesgcm = AESGCM(self._key)
        nonce = os.urandom(NONCE_SIZE)
        ciphertext = aesgcm.encrypt(nonce, plaintext, None)

        # Store nonce + ciphertext
        self._write_private(self.registry_path, nonce + ciphertext)

    def load(self) -> dict[str, dict[str, Any]]:
        """Load and decrypt the registry map.

        Returns:
            Name-keyed map, empty if nothing has been stored yet

        Raises:
            ValidationFailureError: If decryption fails (corrupted, tampered or foreign key)
        """
        if not self.registry_path.exists():
            return {}

        encrypted_data = self.registry_path.read_bytes()
        nonce = encrypted_data[:NONCE_SIZE]
        ciphertext = encrypted_data[NONCE_SIZE:]

        try:
            plaintext = AESGCM(self._key).decrypt(nonce, ciphertext, None)
            state = json.loads(plaintext.decode("utf-8"))
        except (InvalidTag, ValueError) as e:
            raise ValidationFailureError(
                f"Failed to decrypt registry at {self.registry_path}\n"
                f"  Hint: Remove the file to start with an empty registry\n"
                f"  Error: {str(e) or type(e).__name__}"
            ) from e

        if not isinstance(state, dict):
            raise ValidationFailureError(
                f"Registry at {self.registry_path} is not a name-keyed map"
            )
        return state

    def clear(self) -> None:
        """Delete the stored registry."""
        self.registry_path.unlink(missing_ok=True)

    def exists(self) -> bool:
        return self.registry_path.exists()
