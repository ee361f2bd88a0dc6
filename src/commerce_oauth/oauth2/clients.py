# Client store: registered OAuth2 applications.
# Created: 2026-10-12
#
# Client IDs use the format app_<hex>; secrets use secret_<random>.
# Only salted PBKDF2 hashes are stored. The plaintext secret is shown once at
# creation or rotation (like GitHub PATs).
# Optional storage: <data_dir>/oauth_clients.json

from __future__ import annotations

import dataclasses
import hashlib
import hmac
import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from urllib.parse import urlsplit

from commerce_oauth.oauth2.entropy import Clock, TokenGenerator, utc_now
from commerce_oauth.oauth2.models import Client, ClientStatus
from commerce_oauth.oauth2.scopes import ScopeRegistry
from commerce_oauth.oauth2.storage import RecordTable, write_json_atomic

logger = logging.getLogger(__name__)

CLIENT_ID_PREFIX = "app_"
SECRET_PREFIX = "secret_"
_HASH_ALGORITHM = "pbkdf2_sha256"
_SALT_BYTES = 16


def hash_secret(secret: str, salt: bytes, iterations: int) -> str:
    digest = hashlib.pbkdf2_hmac("sha256", secret.encode(), salt, iterations)
    return f"{_HASH_ALGORITHM}${iterations}${salt.hex()}${digest.hex()}"


def check_secret(secret_hash: str, candidate: str) -> bool:
    """Recompute the hash of *candidate* and compare in constant time."""
    try:
        algorithm, iterations, salt_hex, digest_hex = secret_hash.split("$")
        salt = bytes.fromhex(salt_hex)
        expected = bytes.fromhex(digest_hex)
        rounds = int(iterations)
    except ValueError:
        logger.warning("Malformed client secret hash")
        return False
    if algorithm != _HASH_ALGORITHM:
        return False
    computed = hashlib.pbkdf2_hmac("sha256", candidate.encode(), salt, rounds)
    return hmac.compare_digest(computed, expected)


def validate_redirect_uri(uri: str) -> None:
    """Registered redirect URIs must be absolute and carry no fragment."""
    parts = urlsplit(uri)
    if not parts.scheme or not (parts.netloc or parts.path):
        raise ValueError(f"Redirect URI must be absolute: {uri!r}")
    if parts.fragment or "#" in uri:
        raise ValueError(f"Redirect URI must not contain a fragment: {uri!r}")


def _encode_client(client: Client) -> dict:
    return {
        "id": client.id,
        "client_id": client.client_id,
        "secret_hash": client.secret_hash,
        "name": client.name,
        "redirect_uris": client.redirect_uris,
        "allowed_scopes": client.allowed_scopes,
        "status": client.status.value,
        "description": client.description,
        "website": client.website,
        "created_at": client.created_at.isoformat(),
        "secret_rotated_at": client.secret_rotated_at.isoformat()
        if client.secret_rotated_at
        else None,
    }


def _decode_client(entry: dict) -> Client:
    return Client(
        id=entry["id"],
        client_id=entry["client_id"],
        secret_hash=entry["secret_hash"],
        name=entry["name"],
        redirect_uris=list(entry.get("redirect_uris", [])),
        allowed_scopes=list(entry.get("allowed_scopes", [])),
        status=ClientStatus(entry.get("status", "active")),
        description=entry.get("description", ""),
        website=entry.get("website", ""),
        created_at=datetime.fromisoformat(entry["created_at"]),
        secret_rotated_at=datetime.fromisoformat(entry["secret_rotated_at"])
        if entry.get("secret_rotated_at")
        else None,
    )


class ClientStore:
    """Registered clients, keyed by public client_id.

    When persisted, the file is the source of truth: the CLI rewrites it from
    another process, so every lookup first reloads it if it changed on disk.
    """

    def __init__(
        self,
        registry: ScopeRegistry,
        persist_path: Path | None = None,
        generator: TokenGenerator | None = None,
        clock: Clock = utc_now,
        hash_iterations: int = 260_000,
    ):
        self.registry = registry
        self._generator = generator or TokenGenerator()
        self._clock = clock
        self._iterations = hash_iterations
        self._clients: RecordTable[Client] = RecordTable()
        self._persist_path = persist_path
        # Serialises reloads, mutations and writes of the backing file
        self._file_lock = threading.RLock()
        self._file_signature: tuple[int, int, int] | None = None
        self._dummy_hash = hash_secret("", bytes(_SALT_BYTES), hash_iterations)
        self._sync()

    # -- persistence ---------------------------------------------------

    def _signature(self) -> tuple[int, int, int] | None:
        try:
            st = self._persist_path.stat()
        except OSError:
            return None
        # Every save renames a fresh file into place, so the inode changes too
        return st.st_ino, st.st_mtime_ns, st.st_size

    def _sync(self) -> None:
        """Reload clients from disk if the file changed since we last saw it."""
        path = self._persist_path
        if path is None:
            return
        with self._file_lock:
            signature = self._signature()
            if signature is None or signature == self._file_signature:
                return
            self._file_signature = signature
            try:
                clients = [_decode_client(entry) for entry in json.loads(path.read_text())]
            except (json.JSONDecodeError, OSError, KeyError, TypeError, ValueError) as exc:
                logger.warning("Failed to load OAuth clients from %s: %s", path, exc)
                return
            for client in clients:
                self._clients.put(client.client_id, client)
            logger.debug("Loaded %d OAuth clients from %s", len(clients), path)

    def _save(self) -> None:
        path = self._persist_path
        if path is None:
            return
        with self._file_lock:
            write_json_atomic(path, [_encode_client(c) for c in self._clients.values()])
            self._file_signature = self._signature()

    # -- operations ----------------------------------------------------

    def _new_secret(self) -> tuple[str, str]:
        plaintext = self._generator.token(SECRET_PREFIX)
        salt = bytes.fromhex(self._generator.hex(_SALT_BYTES))
        return plaintext, hash_secret(plaintext, salt, self._iterations)

    def create(
        self,
        name: str,
        redirect_uris: list[str],
        allowed_scopes: list[str],
        description: str = "",
        website: str = "",
    ) -> tuple[Client, str]:
        """Register a client. Returns (client, plaintext_secret).

        The plaintext secret is returned only once. It cannot be retrieved later.
        """
        if not name.strip():
            raise ValueError("Client name is required")
        if not redirect_uris:
            raise ValueError("At least one redirect URI is required")
        for uri in redirect_uris:
            validate_redirect_uri(uri)
        if not allowed_scopes:
            raise ValueError("At least one scope is required")
        invalid = self.registry.unknown(allowed_scopes)
        if invalid:
            raise ValueError(f"Invalid scopes: {invalid}")

        plaintext, secret_hash = self._new_secret()
        with self._file_lock:
            self._sync()
            while True:
                client = Client(
                    id=self._generator.hex(8),
                    client_id=f"{CLIENT_ID_PREFIX}{self._generator.hex(12)}",
                    secret_hash=secret_hash,
                    name=name.strip(),
                    redirect_uris=list(dict.fromkeys(redirect_uris)),
                    allowed_scopes=list(dict.fromkeys(allowed_scopes)),
                    description=description,
                    website=website,
                    created_at=self._clock(),
                )
                if self._clients.insert(client.client_id, client):
                    break
            self._save()

        logger.info("Registered OAuth client %s (%s)", client.client_id, client.name)
        return client, plaintext

    def find_by_public_id(self, client_id: str) -> Client | None:
        self._sync()
        return self._clients.get(client_id)

    def verify_secret(self, client: Client, candidate: str) -> bool:
        # Re-read so a rotation that happened after *client* was fetched wins
        current = self.find_by_public_id(client.client_id) or client
        return check_secret(current.secret_hash, candidate)

    def verify_credentials(self, client_id: str, candidate: str) -> Client | None:
        """Return the client if *candidate* is its current secret.

        An unknown client_id still pays for one hash so the response time does
        not reveal which client IDs exist.
        """
        client = self.find_by_public_id(client_id)
        if client is None:
            check_secret(self._dummy_hash, candidate)
            return None
        return client if check_secret(client.secret_hash, candidate) else None

    def _update(self, client_id: str, update) -> Client | None:
        with self._file_lock:
            self._sync()
            swapped = self._clients.compare_and_swap(client_id, lambda c: True, update)
            if swapped is None:
                return None
            self._save()
        return swapped[1]

    def rotate_secret(self, client_id: str) -> str | None:
        """Replace the stored secret hash. The old secret stops verifying at once."""
        plaintext, secret_hash = self._new_secret()
        updated = self._update(
            client_id,
            lambda c: dataclasses.replace(
                c, secret_hash=secret_hash, secret_rotated_at=self._clock()
            ),
        )
        if updated is None:
            return None
        logger.info("Rotated secret for OAuth client %s", client_id)
        return plaintext

    def set_status(self, client_id: str, status: ClientStatus) -> Client | None:
        updated = self._update(client_id, lambda c: dataclasses.replace(c, status=status))
        if updated is not None:
            logger.info("OAuth client %s is now %s", client_id, status.value)
        return updated

    def list_clients(self) -> list[Client]:
        self._sync()
        return self._clients.values()
