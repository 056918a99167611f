"""
TLS material loading.

The HTTPS listener needs a private key, a certificate and the chain. The
three are loaded together: if any file is unset or missing the service runs
HTTP only, so a partial bundle never reaches the listener.
"""

import asyncio
import logging
import ssl
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class TLSMaterialError(Exception):
    """A TLS file exists but could not be read."""

    def __init__(self, path: str, cause: BaseException):
        super().__init__(f"failed to read TLS file {path}: {cause}")
        self.path = path
        self.cause = cause


@dataclass(frozen=True)
class TLSMaterialBundle:
    """Paths and contents of a complete set of TLS files."""

    key_path: str
    cert_path: str
    chain_path: str
    key: bytes = field(repr=False)
    cert: bytes = field(repr=False)
    chain: bytes = field(repr=False)


def _exists(setting: str, path: Optional[str]) -> bool:
    if not path:
        logger.warning(f"TLS file path {setting} not configured", extra={"setting": setting})
        return False
    if not Path(path).is_file():
        logger.warning(f"File {path} does not exist.", extra={"path": path})
        return False
    return True


async def _read(path: str) -> bytes:
    try:
        return await asyncio.to_thread(Path(path).read_bytes)
    except OSError as e:
        raise TLSMaterialError(path, e) from e


async def load_tls_material(
    key_path: Optional[str],
    cert_path: Optional[str],
    chain_path: Optional[str],
) -> Optional[TLSMaterialBundle]:
    """
    Load the key, certificate and chain.

    Every path is checked, so each missing file is logged once.

    Returns:
        The complete bundle, or None if any file is unset or missing

    Raises:
        TLSMaterialError: If all files exist but one cannot be read
    """
    present = [
        _exists("CERT_KEY_PATH", key_path),
        _exists("CERT_PATH", cert_path),
        _exists("CERT_CHAIN_PATH", chain_path),
    ]
    if not all(present):
        logger.info("TLS material incomplete, HTTPS disabled")
        return None

    key, cert, chain = await asyncio.gather(_read(key_path), _read(cert_path), _read(chain_path))
    logger.info("TLS material loaded", extra={"cert_path": cert_path})
    return TLSMaterialBundle(
        key_path=key_path,
        cert_path=cert_path,
        chain_path=chain_path,
        key=key,
        cert=cert,
        chain=chain,
    )


def create_server_ssl_context(bundle: TLSMaterialBundle) -> ssl.SSLContext:
    """
    Server-side SSL context serving the certificate followed by its chain.

    ``load_cert_chain`` only reads files, so the loaded bytes are written to
    a private temporary directory for the duration of the call.

    Raises:
        ssl.SSLError: If the key and certificate do not form a valid pair
    """
    context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
    with tempfile.TemporaryDirectory(prefix="streamhooks-tls-") as tmp:
        fullchain = Path(tmp) / "fullchain.pem"
        keyfile = Path(tmp) / "privkey.pem"
        fullchain.write_bytes(bundle.cert.rstrip(b"\n") + b"\n" + bundle.chain)
        keyfile.write_bytes(bundle.key)
        context.load_cert_chain(fullchain, keyfile=keyfile)
    return context
