"""Loading and creating the RSA key material used by secure mail.

Public keys come from a PEM X.509 certificate or a bare PEM public key.
Private keys are PEM PKCS#8, normally protected by a password.
"""
import datetime
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Union

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from common.crypto import rsa_generate
from common.errors import KeyNotFound, KeyParseError, WrongPassword

logger = logging.getLogger(__name__)

CERT_DAYS = 365


@dataclass(frozen=True)
class KeySource:
    ''' Where to find one key: a file path and, for private keys, its password '''
    path: str
    password: Optional[str] = None


def _read(path: Union[str, Path]) -> bytes:
    p = Path(path).expanduser()
    try:
        return p.read_bytes()
    except FileNotFoundError:
        raise KeyNotFound(f"key file not found: {p}") from None
    except IsADirectoryError:
        raise KeyNotFound(f"key path is a directory: {p}") from None
    except PermissionError:
        raise KeyNotFound(f"key file not readable: {p}") from None


class KeyLoader:
    '''
    Default key-resolution capability handed to the session engine.
    Any object with the same two methods can stand in for it.
    '''

    def load_public_key(self, path: str) -> rsa.RSAPublicKey:
        '''
        Load a public key from a certificate or a public key file.
        Raises KeyNotFound or KeyParseError.
        '''
        data = _read(path)
        try:
            key = x509.load_pem_x509_certificate(data).public_key()
        except ValueError:
            try:
                key = serialization.load_pem_public_key(data)
            except ValueError as e:
                raise KeyParseError(f"cannot load public key from {path}: {e}") from None
        if not isinstance(key, rsa.RSAPublicKey):
            raise KeyParseError(f"{path} does not hold an RSA public key")
        return key

    def load_private_key(self, path: str, password: Optional[str] = None) -> rsa.RSAPrivateKey:
        '''
        Load a private key, decrypting it with password.
        Raises KeyNotFound, WrongPassword or KeyParseError.
        '''
        data = _read(path)
        secret = password.encode() if password else None
        try:
            key = serialization.load_pem_private_key(data, password=secret)
        except TypeError:
            if secret is None:
                raise WrongPassword(f"{path} is encrypted and needs a password") from None
            # a password was given for an unencrypted key; it is not needed
            try:
                key = serialization.load_pem_private_key(data, password=None)
            except ValueError as e:
                raise KeyParseError(f"cannot load private key from {path}: {e}") from None
        except ValueError as e:
            if b"ENCRYPTED" in data:
                raise WrongPassword(f"wrong password for {path}") from None
            raise KeyParseError(f"cannot load private key from {path}: {e}") from None
        if not isinstance(key, rsa.RSAPrivateKey):
            raise KeyParseError(f"{path} does not hold an RSA private key")
        return key


def private_key_pem(priv, password: Optional[str]) -> bytes:
    if password:
        enc = serialization.BestAvailableEncryption(password.encode())
    else:
        enc = serialization.NoEncryption()
    return priv.private_bytes(serialization.Encoding.PEM,
                              serialization.PrivateFormat.PKCS8,
                              enc)


def self_signed_certificate(priv, name: str) -> x509.Certificate:
    ''' A certificate binding name to the public half of priv, signed by priv itself '''
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, name)])
    now = datetime.datetime.now(datetime.timezone.utc)
    return (x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(subject)
            .public_key(priv.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now)
            .not_valid_after(now + datetime.timedelta(days=CERT_DAYS))
            .sign(priv, hashes.SHA256()))


def generate_identity(directory: Union[str, Path], name: str,
                      password: Optional[str] = None, bits: int = 2048) -> Tuple[Path, Path]:
    '''
    Create a key pair for a mail user.
    Input:
        - directory: where to write the files (created if missing)
        - name: user name, used for the file names and certificate subject
        - password: protects the private key file; None writes it unencrypted
    Output: (private key path, certificate path)
    '''
    out = Path(directory)
    out.mkdir(parents=True, exist_ok=True)
    priv = rsa_generate(bits)
    key_path = out / f"{name}.key"
    cert_path = out / f"{name}.crt"
    key_path.write_bytes(private_key_pem(priv, password))
    cert_path.write_bytes(self_signed_certificate(priv, name).public_bytes(serialization.Encoding.PEM))
    logger.info("wrote %s and %s", key_path, cert_path)
    return key_path, cert_path
