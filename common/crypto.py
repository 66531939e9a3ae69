import base64, binascii, os

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric import rsa, padding
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

AES_KEY_BITS = 256
IV_BYTES = 12   # 96-bit GCM nonce

_OAEP = padding.OAEP(mgf=padding.MGF1(algorithm=hashes.SHA256()),
                     algorithm=hashes.SHA256(),
                     label=None)


def _pss():
    return padding.PSS(mgf=padding.MGF1(hashes.SHA256()),
                       salt_length=padding.PSS.MAX_LENGTH)


def rsa_generate(bits: int = 2048):
    '''
    The function generates an RSA private key.
        Input: key size in bits (default 2048)
        Output: private key object
    '''
    return rsa.generate_private_key(public_exponent=65537, key_size=bits)

def rsa_wrap_key(pub, key_bytes: bytes) -> bytes:
    '''
    This function encrypts an AES key using the recipient's RSA public key.
    Input:
        - pub: recipient's RSA public key object
        - key_bytes: the AES key (binary)
    Output: the wrapped key bytes
    '''
    return pub.encrypt(key_bytes, _OAEP)

def rsa_unwrap_key(priv, wrapped: bytes) -> bytes:
    '''
    This function decrypts an AES key using the recipient's RSA private key.
    Input:
        - priv: recipient's RSA private key object
        - wrapped: the wrapped AES key bytes
    Output: the unwrapped AES key in bytes
    '''
    return priv.decrypt(wrapped, _OAEP)

def rsa_sign(priv, data: bytes) -> bytes:
    ''' Detached RSA-PSS/SHA-256 signature over data '''
    return priv.sign(data, _pss(), hashes.SHA256())

def rsa_verify(pub, signature: bytes, data: bytes) -> bool:
    ''' True when signature is a valid RSA-PSS/SHA-256 signature of data under pub '''
    try:
        pub.verify(signature, data, _pss(), hashes.SHA256())
    except InvalidSignature:
        return False
    return True

def aes_key() -> bytes:
    '''This function generates a random 256-bit AES key'''
    return AESGCM.generate_key(bit_length=AES_KEY_BITS)

def new_iv() -> bytes:
    ''' Fresh random nonce; never reused with the same key '''
    return os.urandom(IV_BYTES)

def aes_encrypt(key: bytes, iv: bytes, plaintext: bytes) -> bytes:
    '''
    This function encrypts plaintext using AES-GCM.
    Input:
        - key: AES key in bytes (256 bits)
        - iv: 12-byte nonce
        - plaintext: data to encrypt in bytes
    Output: ciphertext with the 16-byte tag appended
    '''
    return AESGCM(key).encrypt(iv, plaintext, None)

def aes_decrypt(key: bytes, iv: bytes, ciphertext: bytes) -> bytes:
    '''
    This function decrypts ciphertext using AES-GCM.
    Raises cryptography.exceptions.InvalidTag when the tag does not match.
    '''
    return AESGCM(key).decrypt(iv, ciphertext, None)

def b64(b: bytes) -> str:
    ''' This function encodes bytes to a Base64 string '''
    return base64.b64encode(b).decode()

def b64d(s: str) -> bytes:
    ''' This function decodes a Base64 string to bytes, rejecting non-alphabet characters '''
    return base64.b64decode(s.encode(), validate=True)

def is_b64(s: str) -> bool:
    if not s:
        return False
    try:
        b64d(s)
    except (binascii.Error, ValueError):
        return False
    return True
