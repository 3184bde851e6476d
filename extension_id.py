from Crypto.Hash import SHA1
from Crypto.PublicKey import RSA
from Crypto.Signature import pkcs1_15
from Crypto.Util.asn1 import DerBitString, DerObjectId, DerSequence
import base64
import hashlib
import argparse
import os

from crx_errors import (
    IdentifierMismatch,
    InvalidPublicKey,
    SignatureInvalid,
    UnsupportedKeyType,
)


RSA_ENCRYPTION_OID = '1.2.840.113549.1.1.1'


def digest_to_extension_id(digest_hex):
    # Extension ids spell hex digits with the letters a-p: '0' -> 'a', 'f' -> 'p'.
    extensionId = ''
    ord_a = ord('a')
    for c in digest_hex:
        extensionId += chr(int(c, 16) + ord_a)
    return extensionId


def public_key_to_extension_id(public_key: bytes) -> str:
    """Derive the extension id from a DER SubjectPublicKeyInfo blob."""
    sha256sum = hashlib.sha256(public_key).hexdigest()
    return digest_to_extension_id(sha256sum[:32])


def manifest_key_to_extension_id(base64encodedKey):
    return public_key_to_extension_id(base64.b64decode(base64encodedKey))


def get_key_algorithm(public_key: bytes) -> str:
    """Return the algorithm OID of a DER SubjectPublicKeyInfo."""
    try:
        spki = DerSequence().decode(public_key, nr_elements=2)
        algorithm = DerSequence().decode(spki[0])
        oid = DerObjectId().decode(algorithm[0]).value
        DerBitString().decode(spki[1])
    except (ValueError, IndexError, TypeError) as err:
        raise InvalidPublicKey(f"Failed to parse public key: {err}") from err
    return oid


def load_rsa_key(public_key: bytes) -> RSA.RsaKey:
    oid = get_key_algorithm(public_key)
    if oid != RSA_ENCRYPTION_OID:
        raise UnsupportedKeyType(f"Not signed with an RSA key ({oid})")
    try:
        return RSA.import_key(public_key)
    except (ValueError, IndexError, TypeError) as err:
        raise InvalidPublicKey(f"Failed to parse public key: {err}") from err


def verify_crx2(public_key: bytes, signature: bytes, payload, app_id: str) -> None:
    """Authenticate a CRXv2 payload.

    The key must be RSA, must hash to app_id, and must have produced a
    PKCS#1 v1.5 SHA-1 signature over the ZIP payload. The checks run in that
    order and the first failure is raised.
    """
    key = load_rsa_key(public_key)

    extension_id = public_key_to_extension_id(public_key)
    if extension_id != app_id:
        raise IdentifierMismatch(extension_id, app_id)

    try:
        pkcs1_15.new(key).verify(SHA1.new(payload), signature)
    except ValueError as err:
        raise SignatureInvalid(f"Signature verification failure: {err}") from err


if __name__ == '__main__':
    parser = argparse.ArgumentParser(
        description="Print the extension ID for a DER public key or a manifest key")
    parser.add_argument("filename", help="DER encoded public key, or base64 with --manifest-key")
    parser.add_argument("--manifest-key", action="store_true",
                        help="The file holds the base64 \"key\" value from manifest.json")
    args = parser.parse_args()
    filename = args.filename

    if not os.path.exists(filename):
        print(f"Error: The file '{filename}' does not exist.")
        exit(1)

    with open(filename, 'rb') as file:
        content = file.read()

    if args.manifest_key:
        print('Calculated extension ID: ' + manifest_key_to_extension_id(content.strip()))
    else:
        print('Calculated extension ID: ' + public_key_to_extension_id(content))
