import io
import struct
import zipfile

import pytest
import requests
from Crypto.Hash import SHA1
from Crypto.PublicKey import RSA
from Crypto.Signature import pkcs1_15

from extension_id import public_key_to_extension_id


def make_zip(entries):
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, data in entries.items():
            zf.writestr(name, data)
    return buf.getvalue()


def make_crx2(public_key, signature, payload, version=2):
    return (b"Cr24" + struct.pack("<III", version, len(public_key), len(signature))
            + public_key + signature + payload)


def make_crx3(header_block, payload):
    return b"Cr24" + struct.pack("<II", 3, len(header_block)) + header_block + payload


class FakeResponse:

    def __init__(self, content=b"", status_code=200, read_error=None):
        self._content = content
        self.status_code = status_code
        self.read_error = read_error
        self.closed = False

    @property
    def content(self):
        if self.read_error is not None:
            raise self.read_error
        return self._content

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Client Error")

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.closed = True


class FakeSession:
    """Stands in for requests.Session and records every GET."""

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def get(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture(scope="session")
def rsa_key():
    return RSA.generate(2048)


@pytest.fixture(scope="session")
def public_key_der(rsa_key):
    return rsa_key.publickey().export_key(format="DER")


@pytest.fixture(scope="session")
def app_id(public_key_der):
    return public_key_to_extension_id(public_key_der)


@pytest.fixture
def zip_payload():
    return make_zip({
        "manifest.json": b'{"name": "sth set", "version": "1.0"}',
        "_platform_specific/all/sths/aabbccdd.sth": b'{"tree_size": 10}',
    })


@pytest.fixture
def sign(rsa_key):
    def _sign(payload):
        return pkcs1_15.new(rsa_key).sign(SHA1.new(payload))
    return _sign


@pytest.fixture
def signed_crx2(public_key_der, sign, zip_payload):
    return make_crx2(public_key_der, sign(zip_payload), zip_payload)
