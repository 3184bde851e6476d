#!/bin/python
"""Fetch the STH set CRX and print the signed tree heads it carries as JSON."""
import argparse
import base64
import binascii
import json
import logging
import sys
import zlib

from zipfile import BadZipFile, ZipFile, ZipInfo
from typing import Dict, List, Optional

from crx_archive import CrxArchive
from crx_fetch import CRX_FORMATS, DEFAULT_PRODVERSION, fetch_crx


STH_SET_APP_ID = "ojjgnpkioondelmggbekfhllhdaimnho"
STH_PATH_PREFIX = "_platform_specific/all/sths/"
STH_SUFFIX = ".sth"

UINT64_MAX = 2 ** 64 - 1

logger = logging.getLogger(__name__)


class InvalidSth(ValueError):
    pass


def _decode_uint64(name: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidSth(f"{name} is not an integer: {value!r}")
    if not 0 <= value <= UINT64_MAX:
        raise InvalidSth(f"{name} out of range: {value}")
    return value


def _decode_bytes(name: str, value) -> bytes:
    if not isinstance(value, str):
        raise InvalidSth(f"{name} is not a base64 string: {value!r}")
    try:
        return base64.b64decode(value, validate=True)
    except binascii.Error as err:
        raise InvalidSth(f"{name} is not valid base64: {err}") from err


def _encode_bytes(value: Optional[bytes]) -> Optional[str]:
    if value is None:
        return None
    return base64.b64encode(value).decode("ascii")


class SignedTreeHead:

    def __init__(self, version: int = 0, tree_size: int = 0, timestamp: int = 0,
                 sha256_root_hash: Optional[bytes] = None,
                 tree_head_signature: Optional[bytes] = None,
                 log_id: Optional[bytes] = None) -> None:
        self.version = version
        self.tree_size = tree_size
        self.timestamp = timestamp
        self.sha256_root_hash = sha256_root_hash
        self.tree_head_signature = tree_head_signature
        self.log_id = log_id


    def update_from_json(self, obj) -> None:
        """Overlay fields present in a decoded .sth document.

        Missing fields keep their current value and unknown ones are ignored.
        A null clears a byte field and leaves an integer field alone.
        """
        if not isinstance(obj, dict):
            raise InvalidSth(f"STH is not a JSON object: {type(obj).__name__}")

        if obj.get("sth_version") is not None:
            version = obj["sth_version"]
            if isinstance(version, bool) or not isinstance(version, int):
                raise InvalidSth(f"sth_version is not an integer: {version!r}")
            self.version = version
        for name in ("tree_size", "timestamp"):
            if obj.get(name) is not None:
                setattr(self, name, _decode_uint64(name, obj[name]))
        for name in ("sha256_root_hash", "tree_head_signature", "log_id"):
            if name in obj:
                value = obj[name]
                setattr(self, name, None if value is None else _decode_bytes(name, value))


    def to_json(self) -> Dict:
        return {
            "sth_version": self.version,
            "tree_size": self.tree_size,
            "timestamp": self.timestamp,
            "sha256_root_hash": _encode_bytes(self.sha256_root_hash),
            "tree_head_signature": _encode_bytes(self.tree_head_signature),
            "log_id": _encode_bytes(self.log_id),
        }


def read_sth(version: int, log_id: bytes, zip_file: ZipFile, info: ZipInfo) -> SignedTreeHead:
    try:
        sth_bytes = zip_file.read(info)
    except (BadZipFile, zlib.error, EOFError, OSError, NotImplementedError, RuntimeError) as err:
        raise InvalidSth(f"Failed to read sth in ZIP: {err}") from err

    try:
        obj = json.loads(sth_bytes)
    except ValueError as err:
        raise InvalidSth(f"Failed to parse sth in ZIP: {err}") from err

    sth = SignedTreeHead(version=version, log_id=log_id)
    sth.update_from_json(obj)
    return sth


def collect_sths(zip_file: ZipFile, path_prefix: str = STH_PATH_PREFIX) -> List[SignedTreeHead]:
    """Decode every <prefix><hex log id>.sth entry, skipping bad ones."""
    sths = []
    for info in zip_file.infolist():
        name = info.filename
        if not (name.startswith(path_prefix) and name.endswith(STH_SUFFIX)):
            continue

        log_id_hex = name[len(path_prefix):-len(STH_SUFFIX)]
        try:
            log_id = binascii.unhexlify(log_id_hex)
        except ValueError as err:
            logger.warning("Ignoring STH with bad filename: %s: %s", name, err)
            continue

        try:
            sth = read_sth(0, log_id, zip_file, info)
        except InvalidSth as err:
            logger.warning("Ignoring invalid STH: %s: %s", name, err)
            continue
        sths.append(sth)
    return sths


def build_pollen(sths: List[SignedTreeHead]) -> Dict:
    return {"sths": [sth.to_json() for sth in sths]}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Fetch the STH set CRX and print its signed tree heads as JSON.")
    parser.add_argument("--app-id", default=STH_SET_APP_ID,
                        help="Extension id of the CRX to fetch (default: %(default)s)")
    parser.add_argument("--path-prefix", default=STH_PATH_PREFIX,
                        help="Archive directory holding the .sth files (default: %(default)s)")
    parser.add_argument("--format", dest="crx_format", choices=CRX_FORMATS, default="crx2",
                        help="CRX format to request; only crx2 is authenticated (default: %(default)s)")
    parser.add_argument("--prodversion", default=DEFAULT_PRODVERSION,
                        help="Browser version reported when requesting crx3")
    parser.add_argument("--timeout", type=float, default=None,
                        help="HTTP timeout in seconds")
    parser.add_argument("--crx-file",
                        help="Read the CRX from this path instead of downloading it")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    return parser


def load_archive(args: argparse.Namespace) -> ZipFile:
    if args.crx_file:
        logger.info("Reading CRX from %s", args.crx_file)
        return CrxArchive(args.crx_file).get_zip_archive(args.app_id)

    logger.info("Fetching %s CRX for %s", args.crx_format, args.app_id)
    if args.crx_format != "crx2":
        logger.warning("crx3 packages are not signature checked")
    return fetch_crx(args.app_id, args.crx_format, timeout=args.timeout,
                     prodversion=args.prodversion)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING,
                        format="%(levelname)s: %(message)s")

    try:
        zip_file = load_archive(args)
    except OSError as err:  # CrxError, or an unreadable --crx-file
        print(f"Error fetching STH Set CRX: {err}", file=sys.stderr)
        return 1

    with zip_file:
        sths = collect_sths(zip_file, args.path_prefix)
    logger.info("Found %d STHs", len(sths))

    json.dump(build_pollen(sths), sys.stdout)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
