from typing import Optional, Union
from urllib.parse import urlencode, urlunsplit
from zipfile import ZipFile

import requests

from crx_archive import Crx2Header, parse_crx
from crx_errors import DownloadReadFailed, FetchFailed, MalformedHeader


UPDATE_HOST = "clients2.google.com"
UPDATE_PATH = "/service/update2/crx"

# The update server only hands out CRX3 to clients that report a recent version.
DEFAULT_PRODVERSION = "119.0.6045.0"

CRX_FORMATS = ("crx2", "crx3")


def build_crx_url(app_id: str, crx_format: str = "crx2",
                  prodversion: str = DEFAULT_PRODVERSION) -> str:
    """Return a URL from which the latest version of a CRX can be fetched."""
    if crx_format == "crx2":
        scheme = "http"
        args = {
            "response": "redirect",
            "x": f"id={app_id}&uc",
        }
    elif crx_format == "crx3":
        scheme = "https"
        args = {
            "acceptformat": "crx2,crx3",
            "prodversion": prodversion,
            "response": "redirect",
            "x": f"id={app_id}&uc",
        }
    else:
        raise ValueError(f"Unknown CRX format: {crx_format}")

    return urlunsplit((scheme, UPDATE_HOST, UPDATE_PATH, urlencode(args), ""))


def download_crx(url: str, session: Optional[requests.Session] = None,
                 timeout: Union[float, tuple, None] = None) -> bytes:
    """GET url and return the whole body."""
    http = session if session is not None else requests
    try:
        response = http.get(url, stream=True, timeout=timeout)
    except requests.RequestException as err:
        raise FetchFailed(f"Failed to get CRX: {err}") from err

    with response:
        try:
            response.raise_for_status()
        except requests.RequestException as err:
            raise FetchFailed(f"Failed to get CRX: {err}") from err

        # zipfile needs to seek around, so the whole reply is read into memory.
        try:
            return response.content
        except (requests.RequestException, OSError) as err:
            raise DownloadReadFailed(f"Failed to download CRX: {err}") from err


def fetch_crx(app_id: str, crx_format: str = "crx2",
              session: Optional[requests.Session] = None,
              timeout: Union[float, tuple, None] = None,
              prodversion: str = DEFAULT_PRODVERSION) -> ZipFile:
    """Download the CRX for app_id and return its ZIP payload.

    A crx2 request only accepts a CRXv2 reply, which is authenticated against
    app_id before the archive is opened. A crx3 request also accepts CRXv3,
    which is only checked for structure: its header block is skipped and the
    payload is returned unauthenticated.
    """
    url = build_crx_url(app_id, crx_format, prodversion=prodversion)
    crx_bytes = download_crx(url, session=session, timeout=timeout)

    package = parse_crx(crx_bytes)
    if crx_format == "crx2" and not isinstance(package.header, Crx2Header):
        raise MalformedHeader(
            f"Expected CRXv2, got version {package.header.version}")
    package.verify(app_id)
    return package.open_zip()
