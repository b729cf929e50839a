import base64
import enum
import os
import re
from urllib.parse import unquote_to_bytes, urljoin, urlparse

import requests
import urllib3
from bs4 import BeautifulSoup


DEFAULT_TIMEOUT = 30
PROXY_SCHEMES = ("http", "https", "socks4", "socks5", "socks5h")

INVALID_FILE_NAME_CHARS = re.compile(r'([<>:"/\\|?*\x00-\x1f]*\.+$)|([<>:"/\\|?*\x00-\x1f]+)')


class SOURCEMAP_TYPE(enum.Enum):
    JS = "js"
    CSS = "css"

    @property
    def mime_type(self) -> str:
        return "application/javascript" if self is SOURCEMAP_TYPE.JS else "text/css"

    @property
    def marker(self):
        if self is SOURCEMAP_TYPE.JS:
            return re.compile(r"//[#@] sourceMappingURL=")
        return re.compile(r"/\*[#@] sourceMappingURL=")


class FetchError(Exception):
    def __init__(self, url, reason) -> None:
        super().__init__(f"Failed to get content from {url}: {reason}")
        self.url = url
        self.reason = reason


class FetchOptions:
    def __init__(self, headers=None, proxy=None, insecure=False, timeout=DEFAULT_TIMEOUT) -> None:
        """Request settings shared by every download of a run

        Args:
            `headers` (`list`, optional): `(name, value)` pairs sent with every request
            `proxy` (`str`, optional): proxy URL used for both http and https
            `insecure` (`bool`, optional): skip TLS certificate verification. Defaults to `False`.
            `timeout` (`float`, optional): seconds to wait for the server. Defaults to `DEFAULT_TIMEOUT`.
        """
        self.headers = list(headers or [])
        self.proxy = proxy
        self.insecure = insecure
        self.timeout = timeout


def parse_header(value):
    """Split a `NAME: VALUE` command line header

    Raises:
        ValueError: there is no colon or the name is empty

    Returns:
        `tuple`: `(name, value)`
    """
    name, sep, header_value = value.partition(":")
    if not sep or not name.strip():
        raise ValueError(f"'{value}' is not a valid header, expected 'NAME: VALUE'")
    return name.strip(), header_value.strip()


def is_valid_proxy(url) -> bool:
    parsed = urlparse(url)
    return parsed.scheme.lower() in PROXY_SCHEMES and bool(parsed.netloc)


class Fetcher:
    def __init__(self, options=None, session=None) -> None:
        self.options = options or FetchOptions()
        self.session = session or requests.Session()
        self.session.headers.update(dict(self.options.headers))
        self.session.verify = not self.options.insecure
        if self.options.proxy:
            self.session.proxies = {
                "http": self.options.proxy,
                "https": self.options.proxy,
            }
        if self.options.insecure:
            urllib3.disable_warnings()

    def _has_custom_accept(self) -> bool:
        return any(name.lower() == "accept" for name, _ in self.options.headers)

    def fetch(self, url, accept=None) -> str:
        """GET `url` and return the body text

        Args:
            `url` (`str`): the URL
            `accept` (`str`, optional): mime type for the `Accept` header, unless
                the user passed one with `--header`

        Raises:
            FetchError: the request failed or the status is not a success

        Returns:
            `str`: the response body
        """
        headers = {}
        if accept and not self._has_custom_accept():
            headers["Accept"] = accept
        try:
            res = self.session.get(url, headers=headers, timeout=self.options.timeout)
        except requests.RequestException as e:
            raise FetchError(url, e) from e
        if not res.ok:
            raise FetchError(url, f"HTTP {res.status_code} {res.reason}")
        if "charset" not in res.headers.get("Content-Type", "").lower():
            res.encoding = "utf-8"
        return res.text


def get_linked_files(html, base_url) -> list:
    """Get the JS and CSS files linked in an HTML page

    Args:
        `html` (`str`): the HTML response
        `base_url` (`str`): URL of the page, relative links are resolved against it

    Returns:
        `list`: `(url, SOURCEMAP_TYPE)` tuples in document order, without duplicates
    """
    soup = BeautifulSoup(html, "html.parser")
    files = []
    for tag in soup.find_all(["script", "link"]):
        if tag.name == "script":
            link = tag.get("src")
            type = SOURCEMAP_TYPE.JS
        else:
            rel = [r.lower() for r in tag.get("rel") or []]
            if "stylesheet" not in rel:
                continue
            link = tag.get("href")
            type = SOURCEMAP_TYPE.CSS
        if not link or not link.strip():
            continue
        file = (resolve_url(link.strip(), base_url), type)
        if file not in files:
            files.append(file)
    return files


def get_source_map_url(content, type):
    """Extract the `sourceMappingURL` annotation from a JS or CSS file

    The last annotation wins, bundles may carry the marker inside string
    literals before the real one at the end of the file.

    Args:
        `content` (`str`): the file content
        `type` (`SOURCEMAP_TYPE`): which comment syntax to look for

    Returns:
        `str`: the source map URL as written in the file, or `None`
    """
    matches = list(type.marker.finditer(content))
    if not matches:
        return None
    url = content[matches[-1].end():]
    if type is SOURCEMAP_TYPE.CSS:
        end = url.find("*/")
        if end != -1:
            url = url[:end]
    url = url.strip()
    if not url:
        return None
    return url.split()[0]


def resolve_url(url, base_url) -> str:
    """Resolve `url` against `base_url` unless it is already absolute or a `data:` URI"""
    if url.startswith("data:"):
        return url
    return urljoin(base_url, url)


def decode_data_uri(uri) -> str:
    """Decode an inline `data:` source map

    Raises:
        ValueError: `uri` is not a valid data URI
    """
    header, sep, payload = uri.partition(",")
    if not header.startswith("data:") or not sep:
        raise ValueError("malformed data URI")
    params = [p.strip().lower() for p in header[len("data:"):].split(";")]
    charset = "utf-8"
    for param in params:
        if param.startswith("charset="):
            charset = param[len("charset="):]
    if "base64" in params:
        raw = base64.b64decode(unquote_to_bytes(payload), validate=False)
    else:
        raw = unquote_to_bytes(payload)
    try:
        return raw.decode(charset)
    except LookupError as e:
        raise ValueError(f"unknown charset '{charset}'") from e


def url_file_name(url) -> str:
    """Returns a file name to save the content of `url` under

    Args:
        `url` (`str`): the URL

    Returns:
        `str`: file name, `index.html` for URLs without one
    """
    file_name = os.path.basename(urlparse(url).path)
    if not file_name.strip():
        file_name = "index.html"
    file_name = INVALID_FILE_NAME_CHARS.sub("_", file_name)
    if not os.path.splitext(file_name)[1]:
        file_name += ".html"
    return file_name
