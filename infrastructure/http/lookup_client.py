import asyncio
import concurrent.futures
import threading
import xml.etree.ElementTree as ET
from typing import Callable, Optional, Union

import aiohttp

from domain.errors import ReverseLookupError
from domain.models.caller_id import LookupResult

TEL_NS = "http://tel.search.ch/api/spec/result/1.0/"
ATOM_NS = "http://www.w3.org/2005/Atom"
DEFAULT_URL = "https://tel.search.ch/api/"
SUPPORTED_PROVIDERS = ("searchch", "telsearch")


def _find_entry(root: ET.Element) -> Optional[ET.Element]:
    if root.tag in ("entry", f"{{{ATOM_NS}}}entry") or root.tag.endswith("}entry"):
        return root
    for path in (".//entry", f".//{{{ATOM_NS}}}entry", ".//{*}entry"):
        entry = root.find(path)
        if entry is not None:
            return entry
    return None


def _child_text(entry: ET.Element, local_name: str) -> Optional[str]:
    node = entry.find(f"{{{TEL_NS}}}{local_name}")
    if node is None:
        node = entry.find(f"{{*}}{local_name}")
    if node is None:
        return None
    text = "".join(node.itertext()).strip()
    return text or None


def parse_response(
    xml: Union[str, bytes], number: str, log: Callable[[str], None] = print
) -> Optional[LookupResult]:
    """
    Map a tel.search.ch XML answer to a LookupResult.
    Bytes are decoded by the XML parser itself (declared encoding, UTF-8 otherwise).
    Never raises: malformed payloads are logged and yield None.
    """
    try:
        root = ET.fromstring(xml)
        entry = _find_entry(root)
        if entry is None:
            log(f"ℹ️ search.ch has no entry for {number}")
            return None

        result = LookupResult(
            name=_child_text(entry, "name"),
            phone=_child_text(entry, "phone"),
            address=_child_text(entry, "street"),
            zip=_child_text(entry, "zip"),
            city=_child_text(entry, "city"),
            raw_source=xml.decode("utf-8", errors="replace") if isinstance(xml, bytes) else xml,
        )
    except Exception as e:
        log(f"❌ Failed to parse search.ch XML for {number}: {e}")
        return None

    if not result.has_identity:
        log(f"ℹ️ search.ch found no person/company details for {number}")
        return None

    log(f"✅ search.ch match → {result.summary()}")
    return result


class SearchChLookupClient:
    """
    tel.search.ch reverse lookup.

    The aiohttp session lives on a private event loop thread. Callers either
    block on lookup() or keep the Future returned by submit() and cancel it to
    abandon an in-flight request.
    """

    def __init__(
        self,
        api_key: str,
        log: Callable[[str], None] = print,
        *,
        enable: bool = True,
        base_url: str = DEFAULT_URL,
        timeout: float = 10.0,
        language: str = "en",
    ):
        self.api_key = (api_key or "").strip()
        self.log = log
        self.enable = enable
        self.base_url = base_url
        self.timeout = timeout
        self.language = language
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self._loop_thread: Optional[threading.Thread] = None
        self._session: Optional[aiohttp.ClientSession] = None
        self._lock = threading.Lock()
        self._warned_missing_key = False

    # === loop & session ===
    def _start_loop(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self.loop is None:
                self.loop = asyncio.new_event_loop()
                self._loop_thread = threading.Thread(
                    target=self._run_loop, name="LookupLoop", daemon=True
                )
                self._loop_thread.start()
            return self.loop

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
        return self._session

    async def _close_session(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    # === public api ===
    @property
    def active(self) -> bool:
        """True when a lookup would actually hit the network."""
        return self.enable and bool(self.api_key)

    def _skip_reason(self) -> Optional[str]:
        if not self.enable:
            return "🐞 Lookup is disabled via configuration."
        if not self.api_key:
            if self._warned_missing_key:
                return "🐞 Lookup skipped: no API key."
            self._warned_missing_key = True
            return "⚠️ SEARCH_CH_API_KEY is missing in configuration; lookups are skipped."
        return None

    async def lookup_async(self, number: str) -> Optional[LookupResult]:
        reason = self._skip_reason()
        if reason:
            self.log(reason)
            return None

        params = {"was": number, "key": self.api_key, "lang": self.language}
        self.log(f"🐞 Calling search.ch for {number}")
        session = await self._ensure_session()
        try:
            async with session.get(self.base_url, params=params) as response:
                if not 200 <= response.status < 300:
                    self.log(f"⚠️ search.ch returned status {response.status} for {number}")
                    return None
                xml = await response.read()
        except asyncio.TimeoutError as e:
            raise ReverseLookupError(f"search.ch timed out after {self.timeout}s") from e
        except aiohttp.ClientError as e:
            raise ReverseLookupError(f"search.ch request failed: {e}") from e

        return parse_response(xml, number, self.log)

    def submit(self, number: str) -> concurrent.futures.Future:
        """Schedule a lookup; cancelling the returned future aborts the request."""
        reason = self._skip_reason()
        if reason:
            self.log(reason)
            done: concurrent.futures.Future = concurrent.futures.Future()
            done.set_result(None)
            return done
        loop = self._start_loop()
        return asyncio.run_coroutine_threadsafe(self.lookup_async(number), loop)

    def lookup(self, number: str, timeout: Optional[float] = None) -> Optional[LookupResult]:
        """Blocking lookup bounded by `timeout` (defaults to the client timeout)."""
        future = self.submit(number)
        deadline = timeout if timeout is not None else self.timeout
        try:
            return future.result(timeout=deadline)
        except concurrent.futures.TimeoutError as e:
            future.cancel()
            raise ReverseLookupError(f"lookup for {number} exceeded {deadline}s") from e

    def close(self) -> None:
        with self._lock:
            loop, thread = self.loop, self._loop_thread
            self.loop = None
            self._loop_thread = None
        if loop is None:
            return
        try:
            asyncio.run_coroutine_threadsafe(self._close_session(), loop).result(timeout=3)
        except Exception as e:
            self.log(f"⚠️ Error closing lookup session: {e}")
        loop.call_soon_threadsafe(loop.stop)
        if thread:
            thread.join(timeout=3)
        loop.close()


def create_lookup_client(settings, log: Callable[[str], None] = print) -> SearchChLookupClient:
    """Pick the provider named in the settings. Unknown providers disable lookups."""
    provider = (settings.provider or "").strip().lower().replace("_", "").replace(".", "")
    enable = settings.enable
    if provider not in SUPPORTED_PROVIDERS:
        log(f"⚠️ Unknown lookup provider '{settings.provider}'; reverse lookup disabled.")
        enable = False
    return SearchChLookupClient(
        settings.api_key,
        log,
        enable=enable,
        base_url=settings.base_url,
        timeout=settings.timeout,
        language=settings.language,
    )
