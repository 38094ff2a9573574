# listener_service.py
import concurrent.futures
import threading
import time
from typing import Callable, Optional

from domain.errors import CallerIdError, DeviceUnavailable, DeviceWriteFailure, ReverseLookupError
from domain.models.caller_id import CallerIdEvent, LookupResult
from domain.models.device_config import ReconnectPolicy, SessionState
from domain.services.caller_id_parser import CallerIdParser

ResultSink = Callable[[CallerIdEvent, Optional[LookupResult]], None]


class ListenerHandle:
    """Owner's view of a running listener: stop it, wait for it, read why it ended."""

    def __init__(self, service: "ListenerService", thread: threading.Thread):
        self._service = service
        self._thread = thread

    @property
    def error(self) -> Optional[CallerIdError]:
        return self._service.error

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the listener ends. Returns False if still running after `timeout`."""
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def stop(self, timeout: Optional[float] = 5.0) -> bool:
        self._service.stop()
        return self.wait(timeout)


class ListenerService:
    """
    Binds the modem session to the parser and the reverse lookup.

    Runs in one background thread: open -> init -> consume notifications.
    Chunks are handled one at a time; a failing chunk is logged and skipped.
    Device failures follow the reconnect policy and end the run once it is
    exhausted (see `error`).
    """

    def __init__(
        self,
        session,
        parser: CallerIdParser,
        lookup_client,
        *,
        log: Callable[[str], None] = print,
        on_result: Optional[ResultSink] = None,
        lookup_timeout: float = 10.0,
        reconnect: Optional[ReconnectPolicy] = None,
    ):
        self.session = session
        self.parser = parser
        self.lookup_client = lookup_client
        self.log = log
        self.on_result = on_result or self._log_result
        self.lookup_timeout = lookup_timeout
        self.reconnect = reconnect or ReconnectPolicy()
        self.error: Optional[CallerIdError] = None
        self._stop_event = threading.Event()
        self._pending_lock = threading.Lock()
        self._pending: Optional[concurrent.futures.Future] = None
        self._thread: Optional[threading.Thread] = None
        self._handle: Optional[ListenerHandle] = None

    # ---------------------------
    # Life cycle
    # ---------------------------
    def start(self) -> ListenerHandle:
        if self._thread and self._thread.is_alive():
            self.log("⚠️ Listener already running")
            return self._handle
        self._stop_event.clear()
        self.error = None
        self._thread = threading.Thread(target=self._run, name="CallerIdListener", daemon=True)
        self._handle = ListenerHandle(self, self._thread)
        self._thread.start()
        return self._handle

    def stop(self) -> None:
        self._stop_event.set()
        with self._pending_lock:
            pending = self._pending
        if pending is not None:
            pending.cancel()
        self.session.close()

    def _run(self) -> None:
        attempt = 0
        try:
            while not self._stop_event.is_set():
                try:
                    self.session.open()
                    self.session.send_init()
                except (DeviceUnavailable, DeviceWriteFailure) as e:
                    self.session.close()
                    if self._stop_event.is_set():
                        break
                    if not self._wait_before_retry(e, attempt):
                        return
                    attempt += 1
                    continue

                opened_at = time.monotonic()
                if self._stop_event.is_set():
                    break
                self.log(f"📞 Listening for calls on {self._port_name()}...")
                for chunk in self.session.notifications():
                    if self._stop_event.is_set():
                        break
                    self._handle_chunk(chunk)

                if self._stop_event.is_set():
                    break
                if self.session.state is SessionState.FAULTED:
                    cause = getattr(self.session, "last_error", None)
                    error = DeviceWriteFailure(f"device fault on {self._port_name()}: {cause}")
                    self.session.close()
                    if time.monotonic() - opened_at >= self.reconnect.reset_after:
                        attempt = 0
                    if not self._wait_before_retry(error, attempt):
                        return
                    attempt += 1
                    continue
                # stream ended without a fault: session was closed under us
                break
        finally:
            self.session.close()
            self.log("⏹️ Listener stopped.")

    def _wait_before_retry(self, error: CallerIdError, attempt: int) -> bool:
        delay = self.reconnect.delay_for(attempt)
        if delay is None:
            self.error = error
            self.log(f"❌ Fatal modem error, giving up: {error}")
            return False
        self.log(f"⚠️ Modem unavailable ({error}); retrying in {delay:.1f}s")
        return not self._stop_event.wait(delay)

    def _port_name(self) -> str:
        config = getattr(self.session, "config", None)
        return getattr(config, "port", "modem")

    # ---------------------------
    # Per-chunk processing
    # ---------------------------
    def _handle_chunk(self, chunk: str) -> None:
        event = CallerIdEvent(raw=chunk)
        self.log(f"🐞 MODEM RAW: {chunk!r}")
        try:
            event.number = self.parser.parse(chunk)
            if not event.number:
                return
            self.log(f"📞 Incoming call from: {event.number}")
            result = self._lookup(event.number)
            if self._stop_event.is_set():
                return
            self.on_result(event, result)
        except Exception as e:
            self.log(f"❌ Error while processing serial data: {e}")

    def _lookup(self, number: str) -> Optional[LookupResult]:
        future = self.lookup_client.submit(number)
        with self._pending_lock:
            self._pending = future
        # stop() may have run between submit and registration
        if self._stop_event.is_set():
            future.cancel()
        try:
            return future.result(timeout=self.lookup_timeout)
        except concurrent.futures.CancelledError:
            self.log(f"⚠️ Lookup for {number} cancelled")
        except concurrent.futures.TimeoutError:
            future.cancel()
            self.log(f"⚠️ Lookup for {number} exceeded {self.lookup_timeout}s")
        except ReverseLookupError as e:
            self.log(f"⚠️ Lookup for {number} failed: {e}")
        finally:
            with self._pending_lock:
                self._pending = None
        return None

    def _log_result(self, event: CallerIdEvent, result: Optional[LookupResult]) -> None:
        if result is None:
            self.log(f"⚠️ No result for {event.number}")
        else:
            self.log(f"✅ Match → {result.summary()}")
