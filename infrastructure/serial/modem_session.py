import queue
import threading
import time
from typing import Callable, Iterable, Iterator, Optional

import serial

from domain.errors import DeviceUnavailable, DeviceWriteFailure
from domain.models.device_config import DeviceConfiguration, Parity, SessionState, StopBits

_PARITY = {
    Parity.NONE: serial.PARITY_NONE,
    Parity.ODD: serial.PARITY_ODD,
    Parity.EVEN: serial.PARITY_EVEN,
    Parity.MARK: serial.PARITY_MARK,
    Parity.SPACE: serial.PARITY_SPACE,
}

_STOP_BITS = {
    StopBits.ONE: serial.STOPBITS_ONE,
    StopBits.ONE_POINT_FIVE: serial.STOPBITS_ONE_POINT_FIVE,
    StopBits.TWO: serial.STOPBITS_TWO,
}

_END = object()


class ModemSession:
    """
    Owns the serial channel of the Caller-ID modem.

    open() -> send_init() -> notifications() -> close(). A reader thread pushes
    decoded chunks into a queue; whoever iterates notifications() is the only
    consumer. Reads and writes share one lock so init commands never interleave
    with notification delivery.
    """

    init_pause = 0.1
    poll_interval = 0.2
    read_poll = 0.02

    def __init__(self, config: DeviceConfiguration, log: Callable[[str], None] = print):
        self.config = config
        self.log = log
        self._serial: Optional[serial.SerialBase] = None
        self._state = SessionState.CLOSED
        self._state_lock = threading.Lock()
        self._io_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._queue: "queue.Queue" = queue.Queue()
        self._reader: Optional[threading.Thread] = None
        self._streaming = False
        self.last_error: Optional[Exception] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is SessionState.OPEN

    # ---------------------------
    # Life cycle
    # ---------------------------
    def open(self) -> None:
        with self._state_lock:
            if self._state is SessionState.OPEN:
                return
            self._state = SessionState.OPENING

        cfg = self.config
        try:
            if cfg.stop_bits not in _STOP_BITS:
                raise ValueError(f"stop bits '{cfg.stop_bits.value}' not supported by the serial driver")
            ser = serial.serial_for_url(cfg.port, do_not_open=True)
            ser.baudrate = cfg.baudrate
            ser.bytesize = cfg.data_bits
            ser.parity = _PARITY[cfg.parity]
            ser.stopbits = _STOP_BITS[cfg.stop_bits]
            ser.timeout = cfg.read_timeout
            ser.write_timeout = cfg.write_timeout
            ser.open()
        except (serial.SerialException, ValueError, OSError) as e:
            self.last_error = e
            self._state = SessionState.FAULTED
            raise DeviceUnavailable(cfg.port, str(e)) from e

        self._serial = ser
        self._stop_event.clear()
        self._queue = queue.Queue()
        self._streaming = False
        self.last_error = None
        self._state = SessionState.OPEN
        self.log(f"✅ Serial port {cfg.port} opened @ {cfg.baudrate}")

    def close(self) -> None:
        with self._state_lock:
            if self._state in (SessionState.CLOSED, SessionState.CLOSING):
                return
            self._state = SessionState.CLOSING

        self._stop_event.set()
        ser = self._serial
        if ser is not None:
            cancel_read = getattr(ser, "cancel_read", None)
            if cancel_read is not None:
                try:
                    cancel_read()
                except Exception as e:
                    self.log(f"⚠️ cancel_read failed on {self.config.port}: {e}")

        if self._reader and self._reader.is_alive() and threading.current_thread() is not self._reader:
            self._reader.join(timeout=self.config.read_timeout + 1.0)
        self._reader = None

        if ser is not None:
            try:
                ser.close()
                self.log(f"⏹️ Serial port {self.config.port} closed.")
            except Exception as e:
                self.log(f"⚠️ Error closing {self.config.port}: {e}")
        self._serial = None
        self._queue.put(_END)
        self._state = SessionState.CLOSED

    # ---------------------------
    # Commands
    # ---------------------------
    def send_init(self, commands: Optional[Iterable[str]] = None) -> None:
        """Write each init command terminated by CR, pausing briefly between them."""
        if commands is None:
            commands = self.config.init_commands
        for cmd in commands:
            if not cmd or not cmd.strip():
                continue
            self.write_line(cmd.strip())
            self.log(f"🐞 Sent modem command: {cmd.strip()}")
            self._stop_event.wait(self.init_pause)

    def write_line(self, line: str) -> None:
        ser = self._serial
        if ser is None or self._state is not SessionState.OPEN:
            raise DeviceWriteFailure(f"{self.config.port} is not open ({self._state.value})")
        try:
            with self._io_lock:
                ser.write(f"{line}\r".encode("ascii"))
                ser.flush()
        except (serial.SerialException, OSError, UnicodeEncodeError) as e:
            self._fault(e)
            raise DeviceWriteFailure(f"write to {self.config.port} failed: {e}") from e

    # ---------------------------
    # Notifications
    # ---------------------------
    def notifications(self) -> Iterator[str]:
        """
        Lazy stream of raw text chunks. Ends once the session leaves OPEN.
        Only one stream per opened session.
        """
        if self._state is not SessionState.OPEN:
            return iter(())
        if self._streaming:
            raise RuntimeError(f"notification stream of {self.config.port} already started")
        self._streaming = True
        self._reader = threading.Thread(
            target=self._read_loop, name=f"ModemReader[{self.config.port}]", daemon=True
        )
        self._reader.start()
        return self._iter_chunks(self._queue)

    def _iter_chunks(self, chunks: "queue.Queue") -> Iterator[str]:
        while True:
            try:
                item = chunks.get(timeout=self.poll_interval)
            except queue.Empty:
                if self._state is not SessionState.OPEN:
                    return
                continue
            if item is _END or self._state is not SessionState.OPEN:
                return
            yield item

    def _read_loop(self) -> None:
        ser = self._serial
        pending = ""
        last_rx = time.monotonic()
        while not self._stop_event.is_set():
            try:
                # the lock covers only bytes already buffered, never a blocking read
                with self._io_lock:
                    waiting = ser.in_waiting
                    data = ser.read(waiting) if waiting else b""
            except Exception as e:
                if self._stop_event.is_set():
                    break
                self._fault(e)
                break

            if data:
                last_rx = time.monotonic()
                pending += data.decode("ascii", errors="replace")
                cut = max(pending.rfind("\n"), pending.rfind("\r"))
                if cut >= 0:
                    self._emit(pending[:cut + 1])
                    pending = pending[cut + 1:]
                continue

            # a partial tail is flushed once the line stayed quiet for read_timeout
            if pending and time.monotonic() - last_rx >= self.config.read_timeout:
                self._emit(pending)
                pending = ""
            self._stop_event.wait(self.read_poll)

        self._queue.put(_END)

    def _emit(self, chunk: str) -> None:
        if chunk.strip():
            self._queue.put(chunk)

    def _fault(self, error: Exception) -> None:
        with self._state_lock:
            if self._state is SessionState.OPEN:
                self._state = SessionState.FAULTED
        self.last_error = error
        self.log(f"❌ Device error on {self.config.port}: {error}")
