from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple


class Parity(Enum):
    NONE = "none"
    ODD = "odd"
    EVEN = "even"
    MARK = "mark"
    SPACE = "space"

    @classmethod
    def parse(cls, value, default: "Parity" = None) -> "Parity":
        """Case-insensitive lookup; unknown text falls back to `default` (NONE)."""
        if isinstance(value, cls):
            return value
        key = str(value or "").strip().lower()
        for member in cls:
            if member.value == key:
                return member
        return default or cls.NONE


class StopBits(Enum):
    NONE = "none"
    ONE = "one"
    TWO = "two"
    ONE_POINT_FIVE = "onepointfive"

    @classmethod
    def parse(cls, value, default: "StopBits" = None) -> "StopBits":
        """Accepts 'One', 'OnePointFive', 'one_point_five', '1', '1.5', '2'..."""
        if isinstance(value, cls):
            return value
        key = str(value or "").strip().lower().replace("_", "").replace("-", "")
        aliases = {"0": cls.NONE, "1": cls.ONE, "2": cls.TWO, "1.5": cls.ONE_POINT_FIVE}
        if key in aliases:
            return aliases[key]
        for member in cls:
            if member.value == key:
                return member
        return default or cls.ONE


class SessionState(Enum):
    CLOSED = "closed"
    OPENING = "opening"
    OPEN = "open"
    CLOSING = "closing"
    FAULTED = "faulted"


@dataclass(frozen=True)
class DeviceConfiguration:
    """
    Serial parameters of the Caller-ID modem.
    `port` is anything pyserial understands: '/dev/ttyACM0', 'COM3', 'loop://'.
    Timeouts are in seconds.
    """
    port: str
    baudrate: int = 115200
    parity: Parity = Parity.NONE
    data_bits: int = 8
    stop_bits: StopBits = StopBits.ONE
    read_timeout: float = 0.5
    write_timeout: float = 0.5
    init_commands: Tuple[str, ...] = ("ATZ", "AT+VCID=1")


@dataclass(frozen=True)
class ReconnectPolicy:
    """
    Bounded retry with exponential backoff.
    max_retries=0 means fail-fast: the first failure ends the run.
    The retry count starts over once a session stayed up for `reset_after` seconds.
    """
    max_retries: int = 3
    initial_delay: float = 2.0
    backoff: float = 2.0
    max_delay: float = 30.0
    reset_after: float = 60.0

    @classmethod
    def fail_fast(cls) -> "ReconnectPolicy":
        return cls(max_retries=0)

    def delay_for(self, attempt: int) -> Optional[float]:
        """Seconds to wait before retry number `attempt` (0-based), None once exhausted."""
        if attempt >= self.max_retries:
            return None
        return min(self.initial_delay * (self.backoff ** attempt), self.max_delay)
