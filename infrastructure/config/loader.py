# config/loader.py
import os
from dataclasses import dataclass, field
from typing import Callable, Optional

from dotenv import load_dotenv, find_dotenv

from domain.errors import ConfigurationError
from domain.models.device_config import DeviceConfiguration, Parity, ReconnectPolicy, StopBits
from domain.services.caller_id_parser import DEFAULT_COUNTRY_CODE, normalize_country_code
from infrastructure.http.lookup_client import DEFAULT_URL
from infrastructure.logging.log_sink import make_log


@dataclass(frozen=True)
class LookupSettings:
    enable: bool = True
    provider: str = "SearchCh"
    api_key: str = ""
    country_code: str = DEFAULT_COUNTRY_CODE
    base_url: str = DEFAULT_URL
    timeout: float = 10.0
    language: str = "en"


@dataclass(frozen=True)
class ListenerSettings:
    lookup_timeout: float = 10.0
    reconnect: ReconnectPolicy = field(default_factory=ReconnectPolicy)


@dataclass(frozen=True)
class MqttSettings:
    host: str = ""
    port: int = 1883
    user: str = ""
    password: str = ""
    topic_prefix: str = "callerid"
    client_id: str = ""

    @property
    def enabled(self) -> bool:
        return bool(self.host)


@dataclass(frozen=True)
class Settings:
    modem: DeviceConfiguration
    lookup: LookupSettings = field(default_factory=LookupSettings)
    listener: ListenerSettings = field(default_factory=ListenerSettings)
    mqtt: MqttSettings = field(default_factory=MqttSettings)
    log_level: str = "INFO"


# -----------------------------
# Environment
# -----------------------------
def load_env(path: Optional[str] = None) -> Optional[str]:
    """Load variables from a .env file if one is found. Existing variables win."""
    dotenv_path = path or find_dotenv(usecwd=True)
    if dotenv_path and os.path.exists(dotenv_path):
        load_dotenv(dotenv_path)
        return dotenv_path
    return None


def _get_str(name: str, default: str = "") -> str:
    value = os.getenv(name)
    return default if value is None else value.strip()


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {raw!r}")


def _get_commands(name: str, default: tuple) -> tuple:
    raw = os.getenv(name)
    if raw is None:
        return default
    return tuple(cmd.strip() for cmd in raw.split(";") if cmd.strip())


# -----------------------------
# Sections
# -----------------------------
def load_modem_config() -> DeviceConfiguration:
    defaults = DeviceConfiguration(port="COM3")
    return DeviceConfiguration(
        port=_get_str("MODEM_PORT", defaults.port),
        baudrate=_get_int("MODEM_BAUDRATE", defaults.baudrate),
        parity=Parity.parse(os.getenv("MODEM_PARITY"), defaults.parity),
        data_bits=_get_int("MODEM_DATA_BITS", defaults.data_bits),
        stop_bits=StopBits.parse(os.getenv("MODEM_STOP_BITS"), defaults.stop_bits),
        read_timeout=_get_int("MODEM_READ_TIMEOUT_MS", 500) / 1000.0,
        write_timeout=_get_int("MODEM_WRITE_TIMEOUT_MS", 500) / 1000.0,
        init_commands=_get_commands("MODEM_INIT_COMMANDS", defaults.init_commands),
    )


def _read_lookup_settings() -> LookupSettings:
    country_code = normalize_country_code(_get_str("LOOKUP_COUNTRY_CODE", DEFAULT_COUNTRY_CODE))
    if not country_code:
        raise ConfigurationError("LOOKUP_COUNTRY_CODE must contain a dialling code such as +41")
    return LookupSettings(
        enable=_get_bool("LOOKUP_ENABLE", True),
        provider=_get_str("LOOKUP_PROVIDER", "SearchCh"),
        api_key=_get_str("SEARCH_CH_API_KEY", ""),
        country_code=country_code,
        base_url=_get_str("LOOKUP_URL", DEFAULT_URL),
        timeout=_get_float("LOOKUP_TIMEOUT", 10.0),
        language=_get_str("LOOKUP_LANG", "en"),
    )


def load_lookup_settings(log: Optional[Callable[[str], None]] = None) -> LookupSettings:
    """
    Lookup settings. Invalid values only switch the reverse lookup off;
    the listener still runs with the default country code.
    """
    try:
        return _read_lookup_settings()
    except ConfigurationError as e:
        (log or make_log("callerid.config"))(f"⚠️ {e}; reverse lookup disabled.")
        return LookupSettings(enable=False, api_key=_get_str("SEARCH_CH_API_KEY", ""))


def load_listener_settings(lookup_timeout: float = 10.0) -> ListenerSettings:
    retries = _get_int("MODEM_RECONNECT_RETRIES", 3)
    if retries < 0:
        raise ConfigurationError("MODEM_RECONNECT_RETRIES must be >= 0")
    return ListenerSettings(
        lookup_timeout=lookup_timeout,
        reconnect=ReconnectPolicy(
            max_retries=retries,
            initial_delay=_get_float("MODEM_RECONNECT_DELAY", 2.0),
        ),
    )


def load_mqtt_settings() -> MqttSettings:
    return MqttSettings(
        host=_get_str("MQTT_HOST", ""),
        port=_get_int("MQTT_PORT", 1883),
        user=_get_str("MQTT_USER", ""),
        password=_get_str("MQTT_PASS", ""),
        topic_prefix=_get_str("MQTT_TOPIC_PREFIX", "callerid").strip("/") or "callerid",
        client_id=_get_str("MQTT_CLIENT_ID", ""),
    )


def load_settings(env_file: Optional[str] = None, log: Optional[Callable[[str], None]] = None) -> Settings:
    """
    Load .env (if any) and build the typed settings of every component.
    Raises ConfigurationError for modem, listener or MQTT values that make a run impossible.
    """
    load_env(env_file)
    lookup = load_lookup_settings(log)
    return Settings(
        modem=load_modem_config(),
        lookup=lookup,
        listener=load_listener_settings(lookup.timeout),
        mqtt=load_mqtt_settings(),
        log_level=_get_str("LOG_LEVEL", "INFO").upper() or "INFO",
    )
