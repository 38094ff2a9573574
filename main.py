import argparse
import signal
import sys
from threading import Event

from application.app_controller import AppController
from domain.errors import ConfigurationError
from infrastructure.config.loader import load_settings
from infrastructure.logging.log_sink import configure_logging


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Caller-ID gateway: listen to a modem or look up a single number."
    )
    parser.add_argument("number", nargs="?", help="look up this number and exit (modem is not opened)")
    parser.add_argument("--number", dest="number_opt", help="same as the positional number")
    parser.add_argument("--env-file", help="path to a .env file (default: search upwards from cwd)")
    return parser.parse_args(argv)


def run_lookup(ctrl: AppController, number: str) -> int:
    """Perform exactly one lookup, print it and exit."""
    try:
        result = ctrl.lookup_number(number)
        if result is None:
            print(f"No match for {ctrl.parser.normalize(number) or number}")
        else:
            print(result.summary())
        ctrl.log("Lookup completed. Exiting without opening the modem.")
    finally:
        ctrl.lookup.close()
    return 0


def run_headless(ctrl: AppController) -> int:
    """
    Run the listener until SIGINT/SIGTERM or until it gives up on the modem.
    """
    stop_event = Event()

    def _graceful(signum, _):
        ctrl.log(f"Signal {signum} received, shutting down…")
        stop_event.set()

    signal.signal(signal.SIGTERM, _graceful)
    signal.signal(signal.SIGINT, _graceful)

    ctrl.log("No CLI number provided. Starting modem listener...")
    handle = ctrl.start_listener()
    try:
        while not stop_event.is_set() and handle.is_alive():
            stop_event.wait(0.5)
    finally:
        ctrl.shutdown()
    return 1 if handle.error is not None else 0


def main(argv=None) -> int:
    args = parse_args(argv)
    try:
        settings = load_settings(args.env_file)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    configure_logging(settings.log_level)

    ctrl = AppController(settings)
    number = args.number_opt or args.number
    if number and number.strip():
        return run_lookup(ctrl, number)
    return run_headless(ctrl)


if __name__ == "__main__":
    sys.exit(main())
