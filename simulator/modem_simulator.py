# simulator/modem_simulator.py
"""
Fake Caller-ID modem. Writes RING + DATE/TIME/NMBR/NAME blocks to a serial port.

Pair it with the listener through a virtual null-modem, e.g.
    socat -d -d pty,raw,echo=0 pty,raw,echo=0
then point MODEM_PORT at one end and run this script on the other.
"""
import argparse
import random
import time
from datetime import datetime

import serial

DEFAULT_NUMBERS = ["+41791234567", "0041441234567", "0791234567", "P"]


def caller_id_block(number: str, name: str = "O", now: datetime = None) -> str:
    """One USR-style Caller-ID notification ('P' = private, 'O' = out of area)."""
    now = now or datetime.now()
    return (
        "\r\nRING\r\n\r\n"
        f"DATE = {now:%m%d}\r\n"
        f"TIME = {now:%H%M}\r\n"
        f"NMBR = {number}\r\n"
        f"NAME = {name}\r\n\r\n"
        "RING\r\n"
    )


def answer_commands(ser: serial.SerialBase) -> None:
    """Reply OK to whatever AT commands the listener sent."""
    waiting = ser.in_waiting
    if not waiting:
        return
    data = ser.read(waiting).decode("ascii", errors="replace")
    for cmd in data.replace("\n", "\r").split("\r"):
        if cmd.strip().upper().startswith("AT"):
            print(f"[sim] <- {cmd.strip()}")
            ser.write(b"\r\nOK\r\n")


def run(port: str, numbers, interval: float, count: int, garbage: bool) -> None:
    with serial.serial_for_url(port, baudrate=115200, timeout=0.5) as ser:
        print(f"[sim] Fake modem on {port}, a call every {interval}s")
        sent = 0
        while count <= 0 or sent < count:
            deadline = time.monotonic() + interval
            while time.monotonic() < deadline:
                answer_commands(ser)
                time.sleep(0.1)
            if garbage and random.random() < 0.3:
                ser.write(b"\r\n\x00\xffNMBR\r\n")
                print("[sim] -> garbage")
            number = numbers[sent % len(numbers)]
            ser.write(caller_id_block(number).encode("ascii"))
            print(f"[sim] -> call from {number}")
            sent += 1


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Fake Caller-ID modem")
    parser.add_argument("port", help="serial port or pyserial URL to write to")
    parser.add_argument("--number", action="append", dest="numbers", help="caller number (repeatable)")
    parser.add_argument("--interval", type=float, default=5.0, help="seconds between calls")
    parser.add_argument("--count", type=int, default=0, help="stop after N calls (0 = forever)")
    parser.add_argument("--garbage", action="store_true", help="inject malformed lines now and then")
    args = parser.parse_args(argv)
    try:
        run(args.port, args.numbers or DEFAULT_NUMBERS, args.interval, args.count, args.garbage)
    except KeyboardInterrupt:
        print("[sim] stopped")


if __name__ == "__main__":
    main()
