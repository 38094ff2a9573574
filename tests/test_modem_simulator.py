from datetime import datetime

from domain.services.caller_id_parser import CallerIdParser
from simulator.modem_simulator import caller_id_block


def test_simulated_block_parses_to_the_number():
    block = caller_id_block("0791234567", now=datetime(2024, 3, 21, 14, 5))
    assert "DATE = 0321" in block
    assert "TIME = 1405" in block
    assert CallerIdParser("+41").parse(block) == "+41791234567"


def test_private_caller_yields_no_number():
    assert CallerIdParser("+41").parse(caller_id_block("P")) is None
