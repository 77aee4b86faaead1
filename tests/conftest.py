import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).parent / ".."))
import tomasulo_core as tc


@pytest.fixture
def regfile():
    return tc.RegisterFile()


@pytest.fixture
def status(regfile):
    return tc.RegisterStatusTable(regfile)


@pytest.fixture
def pool(status):
    return tc.FunctionalUnitPool(status)


@pytest.fixture
def asm(regfile):
    return tc.Assembler(regfile)


@pytest.fixture
def log(pool, status):
    return tc.InstructionStatusLog(pool, status)
