#!pytest
import pytest

import tomasulo_core as tc


def test_issue_binds_values_when_sources_ready(pool, asm):
    unit = pool["Add0"]
    instr = asm.ADDD("F10", "F12", "F8")
    assert unit.issue(instr) is unit
    assert unit.busy
    assert unit.op == "ADD.D"
    assert unit.instruction is instr
    assert unit.Vj == tc.Address("F12")
    assert unit.Vk == tc.Address("F8")
    assert unit.Qj is None and unit.Qk is None
    assert unit.A is None


def test_issue_busy_unit_fails(pool, asm):
    unit = pool["Add0"]
    first = asm.ADDD("F10", "F12", "F8")
    unit.issue(first)
    assert unit.issue(asm.SUBD("F8", "F2", "F6")) is None
    assert unit.instruction is first


def test_issue_records_tag_for_pending_source(pool, status, asm):
    producer = pool["Load1"]
    status.set_tag("F2", producer)
    unit = pool["Mult0"]
    unit.issue(asm.MULD("F0", "F2", "F4"))
    assert unit.Qj is producer
    assert unit.Vj is None
    assert unit.Vk == tc.Address("F4")
    assert unit.Qk is None


def test_issue_pending_second_operand_goes_to_qk(pool, status, asm):
    producer = pool["Load0"]
    status.set_tag("F6", producer)
    unit = pool["Add0"]
    unit.issue(asm.SUBD("F8", "F2", "F6"))
    assert unit.Vj == tc.Address("F2")
    assert unit.Qj is None
    assert unit.Qk is producer
    assert unit.Vk is None


def test_issue_both_pending(pool, status, asm):
    status.set_tag("F0", pool["Mult0"])
    status.set_tag("F6", pool["Load0"])
    unit = pool["Mult1"]
    unit.issue(asm.DIVD("F10", "F0", "F6"))
    assert unit.Qj is pool["Mult0"]
    assert unit.Qk is pool["Load0"]
    assert unit.Vj is None and unit.Vk is None


def test_store_issue_sets_address(pool, status, asm):
    status.set_tag("F6", pool["Add2"])
    unit = pool["Store0"]
    unit.issue(asm.SD("F6", "R2", 32))
    assert unit.A == tc.Address("R2", 32)
    assert str(unit.A) == "Regs[R2] + 32"
    assert unit.Qj is pool["Add2"]


def test_load_execute_two_phase(pool, asm):
    unit = pool["Load0"]
    unit.issue(asm.LD("F6", "R2", 32))
    assert unit.address_pending
    assert unit.execute() is None
    assert unit.A == tc.Address("R2", 32)
    assert not unit.result
    assert unit.execute() is unit
    assert unit.result is True
    assert unit.Vj is None and unit.Vk is None


def test_execute_not_ready_with_pending_tag(pool, status, asm):
    status.set_tag("F2", pool["Load1"])
    unit = pool["Mult0"]
    unit.issue(asm.MULD("F0", "F2", "F4"))
    assert unit.execute() is None
    assert unit.result is None
    assert not unit.ready


def test_execute_idle_unit_is_noop(pool):
    unit = pool["Add0"]
    assert unit.execute() is None
    assert not unit.busy
    assert unit.result is None


def test_resolve_clears_matching_tags(pool, status, asm):
    producer = pool["Load0"]
    status.set_tag("F2", producer)
    unit = pool["Add0"]
    unit.issue(asm.ADDD("F6", "F2", "F2"))
    assert unit.Qj is producer and unit.Qk is producer
    unit.resolve(pool["Load1"])
    assert unit.Qj is producer
    unit.resolve(producer)
    assert unit.Qj is None and unit.Qk is None
    assert unit.Vj is True and unit.Vk is True
    assert unit.ready


def test_waiting_on_short_circuits_on_single_tag(pool, status, asm):
    producer = pool["Load1"]
    status.set_tag("F2", producer)
    unit = pool["Mult0"]
    unit.issue(asm.MULD("F0", "F2", "F4"))
    # only Qj is set, so the check reports False even though it matches
    assert unit.Qj is producer
    assert unit.waiting_on(producer) is False


def test_waiting_on_with_both_tags(pool, status, asm):
    status.set_tag("F0", pool["Mult0"])
    status.set_tag("F6", pool["Load0"])
    unit = pool["Mult1"]
    unit.issue(asm.DIVD("F10", "F0", "F6"))
    assert unit.waiting_on(pool["Mult0"])
    assert unit.waiting_on(pool["Load0"])
    assert not unit.waiting_on(pool["Add0"])


def test_clear_resets_and_scrubs_status(pool, status, asm):
    unit = pool["Load0"]
    unit.issue(asm.LD("F6", "R2", 32))
    status.set_tag("F6", unit)
    status.set_tag("F8", pool["Add0"])
    unit.execute()
    unit.clear()
    assert not unit.busy
    assert unit.op is None and unit.instruction is None
    assert unit.A is None and unit.result is None
    assert unit.Vj is None and unit.Qj is None
    assert status.tag_of("F6") is None
    assert status.tag_of("F8") is pool["Add0"]


def test_unit_snapshot(pool, status, asm):
    status.set_tag("F2", pool["Load1"])
    unit = pool["Mult0"]
    unit.issue(asm.MULD("F0", "F2", "F4"))
    assert unit.snapshot() == {
        "Name": "Mult0",
        "Busy": True,
        "Op": "MUL.D",
        "Vj": "",
        "Vk": "Regs[F4]",
        "Qj": "Load1",
        "Qk": "",
        "A": "",
        "Result": "",
    }
    assert str(unit) == "Mult0"
