import asyncio

import pytest

from gigtickets.redemption import Redemption, RedemptionGate
from gigtickets.reporting import ReportingView

from .conftest import EVENT_DATE, InterleavingLedger, scenario_a


@pytest.fixture
def gate(ledger):
    return RedemptionGate(ledger, current_event=lambda: EVENT_DATE)


async def _minted(orchestrator):
    result = await orchestrator.fulfill(scenario_a())
    return [t.code for t in result.tickets]


async def test_unknown_code_is_invalid(gate):
    assert await gate.check_in("ABC123", EVENT_DATE) is Redemption.INVALID


@pytest.mark.parametrize("code", [None, "", "   "])
async def test_missing_code_is_invalid(gate, code):
    assert await gate.check_in(code, EVENT_DATE) is Redemption.INVALID


async def test_second_scan_is_already_used(gate, orchestrator):
    code, _ = await _minted(orchestrator)
    assert await gate.check_in(code, EVENT_DATE) is Redemption.VALID
    assert await gate.check_in(code, EVENT_DATE) is Redemption.ALREADY_USED
    assert await gate.check_in(code, EVENT_DATE) is Redemption.ALREADY_USED


async def test_scan_input_is_normalized(gate, orchestrator):
    code, _ = await _minted(orchestrator)
    assert await gate.check_in(
        f"  {code.lower()} ", EVENT_DATE
    ) is Redemption.VALID
    assert await gate.check_in(code, EVENT_DATE) is Redemption.ALREADY_USED


async def test_code_is_only_valid_for_its_event(gate, orchestrator):
    code, _ = await _minted(orchestrator)
    assert await gate.check_in(code, "2026-10-31") is Redemption.INVALID
    # the failed attempt did not consume it
    assert await gate.check_in(code, EVENT_DATE) is Redemption.VALID


async def test_verify_uses_current_event(gate, orchestrator):
    code, _ = await _minted(orchestrator)
    assert await gate.verify(code) is Redemption.VALID
    assert await gate.verify(code) is Redemption.ALREADY_USED


async def test_report_after_one_entry(gate, orchestrator, ledger):
    codes = await _minted(orchestrator)
    await gate.check_in(codes[0], EVENT_DATE)

    report = ReportingView(ledger, current_event=lambda: EVENT_DATE)
    agg = await report.aggregate()
    assert agg.as_dict() == {"sold": 2, "scanned": 1, "remaining": 1}
    # redeemed or not, every code stays in the door list
    assert await report.export() == sorted(codes)
    assert (await report.aggregate("2026-10-31")).sold == 0


@pytest.mark.parametrize("scanners", [2, 8])
async def test_concurrent_scans_admit_once(gate, orchestrator, scanners):
    code, _ = await _minted(orchestrator)
    outcomes = await asyncio.gather(
        *(gate.check_in(code, EVENT_DATE) for _ in range(scanners))
    )
    assert outcomes.count(Redemption.VALID) == 1
    assert outcomes.count(Redemption.ALREADY_USED) == scanners - 1


async def test_scanners_that_all_saw_it_unused_still_admit_once(
    ledger, orchestrator
):
    code, _ = await _minted(orchestrator)
    racing = RedemptionGate(InterleavingLedger(ledger, readers=3))

    outcomes = await asyncio.gather(
        *(racing.check_in(code, EVENT_DATE) for _ in range(3))
    )
    assert sorted(o.value for o in outcomes) == ["used", "used", "valid"]


def test_outcome_messages():
    assert Redemption.VALID.message == "Entry allowed"
    assert Redemption.ALREADY_USED.message == "Already checked in"
    assert Redemption.INVALID.message == "Invalid ticket"
    assert Redemption("used") is Redemption.ALREADY_USED
