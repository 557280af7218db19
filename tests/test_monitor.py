"""Deal monitor reconciliation passes."""

from __future__ import annotations

from pindeal.models.states import ContractStatus
from tests.factories import make_cid, make_pinned_request
from tests.mocks import unavailable


async def test_pending_deal_becomes_active(monitor, store, mock_ledger):
    _, contract = await make_pinned_request(store, status=ContractStatus.PENDING)
    mock_ledger.deal_states[contract.deal_handle] = "StorageDealActive"

    report = await monitor.run_pass()
    assert report.total_checked == 1
    assert report.updated == 1
    assert (await store.get_contract(contract.id)).status == ContractStatus.ACTIVE

    activity = await store.get_recent_activity(5)
    assert activity[0].event_type == "contract_status"


async def test_unchanged_state_not_rewritten(monitor, store, mock_ledger):
    _, contract = await make_pinned_request(store)
    mock_ledger.deal_states[contract.deal_handle] = "StorageDealActive"
    before = (await store.get_contract(contract.id)).updated_at

    report = await monitor.run_pass()
    assert report.unchanged == 1
    assert (await store.get_contract(contract.id)).updated_at == before


async def test_active_deal_expires(monitor, store, mock_ledger):
    _, contract = await make_pinned_request(store)
    mock_ledger.deal_states[contract.deal_handle] = "StorageDealExpired"

    await monitor.run_pass()
    assert (await store.get_contract(contract.id)).status == ContractStatus.EXPIRED

    # Terminal contracts are no longer polled
    mock_ledger.status_calls.clear()
    report = await monitor.run_pass()
    assert report.total_checked == 0
    assert mock_ledger.status_calls == []


async def test_backwards_move_is_skipped(monitor, store, mock_ledger):
    _, contract = await make_pinned_request(store)
    mock_ledger.deal_states[contract.deal_handle] = "StorageDealSealing"

    report = await monitor.run_pass()
    assert report.skipped == 1
    assert (await store.get_contract(contract.id)).status == ContractStatus.ACTIVE


async def test_contract_without_handle_is_skipped(monitor, store, mock_ledger):
    await make_pinned_request(store, status=ContractStatus.PENDING, deal_handle="")

    report = await monitor.run_pass()
    assert report.skipped == 1
    assert mock_ledger.status_calls == []


async def test_one_error_does_not_block_others(monitor, store, mock_ledger):
    _, broken = await make_pinned_request(store, cid=make_cid(1), status=ContractStatus.PENDING)
    _, healthy = await make_pinned_request(store, cid=make_cid(2), status=ContractStatus.PENDING)
    mock_ledger.status_errors[broken.deal_handle] = unavailable()
    mock_ledger.deal_states[healthy.deal_handle] = "StorageDealProposalRejected"

    report = await monitor.run_pass()
    assert report.errors == 1
    assert report.updated == 1
    assert (await store.get_contract(broken.id)).status == ContractStatus.PENDING
    assert (await store.get_contract(healthy.id)).status == ContractStatus.FAILED
