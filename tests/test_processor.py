"""Pin processor: pending -> pinned with a contract, or failed with a reason."""

from __future__ import annotations

from decimal import Decimal

import pytest

from pindeal.errors import NegotiationError, PinFailedError, TransientCollaboratorError
from pindeal.models.states import ContractStatus, RequestStatus
from pindeal.pipeline.processor import PinProcessor, ProcessOutcome
from tests.factories import GIB, SAMPLE_CID_V0, make_cid
from tests.mocks import unavailable


# ── Test 1: Happy path ──────────────────────────────────────────────


async def test_process_pins_and_records_contract(processor, store, mock_network, mock_ledger):
    request = await store.create_request("alice", SAMPLE_CID_V0, 30)

    outcome = await processor.process(request.id, "job-1")
    assert outcome == ProcessOutcome.PINNED

    loaded = await store.get_request(request.id)
    assert loaded.status == RequestStatus.PINNED
    assert loaded.size_bytes == GIB
    assert loaded.price == Decimal("0.0012")
    assert len(loaded.contracts) == 1

    contract = loaded.contracts[0]
    assert contract.status == ContractStatus.PENDING
    assert contract.provider_id == "f01000"
    assert contract.start_epoch == mock_ledger.current_epoch
    assert contract.end_epoch == contract.start_epoch + 30 * 2880
    assert contract.storage_price == Decimal("0.0012")
    assert contract.parent_contract_id is None

    assert mock_network.pin_calls == [SAMPLE_CID_V0]
    cid, provider, epochs, per_epoch = mock_ledger.start_calls[0]
    assert (cid, provider, epochs) == (SAMPLE_CID_V0, "f01000", 86_400)
    assert per_epoch == Decimal("0.0012") / 86_400

    activity = await store.get_recent_activity(10)
    assert activity[0].event_type == "request_pinned"
    assert activity[0].job_id == "job-1"


# ── Test 2: Redelivery is a no-op ───────────────────────────────────


async def test_redelivered_job_does_nothing(processor, store, mock_network, mock_ledger):
    request = await store.create_request("alice", SAMPLE_CID_V0, 30)
    await processor.process(request.id)

    outcome = await processor.process(request.id)
    assert outcome == ProcessOutcome.SKIPPED
    assert len(mock_ledger.start_calls) == 1
    assert len(await store.get_contracts_for_request(request.id)) == 1


async def test_cancelled_request_skipped(processor, store, mock_network):
    request = await store.create_request("alice", SAMPLE_CID_V0, 30)
    await store.cancel_request(request.id)

    assert await processor.process(request.id) == ProcessOutcome.SKIPPED
    assert mock_network.size_calls == []


async def test_missing_request_skipped(processor):
    assert await processor.process("no-such-request") == ProcessOutcome.SKIPPED


# ── Test 3: Permanent failures carry a stable reason ────────────────


async def test_content_unavailable(processor, store, mock_network, mock_ledger):
    mock_network.missing.add(SAMPLE_CID_V0)
    request = await store.create_request("alice", SAMPLE_CID_V0, 30)

    assert await processor.process(request.id) == ProcessOutcome.FAILED
    loaded = await store.get_request(request.id)
    assert loaded.status == RequestStatus.FAILED
    assert loaded.failure_reason == "content_unavailable"
    assert mock_network.pin_calls == []
    assert mock_ledger.start_calls == []


async def test_pin_failed(processor, store, mock_network, mock_ledger):
    mock_network.pin_error = PinFailedError("pin/add: invalid path")
    request = await store.create_request("alice", SAMPLE_CID_V0, 30)

    assert await processor.process(request.id) == ProcessOutcome.FAILED
    assert (await store.get_request(request.id)).failure_reason == "pin_failed"
    assert mock_ledger.start_calls == []


async def test_every_provider_rejects(processor, store, mock_ledger):
    mock_ledger.start_error = NegotiationError("deal rejected: price too low")
    request = await store.create_request("alice", SAMPLE_CID_V0, 30)

    assert await processor.process(request.id) == ProcessOutcome.FAILED
    loaded = await store.get_request(request.id)
    assert loaded.failure_reason == "deal_negotiation_failed"
    assert loaded.contracts == []

    activity = await store.get_recent_activity(10)
    assert activity[0].event_type == "request_failed"
    assert "price too low" in activity[0].message


# ── Test 4: Transient failures propagate for redelivery ─────────────


async def test_transient_size_error_propagates(processor, store, mock_network):
    mock_network.size_error = unavailable()
    request = await store.create_request("alice", SAMPLE_CID_V0, 30)

    with pytest.raises(TransientCollaboratorError):
        await processor.process(request.id)
    assert (await store.get_request(request.id)).status == RequestStatus.PENDING


async def test_no_providers_propagates(processor, store, mock_ledger):
    mock_ledger.providers = []
    request = await store.create_request("alice", SAMPLE_CID_V0, 30)

    with pytest.raises(TransientCollaboratorError):
        await processor.process(request.id)
    assert (await store.get_request(request.id)).status == RequestStatus.PENDING


# ── Test 5: Losing the final write ──────────────────────────────────


async def test_cancel_during_negotiation_wins(store, mock_network, negotiator, pricing, mock_ledger):
    request = await store.create_request("alice", SAMPLE_CID_V0, 30)

    class CancellingNegotiator:
        epochs_per_day = 2880

        async def negotiate(self, *args, **kwargs):
            await store.cancel_request(request.id)
            return await negotiator.negotiate(*args, **kwargs)

    processor = PinProcessor(store, mock_network, CancellingNegotiator(), pricing)
    assert await processor.process(request.id) == ProcessOutcome.CONFLICT

    loaded = await store.get_request(request.id)
    assert loaded.status == RequestStatus.CANCELLED
    assert loaded.contracts == []
    activity = await store.get_recent_activity(10)
    assert activity[0].event_type == "commit_conflict"


# ── Test 6: Exhausted retries ───────────────────────────────────────


async def test_fail_exhausted(processor, store):
    request = await store.create_request("alice", SAMPLE_CID_V0, 30)

    outcome = await processor.fail_exhausted(request.id, "job-9", "collaborator_unavailable", "ipfs down")
    assert outcome == ProcessOutcome.FAILED
    loaded = await store.get_request(request.id)
    assert loaded.failure_reason == "collaborator_unavailable"

    # Already failed: nothing more to do
    assert await processor.fail_exhausted(request.id, "job-9", "internal_error") == ProcessOutcome.SKIPPED


# ── Test 7: Unpin policy ────────────────────────────────────────────


async def test_unpin_on_failure_disabled_by_default(processor, store, mock_network, mock_ledger):
    mock_ledger.start_error = NegotiationError("rejected")
    request = await store.create_request("alice", SAMPLE_CID_V0, 30)
    await processor.process(request.id)
    assert mock_network.unpin_calls == []


async def test_unpin_on_failure(store, mock_network, negotiator, pricing, mock_ledger):
    processor = PinProcessor(store, mock_network, negotiator, pricing, unpin_on_failure=True)
    mock_ledger.start_error = NegotiationError("rejected")
    request = await store.create_request("alice", SAMPLE_CID_V0, 30)

    await processor.process(request.id)
    assert mock_network.unpin_calls == [SAMPLE_CID_V0]


async def test_unpin_skipped_when_cid_still_wanted(store, mock_network, negotiator, pricing, mock_ledger):
    processor = PinProcessor(store, mock_network, negotiator, pricing, unpin_on_failure=True)
    mock_ledger.start_error = NegotiationError("rejected")
    request = await store.create_request("alice", SAMPLE_CID_V0, 30)
    await store.create_request("bob", SAMPLE_CID_V0, 90)

    await processor.process(request.id)
    assert mock_network.unpin_calls == []


async def test_content_failure_never_unpins(store, mock_network, negotiator, pricing):
    processor = PinProcessor(store, mock_network, negotiator, pricing, unpin_on_failure=True)
    cid = make_cid(7)
    mock_network.missing.add(cid)
    request = await store.create_request("alice", cid, 30)

    await processor.process(request.id)
    assert mock_network.unpin_calls == []
