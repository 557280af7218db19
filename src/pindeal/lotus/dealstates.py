"""Lotus storage deal states and their mapping onto contract statuses."""

from __future__ import annotations

from pindeal.models.states import ContractStatus

# storagemarket.StorageDealStatus, by numeric code
DEAL_STATE_NAMES: dict[int, str] = {
    0: "StorageDealUnknown",
    1: "StorageDealProposalNotFound",
    2: "StorageDealProposalRejected",
    3: "StorageDealProposalAccepted",
    4: "StorageDealStaged",
    5: "StorageDealSealing",
    6: "StorageDealFinalizing",
    7: "StorageDealActive",
    8: "StorageDealExpired",
    9: "StorageDealSlashed",
    10: "StorageDealRejecting",
    11: "StorageDealFailing",
    12: "StorageDealFundsReserved",
    13: "StorageDealCheckForAcceptance",
    14: "StorageDealValidating",
    15: "StorageDealAcceptWait",
    16: "StorageDealStartDataTransfer",
    17: "StorageDealTransferring",
    18: "StorageDealWaitingForData",
    19: "StorageDealVerifyData",
    20: "StorageDealReserveProviderFunds",
    21: "StorageDealReserveClientFunds",
    22: "StorageDealProviderFunding",
    23: "StorageDealClientFunding",
    24: "StorageDealPublish",
    25: "StorageDealPublishing",
    26: "StorageDealError",
    27: "StorageDealProviderTransferAwaitRestart",
    28: "StorageDealClientTransferRestart",
    29: "StorageDealAwaitingPreCommit",
}

_STATUS_BY_STATE: dict[str, ContractStatus] = {
    "Active": ContractStatus.ACTIVE,
    "Expired": ContractStatus.EXPIRED,
    "Slashed": ContractStatus.SLASHED,
    "ProposalRejected": ContractStatus.FAILED,
    "ProposalNotFound": ContractStatus.FAILED,
    "Rejecting": ContractStatus.FAILED,
    "Failing": ContractStatus.FAILED,
    "Error": ContractStatus.FAILED,
    "Staged": ContractStatus.PUBLISHED,
    "Sealing": ContractStatus.PUBLISHED,
    "Finalizing": ContractStatus.PUBLISHED,
    "AwaitingPreCommit": ContractStatus.PUBLISHED,
}


def state_name(code: int) -> str:
    return DEAL_STATE_NAMES.get(code, "StorageDealUnknown")


def contract_status_for(state: str) -> ContractStatus:
    """Translate a ledger deal state name into a contract status.

    Accepts names with or without the ``StorageDeal`` prefix. Anything
    not recognised is still in negotiation, i.e. pending.
    """
    name = state.removeprefix("StorageDeal")
    return _STATUS_BY_STATE.get(name, ContractStatus.PENDING)
