"""pindeal - turns IPFS pin requests into Filecoin storage deals."""

__version__ = "0.1.0"
