"""IPFS storage network client."""
