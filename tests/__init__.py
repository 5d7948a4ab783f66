"""
Test suite for the evidence ledger

Unit tests for storage, source verification, the card lifecycle,
publishing, the snapshot fetcher, manifests, configuration and the CLI.
"""
