"""Core engine components: priority, auctions, tie-breaks, bounties, leases."""
