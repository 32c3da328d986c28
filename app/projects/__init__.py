"""
Projects app.

Owns the collaboration side of settlement:
- Projects and their members (authorization for milestone actions)
- Revenue split agreements
- Milestones and their state machine

Money movement lives in the payments app; MilestoneService drives the
escrow ledger through the injected SettlementEngine ports.
"""
