"""Job pipeline: state machine, stage handler contract and default handlers."""
