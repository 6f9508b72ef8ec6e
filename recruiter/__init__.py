"""LinkedIn recruiting outreach: pipeline state machine, scoring, approvals and scheduler."""
