"""Care-plan tasks: protocol expansion, approvals, transitions and audit trail."""
