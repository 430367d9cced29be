"""Agent turn engine package.

Main Entry Points:
    TurnEngine (engine): Runs one agent turn against a conversation.
    ApprovalHandler (approval): Approves or rejects pending destructive
        actions and resumes the suspended turn.
    build_default_registry (tools): Frozen registry of the built-in
        CRM, ERP and analytics tools.

Import these from their modules directly; this package stays import-light
because the service layer depends on its config module.
"""
