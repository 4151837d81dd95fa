"""Shared contracts: clock, domain helpers, enums and the error taxonomy."""
