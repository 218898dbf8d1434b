"""Request state machine, failure diagnosis and the interactive session."""
