"""
Execution engine.

- Block interpreter: sequential cards, goToBlock, userInput parking
- Graph interpreter: legacy flow node/edge walking
- Trigger resolver, session manager, turn runner, step budget

Import from the submodules; this package re-exports nothing.
"""
