"""
Services for the conversation engine.

Import from the submodules directly, e.g.
``from kaiwa.services.attempt_service import complete_attempt``.
"""
