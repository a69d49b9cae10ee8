"""Bootstrap steps for a single-container Jenkins host.

Run order: runtime -> restore -> identity -> launch -> toolchain ->
readiness -> schedule. ``BootstrapOrchestrator`` drives them.
"""
