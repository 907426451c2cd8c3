"""engine/__init__.py

Cross-engine migration core: dialects, introspection, DDL, data copy and
the orchestrator. Import submodules directly; ``models`` depends on
``engine.errors`` so this package re-exports nothing.
"""
