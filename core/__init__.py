"""Core package of the entity rule engine.

Components, leaf-first: condition evaluator, relationship graph, query processor,
and the engine facade that composes them. Import the facade from
`core.entity_engine`; submodules are not imported eagerly here.
"""
