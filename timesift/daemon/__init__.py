"""Search engine services: index, parser, planner, cache and session facade."""
