"""Daily learning-quest planner."""
