"""Pipeline services: queue rules, executors, scheduling and drive polling."""
